"""
Controllers for the operand workloads: the controller-service Deployment and
the node-service DaemonSet. The rendered manifest runs through the hook
pipeline and is applied only when it differs from what this controller last
applied.
"""

# Standard
from typing import Any, Dict, List, Optional, Tuple
import abc

# First Party
import alog

# Local
from .. import constants
from ..api import ClusterCSIDriverSpec
from ..assets import load_template
from ..context import Context
from ..deploy_manager import DeployManagerBase
from ..field_ownership import applied_fields, extract_managed
from ..hooks import ManifestHook, apply_hooks, log_level_arg_hook
from ..status import ConditionReason
from ..utils import content_hash
from .base import ControllerBase, ReconcileOutcome, WatchedKind

log = alog.use_channel("WRKLD")


class WorkloadController(ControllerBase):
    """Base for the hook-customized workload controllers"""

    reported_conditions = [
        constants.CONDITION_AVAILABLE,
        constants.CONDITION_PROGRESSING,
        constants.CONDITION_DEGRADED,
    ]

    # Group and plural resource recorded in status.generations
    group = "apps"
    resource = None

    def __init__(
        self,
        name: str,
        operator_client,
        cache,
        deploy_manager: DeployManagerBase,
        asset_name: str,
        hooks: Optional[List[ManifestHook]] = None,
        extra_watched_kinds: Optional[List[WatchedKind]] = None,
        **kwargs,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                Client used for applies
            asset_name:  str
                The workload template
            hooks:  Optional[List[ManifestHook]]
                Hooks run in order after the operand log level is set
            extra_watched_kinds:  Optional[List[WatchedKind]]
                Kinds read by the hooks whose changes must trigger a render
            **kwargs:
                Passed through to ControllerBase
        """
        super().__init__(name, operator_client, cache, **kwargs)
        self.deploy_manager = deploy_manager
        self.template = load_template(asset_name)
        self.hooks = [log_level_arg_hook] + list(hooks or [])
        self.extra_watched_kinds = list(extra_watched_kinds or [])

    @abc.abstractmethod
    def rollout_state(self, live: dict) -> Tuple[bool, bool, str]:
        """Inspect the live workload

        Returns:
            available:  bool
                Whether at least one replica is available
            progressing:  bool
                Whether a rollout is still in progress
            message:  str
                Human readable summary
        """

    def extra_status(self, live: dict) -> Dict[str, Any]:
        """Additional status fields owned by this controller"""
        return {}

    def watched_kinds(self) -> List[WatchedKind]:
        return [
            (
                self.template.kind,
                self.template.api_version,
                self.template.namespace,
            )
        ] + self.extra_watched_kinds

    def render(self, spec: ClusterCSIDriverSpec) -> dict:
        """Render the workload manifest through the hook pipeline"""
        return apply_hooks(spec, self.template.render(), self.hooks)

    def sync(
        self, ctx: Context, instance: dict, spec: ClusterCSIDriverSpec
    ) -> ReconcileOutcome:
        manifest = self.render(spec)
        ctx.raise_if_cancelled()

        live = self.cache.get(
            self.template.kind,
            self.template.object_name,
            namespace=self.template.namespace,
            api_version=self.template.api_version,
        )
        changed = False
        if live is None or extract_managed(live, self.name) != applied_fields(manifest):
            log.debug("Applying [%s]", self.template.object_name)
            live, changed = self.deploy_manager.apply(manifest, field_manager=self.name)
            if changed:
                self.record_event(
                    f"{self.template.kind}Updated",
                    f"Applied {self.template.kind} {self.template.object_name}",
                )
        else:
            log.debug3("[%s] already up to date", self.template.object_name)

        available, progressing, message = self.rollout_state(live)
        status_fields = {
            "generations": [
                {
                    "group": self.group,
                    "resource": self.resource,
                    "namespace": self.template.namespace,
                    "name": self.template.object_name,
                    "lastGeneration": live.get("metadata", {}).get("generation", 0),
                    "hash": content_hash(manifest),
                }
            ]
        }
        status_fields.update(self.extra_status(live))
        return ReconcileOutcome(
            changed=changed,
            conditions=[
                self.condition(
                    constants.CONDITION_AVAILABLE,
                    available,
                    ConditionReason.AS_EXPECTED
                    if available
                    else ConditionReason.NOT_AVAILABLE,
                    message,
                ),
                self.condition(
                    constants.CONDITION_PROGRESSING,
                    progressing,
                    ConditionReason.ROLLING_OUT
                    if progressing
                    else ConditionReason.AS_EXPECTED,
                    message if progressing else "",
                ),
            ],
            status_fields=status_fields,
        )


def _generation_pending(live: dict) -> bool:
    generation = live.get("metadata", {}).get("generation", 0)
    observed = (live.get("status") or {}).get("observedGeneration", 0)
    return observed < generation


class DeploymentController(WorkloadController):
    """Keeps the controller-service Deployment rolled out"""

    resource = "deployments"

    def rollout_state(self, live: dict) -> Tuple[bool, bool, str]:
        status = live.get("status") or {}
        desired = (live.get("spec") or {}).get("replicas", 1)
        available_replicas = status.get("availableReplicas", 0)
        updated_replicas = status.get("updatedReplicas", 0)
        progressing = _generation_pending(live) or updated_replicas < desired
        message = (
            f"{available_replicas} of {desired} replicas available, "
            f"{updated_replicas} updated"
        )
        return available_replicas > 0, progressing, message

    def extra_status(self, live: dict) -> Dict[str, Any]:
        return {"readyReplicas": (live.get("status") or {}).get("readyReplicas", 0)}


class DaemonSetController(WorkloadController):
    """Keeps the node-service DaemonSet rolled out"""

    resource = "daemonsets"

    def rollout_state(self, live: dict) -> Tuple[bool, bool, str]:
        status = live.get("status") or {}
        desired = status.get("desiredNumberScheduled", 0)
        available = status.get("numberAvailable", 0)
        updated = status.get("updatedNumberScheduled", 0)
        progressing = _generation_pending(live) or updated < desired
        message = f"{available} of {desired} nodes available, {updated} updated"
        return available > 0, progressing, message
