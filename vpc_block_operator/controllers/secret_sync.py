"""
Controller that mirrors the cloud credentials secret into the namespace where
the driver reads it
"""

# Standard
from typing import List, Optional

# First Party
import alog

# Local
from .. import config, constants
from ..api import ClusterCSIDriverSpec
from ..context import Context
from ..deploy_manager import DeployManagerBase
from ..exceptions import assert_precondition
from ..utils import content_hash
from .base import ControllerBase, ReconcileOutcome, WatchedKind

log = alog.use_channel("SSYNC")


class SecretSyncController(ControllerBase):
    """Copies a secret across namespaces, updating the copy whenever the source
    content changes
    """

    def __init__(
        self,
        name: str,
        operator_client,
        cache,
        deploy_manager: DeployManagerBase,
        source_namespace: Optional[str] = None,
        source_name: Optional[str] = None,
        destination_namespace: Optional[str] = None,
        destination_name: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(name, operator_client, cache, **kwargs)
        self.deploy_manager = deploy_manager
        self.source_namespace = source_namespace or config.secret_sync.source_namespace
        self.source_name = source_name or config.secret_sync.source_name
        self.destination_namespace = (
            destination_namespace or config.secret_sync.destination_namespace
        )
        self.destination_name = destination_name or config.secret_sync.destination_name

    def watched_kinds(self) -> List[WatchedKind]:
        watched = [("Secret", "v1", self.source_namespace)]
        if self.destination_namespace != self.source_namespace:
            watched.append(("Secret", "v1", self.destination_namespace))
        return watched

    def sync(
        self, ctx: Context, instance: dict, spec: ClusterCSIDriverSpec
    ) -> ReconcileOutcome:
        source = self.cache.get(
            "Secret", self.source_name, namespace=self.source_namespace
        )
        assert_precondition(
            source is not None,
            f"Source secret [{self.source_namespace}/{self.source_name}] not found",
        )
        source_hash = content_hash(
            {"data": source.get("data") or {}, "type": source.get("type")}
        )

        destination = self.cache.get(
            "Secret", self.destination_name, namespace=self.destination_namespace
        )
        if destination is not None:
            recorded_hash = (
                destination.get("metadata", {}).get("annotations") or {}
            ).get(constants.SOURCE_HASH_ANNOTATION)
            if recorded_hash == source_hash and (destination.get("data") or {}) == (
                source.get("data") or {}
            ):
                log.debug3("Secret [%s] already in sync", self.destination_name)
                return ReconcileOutcome()

        ctx.raise_if_cancelled()
        manifest = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": self.destination_name,
                "namespace": self.destination_namespace,
                "annotations": {constants.SOURCE_HASH_ANNOTATION: source_hash},
            },
            "type": source.get("type", "Opaque"),
            "data": source.get("data") or {},
        }
        _, changed = self.deploy_manager.apply(manifest, field_manager=self.name)
        if changed:
            log.info(
                "Synced secret [%s/%s] to [%s/%s]",
                self.source_namespace,
                self.source_name,
                self.destination_namespace,
                self.destination_name,
            )
            self.record_event(
                "SecretSynced",
                f"Copied secret {self.source_name} to "
                f"{self.destination_namespace}/{self.destination_name}",
            )
        return ReconcileOutcome(changed=changed)
