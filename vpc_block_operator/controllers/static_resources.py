"""
Controllers that keep a fixed list of manifests applied, and the conditional
variant whose manifests are installed and removed as injected predicates
dictate.
"""

# Standard
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

# First Party
import alog

# Local
from ..api import ClusterCSIDriverSpec
from ..assets import ManifestTemplate, load_template
from ..context import Context
from ..deploy_manager import DeployManagerBase
from ..exceptions import PredicateConflictError, ResourceNotServedError
from ..field_ownership import applied_fields, extract_managed
from ..hooks import ManifestHook, apply_hooks
from .base import ControllerBase, ReconcileOutcome, WatchedKind

log = alog.use_channel("STATC")

Predicate = Callable[[], bool]


class StaticResourceController(ControllerBase):
    """Applies every named asset on each tick, skipping those whose fields
    already hold the rendered values
    """

    def __init__(
        self,
        name: str,
        operator_client,
        cache,
        deploy_manager: DeployManagerBase,
        asset_names: Iterable[str],
        hooks: Optional[List[ManifestHook]] = None,
        ignore_not_found_on_create: bool = False,
        **kwargs,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                Client used for applies and deletes
            asset_names:  Iterable[str]
                The assets to keep applied, in apply order
            hooks:  Optional[List[ManifestHook]]
                Hooks run on every rendered manifest
            ignore_not_found_on_create:  bool
                If True, assets whose kind the cluster does not serve are
                skipped instead of failing the tick
            **kwargs:
                Passed through to ControllerBase
        """
        super().__init__(name, operator_client, cache, **kwargs)
        self.deploy_manager = deploy_manager
        self.hooks = list(hooks or [])
        self.ignore_not_found_on_create = ignore_not_found_on_create
        self.templates: Dict[str, ManifestTemplate] = {
            asset_name: load_template(asset_name) for asset_name in asset_names
        }

    def watched_kinds(self) -> List[WatchedKind]:
        watched = []
        for template in self.templates.values():
            key = (template.kind, template.api_version, template.namespace)
            if key in watched:
                continue
            if not self.deploy_manager.kind_exists(template.kind, template.api_version):
                log.debug2("Not watching unserved kind [%s]", template.kind)
                continue
            watched.append(key)
        return watched

    def sync(
        self, ctx: Context, instance: dict, spec: ClusterCSIDriverSpec
    ) -> ReconcileOutcome:
        changed = False
        for template in self.templates.values():
            ctx.raise_if_cancelled()
            changed = self.apply_template(spec, template) or changed
        return ReconcileOutcome(changed=changed)

    ## Shared Helpers ##########################################################

    def get_live(self, template: ManifestTemplate) -> Optional[dict]:
        """Get the observed state of the object a template describes"""
        return self.cache.get(
            template.kind,
            template.object_name,
            namespace=template.namespace,
            api_version=template.api_version,
        )

    def apply_template(
        self, spec: ClusterCSIDriverSpec, template: ManifestTemplate
    ) -> bool:
        """Render the template and apply it if this controller's fields on the
        live object differ from the rendered ones

        Returns:
            changed:  bool
                Whether or not the apply changed the stored object
        """
        manifest = apply_hooks(spec, template.render(), self.hooks)
        live = self.get_live(template)
        if live is not None and extract_managed(live, self.name) == applied_fields(
            manifest
        ):
            log.debug3("[%s] already up to date", template.name)
            return False

        try:
            _, changed = self.deploy_manager.apply(manifest, field_manager=self.name)
        except Exception as err:
            if (
                isinstance(err, ResourceNotServedError)
                and self.ignore_not_found_on_create
            ):
                log.debug("Kind of [%s] not served. Skipping create", template.name)
                return False
            self.record_warning(
                f"{template.kind}ApplyFailed",
                f"Failed to apply {template.kind} {template.object_name}: {err}",
            )
            raise

        if changed:
            log.info("Applied [%s/%s]", template.kind, template.object_name)
            if live is None:
                self.record_event(
                    f"{template.kind}Created",
                    f"Created {template.kind} {template.object_name}",
                )
        return changed

    def delete_template(self, template: ManifestTemplate) -> bool:
        """Delete the object a template describes. Deleting an absent object is
        not an error.

        Returns:
            changed:  bool
                Whether or not an object was deleted
        """
        if self.get_live(template) is None:
            log.debug3("[%s] already absent", template.name)
            return False
        deleted = self.deploy_manager.delete(
            kind=template.kind,
            name=template.object_name,
            namespace=template.namespace,
            api_version=template.api_version,
        )
        if deleted:
            log.info("Deleted [%s/%s]", template.kind, template.object_name)
            self.record_event(
                f"{template.kind}Deleted",
                f"Deleted {template.kind} {template.object_name}",
            )
        return deleted


@dataclass(frozen=True)
class ConditionalResourceEntry:
    """An asset whose lifecycle is gated by an install and a remove
    predicate. The two must never both be true in the same tick.
    """

    asset_name: str
    should_install: Predicate
    should_remove: Predicate


class ConditionalStaticResourceController(StaticResourceController):
    """Installs and removes assets as their predicates dictate. When neither
    predicate holds the asset is left as it is.
    """

    def __init__(
        self,
        name: str,
        operator_client,
        cache,
        deploy_manager: DeployManagerBase,
        entries: Iterable[ConditionalResourceEntry],
        **kwargs,
    ):
        self.entries = list(entries)
        super().__init__(
            name,
            operator_client,
            cache,
            deploy_manager,
            [entry.asset_name for entry in self.entries],
            **kwargs,
        )

    @classmethod
    def from_assets(
        cls,
        name: str,
        operator_client,
        cache,
        deploy_manager: DeployManagerBase,
        asset_names: Iterable[str],
        should_install: Predicate,
        should_remove: Predicate,
        **kwargs,
    ) -> "ConditionalStaticResourceController":
        """Gate every asset with the same pair of predicates"""
        entries = [
            ConditionalResourceEntry(asset_name, should_install, should_remove)
            for asset_name in asset_names
        ]
        return cls(name, operator_client, cache, deploy_manager, entries, **kwargs)

    def watched_kinds(self) -> List[WatchedKind]:
        # Predicates are re-evaluated on every resync
        return []

    def sync(
        self, ctx: Context, instance: dict, spec: ClusterCSIDriverSpec
    ) -> ReconcileOutcome:
        # Evaluate every predicate before touching anything
        decisions = []
        for entry in self.entries:
            install = bool(entry.should_install())
            remove = bool(entry.should_remove())
            log.debug3(
                "[%s] install=%s remove=%s", entry.asset_name, install, remove
            )
            if install and remove:
                raise PredicateConflictError(
                    f"Install and remove predicates of [{entry.asset_name}] "
                    "are both true"
                )
            decisions.append((self.templates[entry.asset_name], install, remove))

        changed = False
        for template, install, remove in decisions:
            ctx.raise_if_cancelled()
            if install:
                changed = self.apply_template(spec, template) or changed
            elif remove:
                changed = self.delete_template(template) or changed
        return ReconcileOutcome(changed=changed)
