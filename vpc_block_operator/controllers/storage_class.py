"""
Controller for the default storage classes of the driver
"""

# First Party
import alog

# Local
from .. import constants
from ..api import ClusterCSIDriverSpec
from ..assets import ManifestTemplate
from ..context import Context
from ..hooks import apply_hooks
from .base import ReconcileOutcome
from .static_resources import StaticResourceController

log = alog.use_channel("STCLS")


class StorageClassController(StaticResourceController):
    """Keeps the storage classes applied unless spec.storageClassState says
    otherwise. Storage class parameters are immutable, so a class whose
    parameters changed is deleted and created again.
    """

    def sync(
        self, ctx: Context, instance: dict, spec: ClusterCSIDriverSpec
    ) -> ReconcileOutcome:
        state = spec.storage_class_state or constants.MANAGED
        if state == constants.UNMANAGED:
            log.debug2("Storage classes unmanaged")
            return ReconcileOutcome()

        changed = False
        for template in self.templates.values():
            ctx.raise_if_cancelled()
            if state == constants.REMOVED:
                changed = self.delete_template(template) or changed
                continue
            if self._parameters_changed(spec, template):
                log.info("Parameters of [%s] changed", template.object_name)
                self.delete_template(template)
            changed = self.apply_template(spec, template) or changed
        return ReconcileOutcome(changed=changed)

    def _parameters_changed(
        self, spec: ClusterCSIDriverSpec, template: ManifestTemplate
    ) -> bool:
        live = self.get_live(template)
        if live is None:
            return False
        desired = apply_hooks(spec, template.render(), self.hooks)
        return (live.get("parameters") or {}) != (desired.get("parameters") or {})
