"""
Controller that validates spec.managementState
"""

# First Party
import alog

# Local
from .. import constants
from ..api import ClusterCSIDriverSpec
from ..context import Context
from ..status import ConditionReason
from .base import ControllerBase, ReconcileOutcome

log = alog.use_channel("MGMTS")

SUPPORTED_STATES = [constants.MANAGED, constants.UNMANAGED]


class ManagementStateController(ControllerBase):
    """Reports a Degraded condition when the requested management state is one
    the operator cannot honor. Every other controller reads the state itself.
    """

    def __init__(
        self,
        name: str,
        operator_client,
        cache,
        operand_name: str = constants.OPERAND_NAME,
        supports_removal: bool = False,
        **kwargs,
    ):
        kwargs.setdefault("honor_management_state", False)
        super().__init__(name, operator_client, cache, **kwargs)
        self.operand_name = operand_name
        self.supports_removal = supports_removal

    def sync(
        self, ctx: Context, instance: dict, spec: ClusterCSIDriverSpec
    ) -> ReconcileOutcome:
        state = spec.management_state or constants.MANAGED
        supported = SUPPORTED_STATES + (
            [constants.REMOVED] if self.supports_removal else []
        )
        if state in supported:
            return ReconcileOutcome()

        message = f"Management state {state} is not supported by {self.operand_name}"
        log.warning(message)
        return ReconcileOutcome(
            conditions=[
                self.condition(
                    constants.CONDITION_DEGRADED,
                    True,
                    ConditionReason.UNSUPPORTED,
                    message,
                )
            ]
        )
