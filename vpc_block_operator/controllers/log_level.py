"""
Controller that sets the operator's own log level from spec.operatorLogLevel
"""

# First Party
import alog

# Local
from .. import config, constants
from ..api import ClusterCSIDriverSpec
from ..context import Context
from ..log_format import OperatorJsonFormatter
from ..status import ConditionReason
from .base import ControllerBase, ReconcileOutcome

log = alog.use_channel("LOGLV")


class LogLevelController(ControllerBase):
    """Reconfigures alog whenever the requested operator log level changes"""

    def __init__(self, name: str, operator_client, cache, **kwargs):
        kwargs.setdefault("honor_management_state", False)
        super().__init__(name, operator_client, cache, **kwargs)
        self.current_level = config.log_level

    def sync(
        self, ctx: Context, instance: dict, spec: ClusterCSIDriverSpec
    ) -> ReconcileOutcome:
        requested = spec.operator_log_level or constants.DEFAULT_OPERATOR_LOG_LEVEL
        level = constants.OPERATOR_LOG_LEVELS.get(requested)
        if level is None:
            log.warning("Unsupported operatorLogLevel [%s]", requested)
            return ReconcileOutcome(
                conditions=[
                    self.condition(
                        constants.CONDITION_DEGRADED,
                        True,
                        ConditionReason.UNSUPPORTED,
                        f"Unsupported operatorLogLevel {requested}",
                    )
                ]
            )

        if level == self.current_level:
            return ReconcileOutcome()

        log.info("Changing log level from [%s] to [%s]", self.current_level, level)
        alog.configure(
            default_level=level,
            filters=config.log_filters,
            formatter=OperatorJsonFormatter() if config.log_json else "pretty",
            thread_id=config.log_thread_id,
        )
        self.current_level = level
        return ReconcileOutcome(changed=True)
