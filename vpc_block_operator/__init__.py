"""
Package exports
"""

# Local
from . import config, constants, status
from .api import ClusterCSIDriver, ClusterCSIDriverSpec, OperatorStatus
from .cache import ObjectCache
from .context import Context
from .controller_set import ControllerSet
from .controllers import (
    ConditionalStaticResourceController,
    ControllerBase,
    ReconcileOutcome,
    StaticResourceController,
    TickResult,
)
from .deploy_manager import (
    DeployManagerBase,
    DryRunDeployManager,
    OpenshiftDeployManager,
)
from .events import EventRecorder
from .exceptions import (
    assert_cluster,
    assert_config,
    assert_precondition,
)
from .operator_client import OperatorStateAccessor
from .starter import build_operator, run_operator, start_operator
