"""
The controllers that make up the operator
"""

# Local
from .base import ControllerBase, ControllerState, ReconcileOutcome, TickResult
from .config_observer import ConfigObserverController
from .log_level import LogLevelController
from .management_state import ManagementStateController
from .secret_sync import SecretSyncController
from .static_resources import (
    ConditionalResourceEntry,
    ConditionalStaticResourceController,
    StaticResourceController,
)
from .storage_class import StorageClassController
from .workload import DaemonSetController, DeploymentController
