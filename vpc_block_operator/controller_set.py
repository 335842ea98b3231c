"""
The ControllerSet composes the controllers of the operator. It is assembled once
at startup, with every controller sharing the same OperatorStateAccessor and
ObjectCache, and then started with a single call to run().
"""

# Standard
from typing import Callable, Iterable, List, Optional, Tuple

# First Party
import alog

# Local
from . import constants
from .cache import ObjectCache
from .context import Context
from .controllers import (
    ConditionalStaticResourceController,
    ConfigObserverController,
    ControllerBase,
    DaemonSetController,
    DeploymentController,
    LogLevelController,
    ManagementStateController,
    StaticResourceController,
    StorageClassController,
)
from .controllers.base import WatchedKind
from .deploy_manager import DeployManagerBase
from .events import EventRecorder
from .exceptions import DuplicateNameError
from .hooks import ManifestHook
from .operator_client import OperatorStateAccessor

log = alog.use_channel("CTSET")

LOG_LEVEL_CONTROLLER_NAME = "LoggingSyncer"
MANAGEMENT_STATE_CONTROLLER_NAME = "ManagementState"


class ControllerSet:
    """Append-only, ordered collection of uniquely named controllers"""

    def __init__(
        self,
        operator_client: OperatorStateAccessor,
        cache: ObjectCache,
        deploy_manager: DeployManagerBase,
        event_recorder: Optional[EventRecorder] = None,
    ):
        self.operator_client = operator_client
        self.cache = cache
        self.deploy_manager = deploy_manager
        self.event_recorder = event_recorder
        self._controllers: List[ControllerBase] = []

    @property
    def controllers(self) -> Tuple[ControllerBase, ...]:
        return tuple(self._controllers)

    def register(self, controller: ControllerBase) -> "ControllerSet":
        """Append a controller

        Raises:
            DuplicateNameError: A controller with the same name is registered
        """
        if any(existing.name == controller.name for existing in self._controllers):
            raise DuplicateNameError(controller.name)
        log.debug("Registering controller [%s]", controller.name)
        self._controllers.append(controller)
        return self

    ## Builders ################################################################
    #
    # Each builder constructs a controller wired to the shared clients and
    # registers it
    ##

    def with_log_level_controller(
        self, name: str = LOG_LEVEL_CONTROLLER_NAME
    ) -> "ControllerSet":
        return self.register(LogLevelController(name, **self._shared()))

    def with_management_state_controller(
        self,
        operand_name: str = constants.OPERAND_NAME,
        supports_removal: bool = False,
        name: str = MANAGEMENT_STATE_CONTROLLER_NAME,
    ) -> "ControllerSet":
        return self.register(
            ManagementStateController(
                name,
                operand_name=operand_name,
                supports_removal=supports_removal,
                **self._shared(),
            )
        )

    def with_static_resources_controller(
        self, name: str, asset_names: Iterable[str], **kwargs
    ) -> "ControllerSet":
        return self.register(
            StaticResourceController(
                name,
                deploy_manager=self.deploy_manager,
                asset_names=asset_names,
                **self._shared(),
                **kwargs,
            )
        )

    def with_conditional_static_resources_controller(
        self,
        name: str,
        asset_names: Iterable[str],
        should_install: Callable[[], bool],
        should_remove: Callable[[], bool],
    ) -> "ControllerSet":
        return self.register(
            ConditionalStaticResourceController.from_assets(
                name,
                deploy_manager=self.deploy_manager,
                asset_names=asset_names,
                should_install=should_install,
                should_remove=should_remove,
                **self._shared(),
            )
        )

    def with_config_observer_controller(self, name: str) -> "ControllerSet":
        return self.register(
            ConfigObserverController(
                name, deploy_manager=self.deploy_manager, **self._shared()
            )
        )

    def with_deployment_controller(
        self,
        name: str,
        asset_name: str,
        hooks: Optional[List[ManifestHook]] = None,
        extra_watched_kinds: Optional[List[WatchedKind]] = None,
    ) -> "ControllerSet":
        return self.register(
            DeploymentController(
                name,
                deploy_manager=self.deploy_manager,
                asset_name=asset_name,
                hooks=hooks,
                extra_watched_kinds=extra_watched_kinds,
                **self._shared(),
            )
        )

    def with_daemonset_controller(
        self,
        name: str,
        asset_name: str,
        hooks: Optional[List[ManifestHook]] = None,
        extra_watched_kinds: Optional[List[WatchedKind]] = None,
    ) -> "ControllerSet":
        return self.register(
            DaemonSetController(
                name,
                deploy_manager=self.deploy_manager,
                asset_name=asset_name,
                hooks=hooks,
                extra_watched_kinds=extra_watched_kinds,
                **self._shared(),
            )
        )

    def with_storage_class_controller(
        self,
        name: str,
        asset_names: Iterable[str],
        hooks: Optional[List[ManifestHook]] = None,
    ) -> "ControllerSet":
        return self.register(
            StorageClassController(
                name,
                deploy_manager=self.deploy_manager,
                asset_names=asset_names,
                hooks=hooks,
                **self._shared(),
            )
        )

    ## Running #################################################################

    def setup_informers(self):
        """Register every controller's watches with the shared cache"""
        for controller in self._controllers:
            controller.setup_informers()

    def run(self, ctx: Context, worker_count: int = 1):
        """Start every registered controller and return. A controller that
        fails to start does not keep the others from starting.
        """
        log.info("Starting %d controllers", len(self._controllers))
        for controller in self._controllers:
            try:
                controller.run(ctx, worker_count)
            except Exception as err:  # pylint: disable=broad-exception-caught
                log.error(
                    "Failed to start controller [%s]: %s",
                    controller.name,
                    err,
                    exc_info=True,
                )

    ## Implementation Details ##################################################

    def _shared(self) -> dict:
        return {
            "operator_client": self.operator_client,
            "cache": self.cache,
            "event_recorder": self.event_recorder,
        }
