"""
Composition of the IBM VPC Block CSI driver operator: every controller, the
assets and hooks each one uses, and the order they are started in.
"""

# Standard
from dataclasses import dataclass
from typing import Optional

# First Party
import alog

# Local
from . import config, constants
from .cache import ObjectCache
from .context import Context
from .controller_set import ControllerSet
from .controllers import SecretSyncController, StaticResourceController
from .deploy_manager import DeployManagerBase
from .events import EventRecorder
from .hooks import (
    ca_bundle_hook,
    encryption_key_hook,
    observed_proxy_hook,
    secret_hash_annotation_hook,
)
from .operator_client import OperatorStateAccessor

log = alog.use_channel("START")

STATIC_ASSETS = [
    "rbac/privileged_role.yaml",
    "rbac/node_privileged_binding.yaml",
    "rbac/prometheus_role.yaml",
    "rbac/prometheus_rolebinding.yaml",
    "rbac/kube_rbac_proxy_role.yaml",
    "rbac/kube_rbac_proxy_binding.yaml",
    "rbac/initcontainer_role.yaml",
    "rbac/initcontainer_rolebinding.yaml",
    "rbac/lease_leader_election_role.yaml",
    "rbac/lease_leader_election_rolebinding.yaml",
    "rbac/main_attacher_binding.yaml",
    "rbac/main_provisioner_binding.yaml",
    "rbac/volumesnapshot_reader_provisioner_binding.yaml",
    "rbac/configmap_and_secret_reader_provisioner_binding.yaml",
    "rbac/main_resizer_binding.yaml",
    "rbac/main_snapshotter_binding.yaml",
    "configmap.yaml",
    "csidriver.yaml",
    "service.yaml",
    "cabundle_cm.yaml",
    "controller_sa.yaml",
    "node_sa.yaml",
    "network-policy-allow-ingress-to-csi-driver-metrics.yaml",
]

CONDITIONAL_ASSETS = ["volumesnapshotclass.yaml"]

STORAGE_CLASS_ASSETS = [
    "storageclass/vpc-block-10iopsTier-StorageClass.yaml",
    "storageclass/vpc-block-5iopsTier-StorageClass.yaml",
    "storageclass/vpc-block-custom-StorageClass.yaml",
]

SERVICE_MONITOR_ASSETS = ["servicemonitor.yaml"]

CRD_API_VERSION = "apiextensions.k8s.io/v1"


@dataclass
class Operator:
    """Handles on everything started by start_operator"""

    cache: ObjectCache
    operator_client: OperatorStateAccessor
    event_recorder: EventRecorder
    controller_set: ControllerSet
    secret_sync_controller: SecretSyncController
    service_monitor_controller: StaticResourceController


def build_operator(deploy_manager: DeployManagerBase) -> Operator:
    """Compose every controller without starting anything

    Raises:
        ConfigError: An asset is missing or malformed
        DuplicateNameError: Two controllers share a name
    """
    namespace = config.operator_namespace
    cache = ObjectCache(deploy_manager)
    operator_client = OperatorStateAccessor(deploy_manager)
    event_recorder = EventRecorder(deploy_manager)

    def volume_snapshot_class_crd_exists() -> bool:
        return (
            cache.get(
                "CustomResourceDefinition",
                config.volume_snapshot_class_crd,
                api_version=CRD_API_VERSION,
            )
            is not None
        )

    namespaced_inputs = [
        ("Secret", "v1", namespace),
        ("ConfigMap", "v1", namespace),
    ]

    controller_set = (
        ControllerSet(operator_client, cache, deploy_manager, event_recorder)
        .with_log_level_controller()
        .with_management_state_controller(constants.OPERAND_NAME, False)
        .with_static_resources_controller(
            "IBMBlockDriverStaticResourcesController", STATIC_ASSETS
        )
        .with_conditional_static_resources_controller(
            "IBMBlockDriverConditionalStaticResourcesController",
            CONDITIONAL_ASSETS,
            should_install=volume_snapshot_class_crd_exists,
            should_remove=lambda: False,
        )
        .with_config_observer_controller("IBMBlockDriverCSIConfigObserverController")
        .with_deployment_controller(
            "IBMBlockDriverControllerServiceController",
            "controller.yaml",
            hooks=[
                observed_proxy_hook,
                secret_hash_annotation_hook(
                    cache, namespace, config.metrics_cert_secret_name
                ),
                ca_bundle_hook(cache, namespace, config.trusted_ca_config_map),
            ],
            extra_watched_kinds=namespaced_inputs,
        )
        .with_daemonset_controller(
            "IBMBlockDriverNodeServiceController",
            "node.yaml",
            hooks=[
                observed_proxy_hook,
                ca_bundle_hook(cache, namespace, config.trusted_ca_config_map),
            ],
            extra_watched_kinds=namespaced_inputs[1:],
        )
        .with_storage_class_controller(
            "IBMBlockStorageClassController",
            STORAGE_CLASS_ASSETS,
            hooks=[encryption_key_hook],
        )
    )

    secret_sync_controller = SecretSyncController(
        "IBMBlockDriverSecretSyncController",
        operator_client,
        cache,
        deploy_manager,
        event_recorder=event_recorder,
    )

    service_monitor_controller = StaticResourceController(
        "IBMBlockDriverServiceMonitorController",
        operator_client,
        cache,
        deploy_manager,
        SERVICE_MONITOR_ASSETS,
        ignore_not_found_on_create=True,
        event_recorder=event_recorder,
    )

    return Operator(
        cache=cache,
        operator_client=operator_client,
        event_recorder=event_recorder,
        controller_set=controller_set,
        secret_sync_controller=secret_sync_controller,
        service_monitor_controller=service_monitor_controller,
    )


@alog.logged_function(log.info)
def start_operator(
    ctx: Context,
    deploy_manager: DeployManagerBase,
    worker_count: Optional[int] = None,
) -> Operator:
    """Compose and start the operator. Returns once everything is running."""
    worker_count = worker_count or config.worker_count
    operator = build_operator(deploy_manager)

    # Watches must be registered before the caches fill
    operator.controller_set.setup_informers()
    operator.secret_sync_controller.setup_informers()
    operator.service_monitor_controller.setup_informers()

    log.info("Starting the informers")
    operator.cache.start(ctx)
    with alog.ContextTimer(log.debug, "Cache sync finished in "):
        operator.cache.wait_for_sync(config.cache_sync_timeout_seconds)
    operator.event_recorder.start(ctx)

    log.info("Starting ServiceMonitor controller")
    operator.service_monitor_controller.run(ctx, 1)

    log.info("Starting controllerset")
    operator.secret_sync_controller.run(ctx, 1)
    operator.controller_set.run(ctx, worker_count)
    return operator


def run_operator(ctx: Context, deploy_manager: DeployManagerBase):
    """Start the operator and block until the context is cancelled"""
    start_operator(ctx, deploy_manager)
    ctx.wait()
    log.info("Operator stopped")
