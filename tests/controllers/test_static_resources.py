"""
Tests for the static and conditional static resource controllers
"""

# Third Party
import pytest

# Local
from vpc_block_operator import config, events
from vpc_block_operator.context import Context
from vpc_block_operator.controllers import (
    ConditionalResourceEntry,
    ConditionalStaticResourceController,
    StaticResourceController,
    TickResult,
)
from vpc_block_operator.events import EventRecorder
from vpc_block_operator.status import get_condition
from vpc_block_operator.test_helpers.helpers import (
    BrokenWatchDeployManager,
    library_config,
    setup_clients,
    wait_for,
)

## Helpers #####################################################################

CONFIG_MAP_ASSET = "configmap.yaml"
CONFIG_MAP_NAME = "ibm-vpc-block-csi-configmap"
CSI_DRIVER_ASSET = "csidriver.yaml"
CSI_DRIVER_NAME = "vpc.block.csi.ibm.io"


def get_config_map(dm):
    return dm.get_obj("ConfigMap", CONFIG_MAP_NAME, config.operator_namespace)


class Toggle:
    """Predicate whose value the test flips"""

    def __init__(self, value=False):
        self.value = value

    def __call__(self):
        return self.value


def make_conditional(dm, client, cache, install, remove):
    return ConditionalStaticResourceController.from_assets(
        "Conditional",
        client,
        cache,
        dm,
        [CONFIG_MAP_ASSET],
        should_install=install,
        should_remove=remove,
    )


## StaticResourceController ####################################################


def test_static_applies_then_idles():
    """The first tick creates every asset and the second changes nothing"""
    dm, client, cache = setup_clients()
    recorder = EventRecorder(dm)
    controller = StaticResourceController(
        "Static",
        client,
        cache,
        dm,
        [CONFIG_MAP_ASSET, CSI_DRIVER_ASSET],
        event_recorder=recorder,
    )
    assert controller.tick(Context()).result == TickResult.APPLIED
    assert get_config_map(dm)["data"]["IKS_BLOCK_PROVIDER_NAME"] == "vpc"
    assert dm.has_obj("CSIDriver", CSI_DRIVER_NAME)
    assert len(dm.operand_applies("Static")) == 2

    assert controller.tick(Context()).result == TickResult.NO_CHANGE_NEEDED
    assert len(dm.operand_applies("Static")) == 2

    recorder.flush()
    _, written = dm.filter_objects_current_state(
        "Event", namespace=config.operator_namespace
    )
    assert sorted(event["reason"] for event in written) == [
        "CSIDriverCreated",
        "ConfigMapCreated",
    ]


def test_static_repairs_drift():
    """A field overwritten by another writer is applied again"""
    dm, client, cache = setup_clients()
    controller = StaticResourceController(
        "Static", client, cache, dm, [CONFIG_MAP_ASSET]
    )
    controller.tick(Context())
    dm.apply(
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": CONFIG_MAP_NAME,
                "namespace": config.operator_namespace,
            },
            "data": {"IKS_BLOCK_PROVIDER_NAME": "classic"},
        },
        field_manager="intruder",
    )
    assert get_config_map(dm)["data"]["IKS_BLOCK_PROVIDER_NAME"] == "classic"

    assert controller.tick(Context()).result == TickResult.APPLIED
    assert get_config_map(dm)["data"]["IKS_BLOCK_PROVIDER_NAME"] == "vpc"


def test_static_fields_of_others_untouched():
    """Fields added by another writer are kept"""
    dm, client, cache = setup_clients()
    controller = StaticResourceController(
        "Static", client, cache, dm, [CONFIG_MAP_ASSET]
    )
    controller.tick(Context())
    dm.apply(
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": CONFIG_MAP_NAME,
                "namespace": config.operator_namespace,
            },
            "data": {"EXTRA": "value"},
        },
        field_manager="other",
    )
    assert controller.tick(Context()).result == TickResult.NO_CHANGE_NEEDED
    assert get_config_map(dm)["data"]["EXTRA"] == "value"


def test_static_unserved_kind_ignored():
    """With ignore_not_found_on_create, an unserved kind is skipped"""
    dm, client, cache = setup_clients(
        served_kinds=["ClusterCSIDriver", "ConfigMap"]
    )
    controller = StaticResourceController(
        "Monitor",
        client,
        cache,
        dm,
        ["servicemonitor.yaml"],
        ignore_not_found_on_create=True,
    )
    assert controller.watched_kinds() == []
    assert controller.tick(Context()).result == TickResult.NO_CHANGE_NEEDED
    status = client.get_instance()["status"]
    assert get_condition("MonitorDegraded", status)["status"] == "False"


def test_static_unserved_kind_fails():
    """Without ignore_not_found_on_create, an unserved kind degrades the
    controller and records a warning
    """
    dm, client, cache = setup_clients(
        served_kinds=["ClusterCSIDriver", "ConfigMap", "Event"]
    )
    recorder = EventRecorder(dm)
    controller = StaticResourceController(
        "Monitor", client, cache, dm, ["servicemonitor.yaml"], event_recorder=recorder
    )
    assert controller.tick(Context()).result == TickResult.FAILED
    status = client.get_instance()["status"]
    assert get_condition("MonitorDegraded", status)["status"] == "True"

    recorder.flush()
    _, written = dm.filter_objects_current_state(
        "Event", namespace=config.operator_namespace
    )
    assert [(event["reason"], event["type"]) for event in written] == [
        ("ServiceMonitorApplyFailed", events.WARNING)
    ]


def test_static_watched_kinds():
    dm, client, cache = setup_clients()
    controller = StaticResourceController(
        "Static",
        client,
        cache,
        dm,
        [CONFIG_MAP_ASSET, "cabundle_cm.yaml", CSI_DRIVER_ASSET],
    )
    assert controller.watched_kinds() == [
        ("ConfigMap", "v1", config.operator_namespace),
        ("CSIDriver", "storage.k8s.io/v1", None),
    ]


@pytest.mark.timeout(10)
def test_static_recreates_after_broken_watch():
    """An object deleted while its watch was broken is created again once the
    watch recovers
    """
    dm, client, cache = setup_clients(
        deploy_manager_class=BrokenWatchDeployManager, broken_kind="ConfigMap"
    )
    controller = StaticResourceController(
        "Static", client, cache, dm, [CONFIG_MAP_ASSET]
    )
    assert controller.tick(Context()).result == TickResult.APPLIED

    ctx = Context()
    with library_config(watch_retry_delay_seconds=0):
        try:
            controller.setup_informers()
            cache.start(ctx)
            cache.wait_for_sync(5)
            dm.delete("ConfigMap", CONFIG_MAP_NAME, namespace=config.operator_namespace)
            dm.release.set()
            assert wait_for(lambda: dm.watch_calls == 2)
            cache.wait_for_sync(5)

            assert controller.tick(Context()).result == TickResult.APPLIED
            assert get_config_map(dm) is not None
        finally:
            ctx.cancel()


## ConditionalStaticResourceController #########################################


def test_conditional_install_and_remove():
    """Assets are installed once and removed once as the predicates flip"""
    dm, client, cache = setup_clients()
    install = Toggle(True)
    remove = Toggle(False)
    controller = make_conditional(dm, client, cache, install, remove)

    assert controller.tick(Context()).result == TickResult.APPLIED
    assert get_config_map(dm) is not None
    assert controller.tick(Context()).result == TickResult.NO_CHANGE_NEEDED
    assert len(dm.operand_applies("Conditional")) == 1

    install.value = False
    remove.value = True
    assert controller.tick(Context()).result == TickResult.APPLIED
    assert get_config_map(dm) is None
    assert dm.delete.call_count == 1

    # Removing what is already gone is not an error
    assert controller.tick(Context()).result == TickResult.NO_CHANGE_NEEDED
    assert dm.delete.call_count == 1


def test_conditional_neither_predicate():
    """With neither predicate true the asset is left alone"""
    dm, client, cache = setup_clients()
    controller = make_conditional(dm, client, cache, Toggle(False), Toggle(False))
    assert controller.tick(Context()).result == TickResult.NO_CHANGE_NEEDED
    assert not dm.operand_applies("Conditional")
    assert not dm.delete.called


def test_conditional_predicate_conflict():
    """Both predicates true fails the tick without touching anything"""
    dm, client, cache = setup_clients()
    controller = make_conditional(dm, client, cache, Toggle(True), Toggle(True))
    outcome = controller.tick(Context())
    assert outcome.result == TickResult.FAILED
    assert not dm.operand_applies("Conditional")
    assert not dm.delete.called
    condition = get_condition(
        "ConditionalDegraded", client.get_instance()["status"]
    )
    assert condition["status"] == "True"
    assert "both true" in condition["message"]


def test_conditional_conflict_checked_before_any_change():
    """A conflict in a later entry stops the earlier ones from applying"""
    dm, client, cache = setup_clients()
    controller = ConditionalStaticResourceController(
        "Conditional",
        client,
        cache,
        dm,
        [
            ConditionalResourceEntry(CONFIG_MAP_ASSET, Toggle(True), Toggle(False)),
            ConditionalResourceEntry(CSI_DRIVER_ASSET, Toggle(True), Toggle(True)),
        ],
    )
    assert controller.tick(Context()).result == TickResult.FAILED
    assert not dm.operand_applies("Conditional")


@pytest.mark.parametrize("should_install", [True, False])
def test_conditional_watches_nothing(should_install):
    dm, client, cache = setup_clients()
    controller = make_conditional(
        dm, client, cache, Toggle(should_install), Toggle(False)
    )
    assert controller.watched_kinds() == []
