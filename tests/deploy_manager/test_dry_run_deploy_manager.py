"""Tests for the DryRunDeployManager

NOTE: The majority of the functionality is thoroughly exercised by all of the
    other unit tests, so the tests here only test elements that are particularly
    delicate and/or not covered elsewhere.
"""
# Standard
import threading

# Third Party
import pytest

# Local
from vpc_block_operator.context import Context
from vpc_block_operator.deploy_manager import DryRunDeployManager, KubeEventType
from vpc_block_operator.exceptions import (
    ClusterError,
    ConflictError,
    ResourceNotServedError,
)
from vpc_block_operator.field_ownership import owned_paths
from vpc_block_operator.test_helpers.helpers import (
    TEST_NAMESPACE,
    make_config_map,
    wait_for,
)

## Helpers #####################################################################


def make_deployment(replicas=1, name="foo"):
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": TEST_NAMESPACE},
        "spec": {"replicas": replicas},
    }


## Tests #######################################################################


def test_apply_create_and_noop():
    """Creating stamps server metadata and a repeated apply changes nothing"""
    dm = DryRunDeployManager()
    applied, changed = dm.apply(make_deployment(), field_manager="mgr")
    assert changed
    assert applied["metadata"]["generation"] == 1
    version = applied["metadata"]["resourceVersion"]
    assert owned_paths(applied, "mgr") == {("f:spec", "f:replicas")}

    applied, changed = dm.apply(make_deployment(), field_manager="mgr")
    assert not changed
    assert applied["metadata"]["resourceVersion"] == version


def test_apply_spec_change_bumps_generation():
    dm = DryRunDeployManager()
    dm.apply(make_deployment(), field_manager="mgr")
    applied, changed = dm.apply(make_deployment(replicas=2), field_manager="mgr")
    assert changed
    assert applied["metadata"]["generation"] == 2


def test_apply_stale_resource_version():
    """An apply carrying an outdated resourceVersion conflicts"""
    dm = DryRunDeployManager()
    applied, _ = dm.apply(make_deployment(), field_manager="mgr")
    dm.apply(make_deployment(replicas=3), field_manager="mgr")
    stale = make_deployment(replicas=4)
    stale["metadata"]["resourceVersion"] = applied["metadata"]["resourceVersion"]
    with pytest.raises(ConflictError):
        dm.apply(stale, field_manager="mgr")


def test_apply_unserved_kind():
    dm = DryRunDeployManager(served_kinds=["ConfigMap"])
    assert dm.kind_exists("ConfigMap")
    assert not dm.kind_exists("Deployment")
    with pytest.raises(ResourceNotServedError):
        dm.apply(make_deployment(), field_manager="mgr")


def test_apply_status_of_missing_object():
    dm = DryRunDeployManager()
    with pytest.raises(ClusterError):
        dm.apply(
            dict(make_deployment(), status={"replicas": 1}),
            field_manager="mgr",
            subresource="status",
        )


def test_delete():
    """Deleting reports whether there was anything to delete"""
    dm = DryRunDeployManager(resources=[make_config_map("cm")])
    assert dm.delete("ConfigMap", "cm", namespace=TEST_NAMESPACE)
    assert not dm.delete("ConfigMap", "cm", namespace=TEST_NAMESPACE)
    assert dm.get_object_current_state("ConfigMap", "cm", TEST_NAMESPACE) == (
        True,
        None,
    )


def test_get_wrong_api_version():
    dm = DryRunDeployManager(resources=[make_config_map("cm")])
    success, obj = dm.get_object_current_state(
        "ConfigMap", "cm", TEST_NAMESPACE, api_version="v2"
    )
    assert success and obj is None


def test_filter_objects_by_namespace():
    dm = DryRunDeployManager(
        resources=[
            make_config_map("a"),
            make_config_map("b", namespace="other"),
        ]
    )
    _, in_ns = dm.filter_objects_current_state("ConfigMap", namespace=TEST_NAMESPACE)
    assert [obj["metadata"]["name"] for obj in in_ns] == ["a"]
    _, everywhere = dm.filter_objects_current_state("ConfigMap")
    assert len(everywhere) == 2


@pytest.mark.timeout(10)
def test_watch_objects():
    """A watch lists the existing objects, then follows changes until the
    context is cancelled
    """
    dm = DryRunDeployManager(resources=[make_config_map("existing")])
    ctx = Context()
    events = []

    def follow():
        for event in dm.watch_objects(ctx, "ConfigMap", namespace=TEST_NAMESPACE):
            events.append((event.type, event.resource.name))

    thread = threading.Thread(target=follow, daemon=True)
    thread.start()
    assert wait_for(lambda: len(events) == 1)

    dm.apply(make_config_map("new", data={"a": "b"}), field_manager="mgr")
    dm.apply(make_config_map("other", namespace="elsewhere"), field_manager="mgr")
    dm.delete("ConfigMap", "new", namespace=TEST_NAMESPACE)
    assert wait_for(lambda: len(events) == 3)

    ctx.cancel()
    thread.join(timeout=5)
    assert not thread.is_alive()
    assert events == [
        (KubeEventType.ADDED, "existing"),
        (KubeEventType.ADDED, "new"),
        (KubeEventType.DELETED, "new"),
    ]
