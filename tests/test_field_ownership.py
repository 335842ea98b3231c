"""
Tests for the server-side-apply field ownership emulation
"""

# Third Party
import pytest

# Local
from vpc_block_operator.exceptions import ExtractionError
from vpc_block_operator.field_ownership import (
    STATUS_SUBRESOURCE,
    applied_fields,
    apply_owned_fields,
    collect_paths,
    extract_managed,
    fields_v1_to_paths,
    list_map_keys,
    owned_paths,
    paths_to_fields_v1,
)

## Helpers #####################################################################


def make_config_map(data, labels=None):
    obj = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "cm", "namespace": "ns"},
        "data": data,
    }
    if labels:
        obj["metadata"]["labels"] = labels
    return obj


def make_status(*conditions):
    return {
        "apiVersion": "operator.openshift.io/v1",
        "kind": "ClusterCSIDriver",
        "metadata": {"name": "instance"},
        "status": {"conditions": list(conditions)},
    }


## Paths #######################################################################


def test_list_map_keys_prefers_type_over_name():
    """Conditions are keyed by type"""
    assert list_map_keys([{"type": "A", "status": "True"}]) == ("type",)
    assert list_map_keys([{"name": "a"}, {"name": "b"}]) == ("name",)


def test_list_map_keys_atomic_lists():
    """Scalar lists and lists without a unique key are atomic"""
    assert list_map_keys(["a", "b"]) is None
    assert list_map_keys([{"name": "a"}, {"name": "a"}]) is None
    assert list_map_keys([]) is None


def test_collect_paths_keyed_list():
    """Keyed list items get an item marker and a path per field"""
    paths = collect_paths({"env": [{"name": "A", "value": "1"}]})
    assert paths == {
        ("f:env", 'k:{"name":"A"}', "."),
        ("f:env", 'k:{"name":"A"}', "f:name"),
        ("f:env", 'k:{"name":"A"}', "f:value"),
    }


def test_collect_paths_empty_map_is_a_leaf():
    """An empty map is owned as a value"""
    assert collect_paths({"emptyDir": {}}) == {("f:emptyDir",)}


def test_applied_fields_main_resource():
    """The main resource claims neither identity nor status"""
    manifest = make_config_map({"x": "1"}, labels={"app": "a"})
    manifest["metadata"]["resourceVersion"] = "3"
    manifest["status"] = {"foo": "bar"}
    assert applied_fields(manifest) == {
        "data": {"x": "1"},
        "metadata": {"labels": {"app": "a"}},
    }


def test_applied_fields_status_subresource():
    """The status subresource only claims status"""
    manifest = make_status({"type": "A", "status": "True"})
    assert applied_fields(manifest, STATUS_SUBRESOURCE) == {
        "status": {"conditions": [{"type": "A", "status": "True"}]}
    }


## FieldsV1 ####################################################################


def test_fields_v1_encoding():
    """Paths encode to the nested FieldsV1 tree and back"""
    paths = {("f:data", "f:x"), ("f:data", "f:y"), ("f:spec", 'k:{"type":"A"}', ".")}
    fields_v1 = paths_to_fields_v1(paths)
    assert fields_v1 == {
        "f:data": {"f:x": {}, "f:y": {}},
        "f:spec": {'k:{"type":"A"}': {".": {}}},
    }
    assert fields_v1_to_paths(fields_v1) == paths


def test_fields_v1_bad_element():
    """Unknown path elements cannot be decoded"""
    with pytest.raises(ExtractionError):
        fields_v1_to_paths({"x:foo": {}})


def test_fields_v1_bad_node():
    """Every node must be a map"""
    with pytest.raises(ExtractionError):
        fields_v1_to_paths({"f:foo": "bar"})


## Apply #######################################################################


def test_apply_new_object():
    """Creating an object records every applied field for the manager"""
    merged = apply_owned_fields(
        None, make_config_map({"x": "1", "y": "2"}, labels={"a": "b"}), "first"
    )
    assert merged["data"] == {"x": "1", "y": "2"}
    assert merged["metadata"]["name"] == "cm"
    assert owned_paths(merged, "first") == {
        ("f:data", "f:x"),
        ("f:data", "f:y"),
        ("f:metadata", "f:labels", "f:a"),
    }


def test_apply_drops_omitted_fields():
    """A field the manager stops applying is removed"""
    merged = apply_owned_fields(None, make_config_map({"x": "1", "y": "2"}), "first")
    merged = apply_owned_fields(merged, make_config_map({"x": "1"}), "first")
    assert merged["data"] == {"x": "1"}
    assert owned_paths(merged, "first") == {("f:data", "f:x")}


def test_apply_shared_fields_survive():
    """A field dropped by one manager stays while another manager owns it"""
    merged = apply_owned_fields(None, make_config_map({"x": "1", "y": "2"}), "first")
    merged = apply_owned_fields(merged, make_config_map({"y": "2"}), "second")
    merged = apply_owned_fields(merged, make_config_map({"x": "1"}), "first")
    assert merged["data"] == {"x": "1", "y": "2"}
    assert owned_paths(merged, "second") == {("f:data", "f:y")}


def test_apply_changed_value_moves_ownership():
    """A manager that changes a value takes ownership of it"""
    merged = apply_owned_fields(None, make_config_map({"x": "1", "y": "2"}), "first")
    merged = apply_owned_fields(merged, make_config_map({"y": "3"}), "second")
    assert merged["data"] == {"x": "1", "y": "3"}
    assert owned_paths(merged, "first") == {("f:data", "f:x")}
    assert owned_paths(merged, "second") == {("f:data", "f:y")}


def test_apply_keeps_emptied_owned_map():
    """A map emptied by the apply that still owns it is not pruned"""
    proxy_path = ["spec", "observedConfig", "targetcsiconfig", "proxy"]

    def make_obj(proxy):
        return {
            "apiVersion": "operator.openshift.io/v1",
            "kind": "ClusterCSIDriver",
            "metadata": {"name": "instance"},
            "spec": {"observedConfig": {"targetcsiconfig": {"proxy": proxy}}},
        }

    merged = apply_owned_fields(None, make_obj({"httpProxy": "http://p"}), "obs")
    merged = apply_owned_fields(merged, make_obj({}), "obs")
    value = merged
    for key in proxy_path:
        value = value[key]
    assert value == {}


def test_apply_status_conditions_per_manager():
    """Managers owning different conditions do not disturb each other"""
    merged = apply_owned_fields(
        make_status(),
        make_status({"type": "ADegraded", "status": "False"}),
        "A",
        STATUS_SUBRESOURCE,
    )
    merged = apply_owned_fields(
        merged,
        make_status({"type": "BDegraded", "status": "True"}),
        "B",
        STATUS_SUBRESOURCE,
    )
    assert [cond["type"] for cond in merged["status"]["conditions"]] == [
        "ADegraded",
        "BDegraded",
    ]
    assert extract_managed(merged, "A", STATUS_SUBRESOURCE) == {
        "status": {"conditions": [{"type": "ADegraded", "status": "False"}]}
    }

    # Dropping a condition only removes that manager's condition
    merged = apply_owned_fields(
        merged,
        make_status({"type": "AAvailable", "status": "True"}),
        "A",
        STATUS_SUBRESOURCE,
    )
    assert merged["status"]["conditions"] == [
        {"type": "BDegraded", "status": "True"},
        {"type": "AAvailable", "status": "True"},
    ]


## Extraction ##################################################################


def test_extract_managed_unknown_manager():
    """A manager that never applied owns nothing"""
    merged = apply_owned_fields(None, make_config_map({"x": "1"}), "first")
    assert extract_managed(merged, "other") is None


def test_extract_managed_subresource_is_separate():
    """Main resource and status ownership are tracked apart"""
    merged = apply_owned_fields(None, make_config_map({"x": "1"}), "first")
    assert extract_managed(merged, "first") == {"data": {"x": "1"}}
    assert extract_managed(merged, "first", STATUS_SUBRESOURCE) is None


def test_extract_managed_shape_mismatch():
    """Owned map fields on a value that is not a map cannot be extracted"""
    merged = apply_owned_fields(None, make_config_map({"x": "1"}), "first")
    merged["data"] = ["x"]
    with pytest.raises(ExtractionError):
        extract_managed(merged, "first")


def test_extract_managed_invalid_entries():
    """managedFields must be a list of maps"""
    obj = make_config_map({"x": "1"})
    obj["metadata"]["managedFields"] = {"manager": "first"}
    with pytest.raises(ExtractionError):
        extract_managed(obj, "first")
