"""
Tests for the manifest hooks
"""

# Third Party
import pytest

# Local
from vpc_block_operator import constants
from vpc_block_operator.api import ClusterCSIDriverSpec
from vpc_block_operator.cache import ObjectCache
from vpc_block_operator.deploy_manager import DryRunDeployManager
from vpc_block_operator.exceptions import PreconditionError
from vpc_block_operator.hooks import (
    CA_BUNDLE_FILE,
    apply_hooks,
    ca_bundle_hook,
    encryption_key_hook,
    log_level_arg_hook,
    observed_proxy_hook,
    secret_annotation_key,
    secret_hash_annotation_hook,
)
from vpc_block_operator.test_helpers.helpers import (
    TEST_NAMESPACE,
    make_config_map,
    make_secret,
)

## Helpers #####################################################################


def make_workload():
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "driver", "namespace": TEST_NAMESPACE},
        "spec": {
            "template": {
                "metadata": {"labels": {"app": "driver"}},
                "spec": {
                    "containers": [
                        {
                            "name": "csi-driver",
                            "args": ["--endpoint=unix:///csi/csi.sock", "--v=2"],
                            "env": [
                                {
                                    "name": "HTTP_PROXY",
                                    "valueFrom": {"configMapKeyRef": {}},
                                }
                            ],
                        },
                        {"name": "liveness-probe", "args": ["--v=2"]},
                    ]
                },
            }
        },
    }


def make_cache(*resources):
    return ObjectCache(DryRunDeployManager(resources=resources))


def containers(manifest):
    return {
        container["name"]: container
        for container in manifest["spec"]["template"]["spec"]["containers"]
    }


def template_annotations(manifest):
    return manifest["spec"]["template"]["metadata"].get("annotations", {})


## apply_hooks #################################################################


def test_apply_hooks_order_and_copy():
    """Hooks run left to right on a copy of the manifest"""
    calls = []

    def first(_, manifest):
        calls.append("first")
        manifest["first"] = True
        return manifest

    def second(_, manifest):
        calls.append("second")
        assert manifest["first"]
        return manifest

    original = make_workload()
    rendered = apply_hooks(None, original, [first, second])
    assert calls == ["first", "second"]
    assert rendered["first"]
    assert "first" not in original


## log_level_arg_hook ##########################################################


@pytest.mark.parametrize(
    ["log_level", "expected"],
    [(None, "--v=2"), ("Debug", "--v=4"), ("TraceAll", "--v=8"), ("Bogus", "--v=2")],
)
def test_log_level_arg_hook(log_level, expected):
    """The verbosity arg of every container follows spec.logLevel"""
    rendered = log_level_arg_hook(
        ClusterCSIDriverSpec(log_level=log_level), make_workload()
    )
    for container in containers(rendered).values():
        assert expected in container["args"]
    assert "--endpoint=unix:///csi/csi.sock" in containers(rendered)["csi-driver"][
        "args"
    ]


## observed_proxy_hook #########################################################


def test_observed_proxy_hook_sets_env():
    """Observed proxy settings become env vars in every container"""
    spec = ClusterCSIDriverSpec(
        observed_config={
            "targetcsiconfig": {
                "proxy": {"httpProxy": "http://proxy", "noProxy": ".cluster.local"}
            }
        }
    )
    rendered = observed_proxy_hook(spec, make_workload())
    driver_env = containers(rendered)["csi-driver"]["env"]
    assert {"name": "HTTP_PROXY", "value": "http://proxy"} in driver_env
    assert {"name": "NO_PROXY", "value": ".cluster.local"} in driver_env
    assert not any(env["name"] == "HTTPS_PROXY" for env in driver_env)
    probe_env = containers(rendered)["liveness-probe"]["env"]
    assert {"name": "HTTP_PROXY", "value": "http://proxy"} in probe_env


def test_observed_proxy_hook_no_proxy():
    """Without an observed proxy the manifest is untouched"""
    assert observed_proxy_hook(ClusterCSIDriverSpec(), make_workload()) == (
        make_workload()
    )


## secret_hash_annotation_hook #################################################


def test_secret_hash_annotation_hook_tracks_content():
    """The annotation changes exactly when the secret content changes"""
    hook_v1 = secret_hash_annotation_hook(
        make_cache(make_secret("creds", data={"key": "v1"})), TEST_NAMESPACE, "creds"
    )
    hook_v1_again = secret_hash_annotation_hook(
        make_cache(make_secret("creds", data={"key": "v1"})), TEST_NAMESPACE, "creds"
    )
    hook_v2 = secret_hash_annotation_hook(
        make_cache(make_secret("creds", data={"key": "v2"})), TEST_NAMESPACE, "creds"
    )
    spec = ClusterCSIDriverSpec()
    key = secret_annotation_key("creds")
    hash_v1 = template_annotations(hook_v1(spec, make_workload()))[key]
    assert template_annotations(hook_v1_again(spec, make_workload()))[key] == hash_v1
    assert template_annotations(hook_v2(spec, make_workload()))[key] != hash_v1


def test_secret_hash_annotation_hook_missing_secret():
    hook = secret_hash_annotation_hook(make_cache(), TEST_NAMESPACE, "creds")
    with pytest.raises(PreconditionError):
        hook(ClusterCSIDriverSpec(), make_workload())


def test_secret_annotation_key_length():
    """The name part of the annotation key is capped"""
    key = secret_annotation_key("x" * 100)
    prefix, name = key.split("/")
    assert prefix == "operator.openshift.io"
    assert len(name) == 63
    assert name.startswith("dep-")


## ca_bundle_hook ##############################################################


def test_ca_bundle_hook_no_bundle():
    """Nothing is mounted until the bundle is injected"""
    hook = ca_bundle_hook(
        make_cache(make_config_map("bundle")), TEST_NAMESPACE, "bundle"
    )
    assert hook(ClusterCSIDriverSpec(), make_workload()) == make_workload()


def test_ca_bundle_hook_mounts_bundle():
    """The bundle is mounted into the named containers only"""
    cache = make_cache(
        make_config_map("bundle", data={constants.CA_BUNDLE_KEY: "--cert--"})
    )
    hook = ca_bundle_hook(cache, TEST_NAMESPACE, "bundle")
    rendered = hook(ClusterCSIDriverSpec(), make_workload())

    assert constants.CA_BUNDLE_HASH_ANNOTATION in template_annotations(rendered)
    volumes = rendered["spec"]["template"]["spec"]["volumes"]
    assert volumes == [
        {
            "name": constants.CA_BUNDLE_VOLUME_NAME,
            "configMap": {
                "name": "bundle",
                "items": [{"key": constants.CA_BUNDLE_KEY, "path": CA_BUNDLE_FILE}],
            },
        }
    ]
    mounts = containers(rendered)["csi-driver"]["volumeMounts"]
    assert mounts[0]["mountPath"] == constants.CA_BUNDLE_MOUNT_PATH
    assert "volumeMounts" not in containers(rendered)["liveness-probe"]

    # Rendering twice from the same inputs is identical
    assert hook(ClusterCSIDriverSpec(), make_workload()) == rendered


## encryption_key_hook #########################################################


def make_storage_class():
    return {
        "apiVersion": "storage.k8s.io/v1",
        "kind": "StorageClass",
        "metadata": {"name": "sc"},
        "parameters": {"encrypted": "false", "encryptionKey": ""},
    }


def test_encryption_key_hook():
    spec = ClusterCSIDriverSpec(
        driver_config={"ibmcloud": {"encryptionKeyCRN": "crn:v1:key"}}
    )
    rendered = encryption_key_hook(spec, make_storage_class())
    assert rendered["parameters"] == {
        "encrypted": "true",
        "encryptionKey": "crn:v1:key",
    }


def test_encryption_key_hook_no_key():
    rendered = encryption_key_hook(ClusterCSIDriverSpec(), make_storage_class())
    assert rendered == make_storage_class()
