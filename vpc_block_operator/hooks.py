"""
Manifest hooks mutate a rendered manifest before it is applied. Each hook is a
function (spec, manifest) -> manifest that depends only on the spec and on
objects it reads from the cache, so two renders from the same observed inputs
are identical. Hooks run as a pipeline in registration order.
"""

# Standard
from typing import Callable, Iterable, List, Optional
import copy
import re

# First Party
import alog

# Local
from . import constants
from .api import ClusterCSIDriverSpec
from .cache import ObjectCache
from .exceptions import assert_precondition
from .utils import content_hash, nested_get

log = alog.use_channel("HOOKS")

ManifestHook = Callable[[ClusterCSIDriverSpec, dict], dict]

# Longest allowed name part of an annotation key
MAX_ANNOTATION_NAME_LEN = 63

# File name of the CA bundle inside the mounted volume
CA_BUNDLE_FILE = "tls-ca-bundle.pem"

LOG_LEVEL_ARG = re.compile(r"^--v=\d+$")


## Pipeline ####################################################################


def apply_hooks(
    spec: Optional[ClusterCSIDriverSpec],
    manifest: dict,
    hooks: Iterable[ManifestHook],
) -> dict:
    """Run the hooks left to right on a copy of the manifest. Each hook gets the
    output of the one before it.
    """
    spec = spec or ClusterCSIDriverSpec()
    manifest = copy.deepcopy(manifest)
    for hook in hooks:
        log.debug3("Running hook [%s]", getattr(hook, "__name__", hook))
        manifest = hook(spec, manifest)
    return manifest


## Helpers #####################################################################


def _pod_spec(manifest: dict) -> dict:
    return manifest.setdefault("spec", {}).setdefault("template", {}).setdefault(
        "spec", {}
    )


def _containers(manifest: dict) -> List[dict]:
    return _pod_spec(manifest).get("containers") or []


def _set_template_annotation(manifest: dict, key: str, value: str):
    template_metadata = (
        manifest.setdefault("spec", {})
        .setdefault("template", {})
        .setdefault("metadata", {})
    )
    template_metadata.setdefault("annotations", {})[key] = value


def secret_annotation_key(secret_name: str) -> str:
    """The pod-template annotation holding the content hash of a secret"""
    prefix, name = constants.SECRET_HASH_ANNOTATION_PREFIX.split("/", 1)
    return f"{prefix}/{(name + secret_name)[:MAX_ANNOTATION_NAME_LEN]}"


def _has_named(items: List[dict], name: str) -> bool:
    return any(item.get("name") == name for item in items)


def _set_env(container: dict, name: str, value: str):
    env = container.setdefault("env", [])
    for env_var in env:
        if env_var.get("name") == name:
            env_var.pop("valueFrom", None)
            env_var["value"] = value
            return
    env.append({"name": name, "value": value})


## Hooks #######################################################################


def log_level_arg_hook(spec: ClusterCSIDriverSpec, manifest: dict) -> dict:
    """Set the --v=N argument of every container from spec.logLevel"""
    level = constants.OPERAND_LOG_LEVELS.get(
        spec.log_level or constants.DEFAULT_OPERATOR_LOG_LEVEL,
        constants.OPERAND_LOG_LEVELS[constants.DEFAULT_OPERATOR_LOG_LEVEL],
    )
    for container in _containers(manifest):
        container["args"] = [
            f"--v={level}" if LOG_LEVEL_ARG.match(str(arg)) else arg
            for arg in container.get("args") or []
        ]
    return manifest


def observed_proxy_hook(spec: ClusterCSIDriverSpec, manifest: dict) -> dict:
    """Inject the observed cluster proxy into the environment of every
    container
    """
    proxy = nested_get(spec.observed_config or {}, constants.OBSERVED_PROXY_PATH)
    if not proxy:
        return manifest
    for container in _containers(manifest):
        for proxy_key, env_name in constants.PROXY_ENV_VARS.items():
            if proxy.get(proxy_key):
                _set_env(container, env_name, proxy[proxy_key])
    return manifest


def secret_hash_annotation_hook(
    cache: ObjectCache, namespace: str, *secret_names: str
) -> ManifestHook:
    """Build a hook that annotates the pod template with the content hash of
    each named secret so that rotating a secret rolls the workload
    """

    def hook(_: ClusterCSIDriverSpec, manifest: dict) -> dict:
        for secret_name in secret_names:
            secret = cache.get("Secret", secret_name, namespace=namespace)
            assert_precondition(
                secret is not None,
                f"Secret [{namespace}/{secret_name}] not found",
            )
            _set_template_annotation(
                manifest,
                secret_annotation_key(secret_name),
                content_hash(secret.get("data")),
            )
        return manifest

    hook.__name__ = "secret_hash_annotation_hook"
    return hook


def ca_bundle_hook(
    cache: ObjectCache,
    namespace: str,
    config_map_name: str,
    container_names: Iterable[str] = ("csi-driver",),
) -> ManifestHook:
    """Build a hook that mounts the trusted CA bundle configmap into the named
    containers. Nothing changes until the bundle has been injected.
    """
    container_names = list(container_names)

    def hook(_: ClusterCSIDriverSpec, manifest: dict) -> dict:
        config_map = cache.get("ConfigMap", config_map_name, namespace=namespace)
        bundle = ((config_map or {}).get("data") or {}).get(constants.CA_BUNDLE_KEY)
        if not bundle:
            log.debug2("No CA bundle in [%s/%s] yet", namespace, config_map_name)
            return manifest

        _set_template_annotation(
            manifest, constants.CA_BUNDLE_HASH_ANNOTATION, content_hash(bundle)
        )
        pod_spec = _pod_spec(manifest)
        volumes = pod_spec.setdefault("volumes", [])
        if not _has_named(volumes, constants.CA_BUNDLE_VOLUME_NAME):
            volumes.append(
                {
                    "name": constants.CA_BUNDLE_VOLUME_NAME,
                    "configMap": {
                        "name": config_map_name,
                        "items": [
                            {"key": constants.CA_BUNDLE_KEY, "path": CA_BUNDLE_FILE}
                        ],
                    },
                }
            )
        for container in _containers(manifest):
            if container.get("name") not in container_names:
                continue
            mounts = container.setdefault("volumeMounts", [])
            if not _has_named(mounts, constants.CA_BUNDLE_VOLUME_NAME):
                mounts.append(
                    {
                        "name": constants.CA_BUNDLE_VOLUME_NAME,
                        "mountPath": constants.CA_BUNDLE_MOUNT_PATH,
                        "readOnly": True,
                    }
                )
        return manifest

    hook.__name__ = "ca_bundle_hook"
    return hook


def encryption_key_hook(spec: ClusterCSIDriverSpec, manifest: dict) -> dict:
    """Turn on encryption in a storage class when the custom resource names an
    encryption key
    """
    encryption_key = nested_get(spec.driver_config or {}, "ibmcloud.encryptionKeyCRN")
    if not encryption_key:
        return manifest
    parameters = manifest.setdefault("parameters", {})
    parameters[constants.ENCRYPTED_PARAMETER] = "true"
    parameters[constants.ENCRYPTION_KEY_PARAMETER] = encryption_key
    return manifest
