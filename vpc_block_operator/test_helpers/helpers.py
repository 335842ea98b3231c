"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import Callable, Iterable, Optional, Tuple
from unittest import mock
import base64
import copy
import inspect
import os
import threading
import time

# First Party
import alog

# Local
from vpc_block_operator import constants
from vpc_block_operator.cache import ObjectCache
from vpc_block_operator.config import library_config as config_detail_dict
from vpc_block_operator.deploy_manager import DryRunDeployManager
from vpc_block_operator.operator_client import OperatorStateAccessor

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = config_detail_dict.instance_name
TEST_NAMESPACE = config_detail_dict.operator_namespace


def setup_cr(
    name=TEST_INSTANCE_NAME,
    management_state=constants.MANAGED,
    spec=None,
    status=None,
    **kwargs,
) -> dict:
    """Make a ClusterCSIDriver instance"""
    cr_dict = copy.deepcopy(kwargs)
    cr_dict.setdefault("kind", constants.CSI_DRIVER_KIND)
    cr_dict.setdefault("apiVersion", constants.CSI_DRIVER_API_VERSION)
    cr_dict.setdefault("metadata", {}).setdefault("name", name)
    cr_dict.setdefault("spec", {}).update(copy.deepcopy(spec or {}))
    cr_dict["spec"].setdefault("managementState", management_state)
    if status is not None:
        cr_dict["status"] = copy.deepcopy(status)
    return cr_dict


def make_secret(name, namespace=TEST_NAMESPACE, data=None, secret_type="Opaque"):
    """Make a Secret whose string values are base64 encoded"""
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace},
        "type": secret_type,
        "data": {
            key: base64.b64encode(val.encode("utf-8")).decode("utf-8")
            for key, val in (data or {}).items()
        },
    }


def make_config_map(name, namespace=TEST_NAMESPACE, data=None):
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": copy.deepcopy(data or {}),
    }


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    try:
        yield
    finally:
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll the predicate until it holds or the timeout passes"""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def get_failable_method(fail_flag, method, failure_return=False):
    """Wrap a method so that it raises, returns failure_return, or passes
    through depending on the fail flag
    """

    def failable_method(*args, **kwargs):
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            res = fail_flag()
            if res is not None:
                return res
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager, records every
    call in a mock, and can simulate failures in each of its operations
    """

    def __init__(
        self,
        apply_fail=False,
        delete_fail=False,
        get_state_fail=False,
        resources: Optional[Iterable[dict]] = None,
        **kwargs,
    ):
        super().__init__(resources=resources, **kwargs)
        self.apply = mock.Mock(
            side_effect=get_failable_method(apply_fail, super().apply, (None, False))
        )
        self.delete = mock.Mock(
            side_effect=get_failable_method(delete_fail, super().delete, False)
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                get_state_fail, super().get_object_current_state, (False, None)
            )
        )

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return self.get_object_current_state(kind, name, namespace, api_version)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def applied_by(self, field_manager: str, kind: Optional[str] = None):
        """Manifests applied by the given field manager, in call order"""
        return [
            call.args[0]
            for call in self.apply.call_args_list
            if call.kwargs.get("field_manager") == field_manager
            and (kind is None or call.args[0].get("kind") == kind)
        ]

    def operand_applies(self, field_manager: str):
        """Applies by the field manager other than writes to the instance"""
        return [
            manifest
            for manifest in self.applied_by(field_manager)
            if manifest.get("kind") != constants.CSI_DRIVER_KIND
        ]


class BrokenWatchDeployManager(MockDeployManager):
    """MockDeployManager whose first watches of one kind break. Each broken
    watch blocks until release is set and then raises.
    """

    def __init__(self, broken_kind: str, failures: int = 1, **kwargs):
        super().__init__(**kwargs)
        self.broken_kind = broken_kind
        self.failures = failures
        self.watch_calls = 0
        self.release = threading.Event()

    def watch_objects(self, ctx, kind, api_version=None, namespace=None):
        if kind == self.broken_kind:
            self.watch_calls += 1
            if self.watch_calls <= self.failures:
                self.release.wait(5)
                raise RuntimeError(f"Watch of {kind} broke")
        yield from super().watch_objects(ctx, kind, api_version, namespace)


def setup_clients(
    cr: Optional[dict] = None,
    resources: Optional[Iterable[dict]] = None,
    deploy_cr: bool = True,
    deploy_manager_class: type = MockDeployManager,
    **kwargs,
) -> Tuple[MockDeployManager, OperatorStateAccessor, ObjectCache]:
    """Set up an in-memory cluster holding the instance and the given resources
    along with the accessor and cache the controllers share
    """
    all_resources = list(resources or [])
    if deploy_cr:
        all_resources.insert(0, cr or setup_cr())
    deploy_manager = deploy_manager_class(resources=all_resources, **kwargs)
    return (
        deploy_manager,
        OperatorStateAccessor(deploy_manager),
        ObjectCache(deploy_manager),
    )
