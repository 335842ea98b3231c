"""
Controller that publishes the cluster-wide proxy configuration into
spec.observedConfig of the ClusterCSIDriver, where the workload hooks read it
"""

# Standard
from typing import List

# First Party
import alog

# Local
from .. import constants
from ..api import ClusterCSIDriverSpec
from ..context import Context
from ..deploy_manager import DeployManagerBase
from ..utils import nested_get, nested_set
from .base import ControllerBase, ReconcileOutcome, WatchedKind

log = alog.use_channel("CFGOB")


class ConfigObserverController(ControllerBase):
    """Copies status.httpProxy, status.httpsProxy and status.noProxy of the
    cluster Proxy into the custom resource
    """

    def __init__(
        self,
        name: str,
        operator_client,
        cache,
        deploy_manager: DeployManagerBase,
        **kwargs,
    ):
        super().__init__(name, operator_client, cache, **kwargs)
        self.deploy_manager = deploy_manager

    def watched_kinds(self) -> List[WatchedKind]:
        if not self.deploy_manager.kind_exists(
            constants.PROXY_KIND, constants.PROXY_API_VERSION
        ):
            return []
        return [(constants.PROXY_KIND, constants.PROXY_API_VERSION, None)]

    def observe(self) -> dict:
        """Read the proxy settings of the cluster. A cluster without a Proxy
        has no proxy settings.
        """
        proxy = None
        if self.deploy_manager.kind_exists(
            constants.PROXY_KIND, constants.PROXY_API_VERSION
        ):
            proxy = self.cache.get(
                constants.PROXY_KIND,
                constants.PROXY_NAME,
                api_version=constants.PROXY_API_VERSION,
            )
        proxy_status = (proxy or {}).get("status") or {}
        return {
            key: proxy_status[key]
            for key in constants.PROXY_ENV_VARS
            if proxy_status.get(key)
        }

    def sync(
        self, ctx: Context, instance: dict, spec: ClusterCSIDriverSpec
    ) -> ReconcileOutcome:
        observed = self.observe()
        previous = self.operator_client.extract_spec(instance, self.name)
        previous_proxy = (
            nested_get(previous.observed_config or {}, constants.OBSERVED_PROXY_PATH)
            if previous is not None
            else None
        )
        if previous_proxy == observed:
            log.debug3("Observed proxy unchanged")
            return ReconcileOutcome()

        log.info("Observed new proxy configuration %s", list(observed))
        observed_config = {}
        nested_set(observed_config, constants.OBSERVED_PROXY_PATH, observed)
        ctx.raise_if_cancelled()
        self.operator_client.apply_spec_with_retry(
            self.name, lambda _: {"observedConfig": observed_config}, ctx=ctx
        )
        self.record_event("ObservedConfigChanged", "Writing updated observed config")
        return ReconcileOutcome(changed=True)
