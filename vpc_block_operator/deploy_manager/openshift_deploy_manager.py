"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from typing import Iterator, List, Optional, Tuple

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.apply import recursive_diff
from openshift.dynamic.exceptions import ConflictError as ApiConflictError
from openshift.dynamic.exceptions import (
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config, constants
from ..context import Context
from ..exceptions import ConflictError, ResourceNotServedError, assert_cluster
from ..managed_object import ManagedObject
from ..utils import strip_server_fields
from .base import DeployManagerBase, KubeEventType, KubeWatchEvent

log = alog.use_channel("OSFTD")

# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, dynamic_client: Optional[DynamicClient] = None):
        """
        Args:
            dynamic_client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created lazily from
                the in-cluster config or the local kubeconfig.
        """
        self._client = dynamic_client

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    @alog.logged_function(log.debug2)
    def apply(self, resource_definition, field_manager, subresource=None):
        api_version, kind, name, namespace = self._get_resource_identifiers(
            resource_definition
        )
        resource_handle = self._get_resource_handle(kind, api_version)
        if resource_handle is None:
            raise ResourceNotServedError(f"Kind [{api_version}/{kind}] is not served")
        if not namespace:
            resource_handle.namespaced = False

        _, current = self.get_object_current_state(
            kind=kind, name=name, namespace=namespace, api_version=api_version
        )

        # Let the server set the managed fields
        resource_definition.setdefault("metadata", {}).pop("managedFields", None)
        target = resource_handle.status if subresource == "status" else resource_handle
        log.debug2(
            "Applying [%s/%s/%s] in %s as [%s]",
            api_version,
            kind,
            name,
            namespace,
            field_manager,
        )
        try:
            applied = target.server_side_apply(
                body=resource_definition,
                name=name,
                namespace=namespace,
                field_manager=field_manager,
                force_conflicts=True,
            ).to_dict()
        except ApiConflictError as err:
            raise ConflictError(
                f"Conflict applying [{kind}/{name}] as [{field_manager}]: {err}"
            ) from err

        return applied, self._manifest_diff(current or {}, applied)

    @alog.logged_function(log.debug2)
    def delete(self, kind, name, namespace=None, api_version=None):
        resource_handle = self._get_resource_handle(kind, api_version)
        if resource_handle is None:
            log.debug2("Kind [%s/%s] not served. Nothing to delete", api_version, kind)
            return False
        if not namespace:
            resource_handle.namespaced = False
        try:
            log.debug2("Deleting [%s/%s] from %s", kind, name, namespace)
            resource_handle.delete(name=name, namespace=namespace)
        except NotFoundError as err:
            log.debug2("Valid error caught deleting [%s/%s]: %s", kind, name, err)
            return False
        return True

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return True, None
        if not namespace:
            resource_handle.namespaced = False

        try:
            resource = resource_handle.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None
        return True, resource.to_dict()

    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return True, []
        try:
            list_obj = resource_handle.get(namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Listing objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            return True, []
        return True, list_obj.to_dict().get("items", [])

    def watch_objects(
        self,
        ctx: Context,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> Iterator[KubeWatchEvent]:
        watch_manager = Watch()
        ctx.on_cancel(watch_manager.stop)
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(
            resource_handle,
            f"Failed to fetch resource handle for {namespace}/{api_version}/{kind}",
        )

        resource_version = None
        while not ctx.cancelled():
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=config.watch_timeout_seconds,
                ):
                    event_resource = ManagedObject(event_obj["object"])
                    resource_version = event_resource.resource_version
                    yield KubeWatchEvent(
                        KubeEventType(event_obj["type"]), event_resource
                    )
            except client.exceptions.ApiException as exception:
                if exception.status != 410:
                    log.info("Unknown ApiException received, re-raising")
                    raise
                # Events were missed, so the caller has to list again
                log.debug2("Resource age expired, ending watch %s", kind)
                return
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4("Watch socket closed, restarting watch %s", kind)
            except urllib3.exceptions.ProtocolError:
                log.debug2("Invalid chunk from server, restarting watch %s", kind)

    def kind_exists(self, kind, api_version=None):
        return self._get_resource_handle(kind, api_version) is not None

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            kube_config.user_agent = constants.OPERATOR_NAME
            return DynamicClient(kubernetes.client.ApiClient(kube_config))

        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(
        self, kind: str, api_version: Optional[str]
    ) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        try:
            return self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No resource of kind [%s] found or multiple matching found", kind
            )
        return None

    @staticmethod
    def _manifest_diff(manifest_a: dict, manifest_b: dict) -> bool:
        """Compare two manifests for meaningful diff while ignoring fields that
        always change
        """
        change = bool(
            recursive_diff(
                strip_server_fields(manifest_a), strip_server_fields(manifest_b)
            )
        )
        log.debug2("Found change? %s", change)
        return change

    @staticmethod
    def _get_resource_identifiers(resource_definition):
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace")
        assert None not in [kind, name], "Cannot apply resource without kind or name"
        assert api_version is not None, "Cannot apply resource without apiVersion"
        return api_version, kind, name, namespace
