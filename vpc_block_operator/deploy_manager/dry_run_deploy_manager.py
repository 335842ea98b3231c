"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map. It emulates the parts of the API server the controllers rely on:
server-side apply with field ownership, optimistic concurrency on
resourceVersion, and watches.
"""

# Standard
from datetime import datetime, timezone
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple
import copy
import uuid

# First Party
import alog

# Local
from ..context import Context
from ..exceptions import ClusterError, ConflictError, ResourceNotServedError
from ..field_ownership import apply_owned_fields
from ..managed_object import ManagedObject, ObjectKey
from ..utils import strip_server_fields
from .base import DeployManagerBase, KubeEventType, KubeWatchEvent

log = alog.use_channel("DRY-RUN")

# How often a watch stream checks for cancellation while idle
WATCH_POLL_SECONDS = 0.1

WatchCallback = Callable[[KubeEventType, dict], None]

# (kind, api_version, namespace, callback)
WatchRegistration = Tuple[str, Optional[str], Optional[str], WatchCallback]


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(
        self,
        resources: Optional[Iterable[dict]] = None,
        served_kinds: Optional[Iterable[str]] = None,
    ):
        """Construct with an optional set of objects that already exist

        Args:
            resources:  Optional[Iterable[dict]]
                Objects present in the cluster from the start
            served_kinds:  Optional[Iterable[str]]
                If given, only these kinds are served. Otherwise every kind is.
        """
        self._cluster_content: Dict[ObjectKey, dict] = {}
        self._served_kinds = set(served_kinds) if served_kinds is not None else None
        self._watches: List[WatchRegistration] = []
        self._resource_version = 0
        self._lock = RLock()

        for resource in resources or []:
            self._store(copy.deepcopy(resource), is_new=True)

    ## Interface ###############################################################

    def apply(self, resource_definition, field_manager, subresource=None):
        api_version, kind, name, namespace = self._identifiers(resource_definition)
        log.info(
            "DRY RUN apply [%s/%s] in [%s] by [%s]",
            kind,
            name,
            namespace,
            field_manager,
        )
        if not self.kind_exists(kind, api_version):
            raise ResourceNotServedError(f"Kind [{api_version}/{kind}] is not served")

        key = ObjectKey(kind, namespace, name)
        with self._lock:
            current = self._cluster_content.get(key)
            requested_version = resource_definition.get("metadata", {}).get(
                "resourceVersion"
            )
            current_version = (current or {}).get("metadata", {}).get(
                "resourceVersion"
            )
            if requested_version and requested_version != current_version:
                raise ConflictError(
                    f"Operation cannot be fulfilled on [{key}]: the object has "
                    f"been modified ({requested_version} != {current_version})"
                )
            if subresource and current is None:
                raise ClusterError(f"Cannot apply {subresource} of missing [{key}]")

            merged = apply_owned_fields(
                current, resource_definition, field_manager, subresource
            )
            changed = current is None or strip_server_fields(
                current
            ) != strip_server_fields(merged)
            log.debug2("DRY RUN [%s] changed? %s", key, changed)
            if changed:
                self._store(merged, is_new=current is None, previous=current)
            else:
                # Ownership may still have moved even though no value did
                self._cluster_content[key] = copy.deepcopy(merged)

        if changed:
            self._notify(
                KubeEventType.ADDED if current is None else KubeEventType.MODIFIED,
                merged,
            )
        return copy.deepcopy(merged), changed

    def delete(self, kind, name, namespace=None, api_version=None):
        log.info("DRY RUN delete [%s/%s] in [%s]", kind, name, namespace)
        key = ObjectKey(kind, namespace or None, name)
        with self._lock:
            current = self._cluster_content.get(key)
            if current is None or not _api_version_matches(current, api_version):
                log.debug2("DRY RUN nothing to delete for [%s]", key)
                return False
            del self._cluster_content[key]
        self._notify(KubeEventType.DELETED, current)
        return True

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug("DRY RUN get [%s/%s] in [%s]", kind, name, namespace)
        current = self._cluster_content.get(ObjectKey(kind, namespace or None, name))
        if current is None or not _api_version_matches(current, api_version):
            return True, None
        return True, copy.deepcopy(current)

    def filter_objects_current_state(self, kind, namespace=None, api_version=None):
        log.debug("DRY RUN list [%s] in [%s]", kind, namespace)
        with self._lock:
            return True, [
                copy.deepcopy(obj)
                for key, obj in self._cluster_content.items()
                if key.kind == kind
                and (namespace is None or key.namespace == namespace)
                and _api_version_matches(obj, api_version)
            ]

    def watch_objects(
        self,
        ctx: Context,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the in-memory cluster by registering a callback for the
        duration of the stream
        """
        event_queue = Queue()

        def add_event(event_type: KubeEventType, manifest: dict):
            event_queue.put(
                KubeWatchEvent(
                    type=event_type, resource=ManagedObject(copy.deepcopy(manifest))
                )
            )

        watch = (kind, api_version, namespace, add_event)
        with self._lock:
            self._watches.append(watch)
            _, initial = self.filter_objects_current_state(
                kind, namespace=namespace, api_version=api_version
            )
        try:
            for manifest in initial:
                yield KubeWatchEvent(
                    type=KubeEventType.ADDED, resource=ManagedObject(manifest)
                )
            while not ctx.cancelled():
                try:
                    event = event_queue.get(timeout=WATCH_POLL_SECONDS)
                except Empty:
                    continue
                log.debug2("Yielding event %s", event)
                yield event
        finally:
            with self._lock:
                self._watches.remove(watch)

    def kind_exists(self, kind, api_version=None):
        return self._served_kinds is None or kind in self._served_kinds

    ## Implementation Details ##################################################

    @staticmethod
    def _identifiers(resource_definition):
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace") or None
        assert None not in [kind, name], "Cannot apply resource without kind or name"
        return api_version, kind, name, namespace

    def _store(self, resource, is_new, previous=None):
        """Stamp the server-maintained metadata and store the object"""
        with self._lock:
            metadata = resource.setdefault("metadata", {})
            self._resource_version += 1
            metadata["resourceVersion"] = str(self._resource_version)
            if is_new:
                metadata.setdefault(
                    "creationTimestamp",
                    datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
                )
                metadata.setdefault("uid", str(uuid.uuid4()))
                metadata.setdefault("generation", 1)
            elif resource.get("spec") != (previous or {}).get("spec"):
                metadata["generation"] = (
                    previous.get("metadata", {}).get("generation", 0) + 1
                )
            _, kind, name, namespace = self._identifiers(resource)
            self._cluster_content[ObjectKey(kind, namespace, name)] = copy.deepcopy(
                resource
            )

    def _notify(self, event_type: KubeEventType, manifest: dict):
        kind = manifest.get("kind")
        namespace = manifest.get("metadata", {}).get("namespace") or None
        with self._lock:
            callbacks = [
                callback
                for w_kind, w_api_version, w_namespace, callback in self._watches
                if w_kind == kind
                and (w_namespace is None or w_namespace == namespace)
                and _api_version_matches(manifest, w_api_version)
            ]
        for callback in callbacks:
            log.debug3("Calling registered watch for [%s/%s]", kind, event_type)
            callback(event_type, manifest)


def _api_version_matches(manifest: dict, api_version: Optional[str]) -> bool:
    return api_version is None or manifest.get("apiVersion") == api_version
