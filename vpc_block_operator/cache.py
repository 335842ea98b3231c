"""
The ObjectCache is a read-through local copy of cluster objects kept current by
one informer thread per watched (kind, namespace). Controllers read from it and
subscribe to its change notifications, but never write to it: every mutation goes
to the object store and comes back through the watch.
"""

# Standard
from typing import Callable, Dict, List, Optional, Tuple
import copy
import os
import threading

# First Party
import alog

# Local
from . import config
from .context import Context
from .deploy_manager import DeployManagerBase, KubeEventType
from .exceptions import ClusterError, assert_cluster
from .managed_object import ObjectKey

log = alog.use_channel("CACHE")

# (kind, api_version, namespace); namespace None watches cluster-wide
InformerKey = Tuple[str, Optional[str], Optional[str]]

ChangeCallback = Callable[[KubeEventType, dict], None]


class Informer(threading.Thread):
    """Thread that lists a kind and then streams its watch events into the
    cache, re-listing whenever the watch ends
    """

    def __init__(
        self,
        cache: "ObjectCache",
        ctx: Context,
        kind: str,
        api_version: Optional[str],
        namespace: Optional[str],
    ):
        self.cache = cache
        self.ctx = ctx
        self.kind = kind
        self.api_version = api_version
        self.namespace = namespace
        self.synced = threading.Event()
        super().__init__(
            name=f"informer-{kind}-{namespace or 'cluster'}".lower(), daemon=True
        )

    def run(self):
        """List and watch until cancelled. A failed list or watch is retried
        after config.watch_retry_delay_seconds. Reads fall through to the
        object store until the next list succeeds. The process exits once
        config.watch_retry_count attempts in a row have failed without the
        watch delivering an event.
        """
        log.debug("Starting informer for [%s] in [%s]", self.kind, self.namespace)
        attempts_left = config.watch_retry_count
        while not self.ctx.cancelled():
            try:
                self._list()
                for event in self.cache.deploy_manager.watch_objects(
                    self.ctx,
                    kind=self.kind,
                    api_version=self.api_version,
                    namespace=self.namespace,
                ):
                    attempts_left = config.watch_retry_count
                    self.cache._record(event.type, event.resource.definition)
                    if self.ctx.cancelled():
                        break
            except Exception as err:  # pylint: disable=broad-exception-caught
                self.synced.clear()
                log.info(
                    "Watch of [%s] in [%s] failed: %s",
                    self.kind,
                    self.namespace,
                    err,
                    exc_info=True,
                )
                if attempts_left <= 0:
                    log.error(
                        "Unable to watch [%s] within %d attempts",
                        self.kind,
                        config.watch_retry_count,
                    )
                    os._exit(1)
                    return
                if self.ctx.wait(config.watch_retry_delay_seconds):
                    break
                attempts_left -= 1
                log.info(
                    "Restarting watch of [%s] with %d attempts left",
                    self.kind,
                    attempts_left,
                )
        log.debug("Informer for [%s] in [%s] stopped", self.kind, self.namespace)

    def _list(self):
        """Replace this informer's slice of the cache with a fresh list"""
        success, objects = self.cache.deploy_manager.filter_objects_current_state(
            kind=self.kind, namespace=self.namespace, api_version=self.api_version
        )
        assert_cluster(success, f"Failed to list [{self.kind}] in [{self.namespace}]")
        # List items do not carry their kind
        for obj in objects:
            obj.setdefault("kind", self.kind)
        self.cache._replace(self.kind, self.namespace, objects)
        self.synced.set()


class ObjectCache:
    """Watch-maintained cache of cluster objects keyed by (kind, namespace,
    name)
    """

    def __init__(self, deploy_manager: DeployManagerBase):
        self.deploy_manager = deploy_manager
        self._store: Dict[ObjectKey, dict] = {}
        self._informed: Dict[InformerKey, Optional[Informer]] = {}
        self._subscribers: List[Tuple[str, Optional[str], ChangeCallback]] = []
        self._lock = threading.RLock()
        self._ctx: Optional[Context] = None

    ## Setup ###################################################################

    def inform(
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
    ):
        """Keep a kind cached. Informers registered after start() begin
        immediately.
        """
        key = (kind, api_version, namespace)
        with self._lock:
            if key in self._informed:
                return
            self._informed[key] = None
            if self._ctx is not None:
                self._start_informer(key)

    def subscribe(
        self,
        kind: str,
        callback: ChangeCallback,
        namespace: Optional[str] = None,
    ):
        """Call the callback on every change to an object of the given kind
        (and namespace, if given)
        """
        with self._lock:
            self._subscribers.append((kind, namespace, callback))

    def start(self, ctx: Context):
        """Start every registered informer"""
        with self._lock:
            if self._ctx is not None:
                return
            self._ctx = ctx
            for key in list(self._informed):
                self._start_informer(key)

    def wait_for_sync(self, timeout: Optional[float] = None):
        """Block until every informer has finished its initial list

        Raises:
            ClusterError: The caches did not fill within the timeout
        """
        with self._lock:
            informers = [inf for inf in self._informed.values() if inf is not None]
        for informer in informers:
            if not informer.synced.wait(timeout):
                raise ClusterError(
                    f"Timed out waiting for the [{informer.kind}] cache to sync"
                )

    ## Reads ###################################################################

    def get(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Optional[dict]:
        """Get a copy of an object, or None if it does not exist. Kinds that
        are not informed are read from the object store directly.
        """
        if self._is_informed(kind, api_version, namespace):
            with self._lock:
                obj = self._store.get(ObjectKey(kind, namespace or None, name))
            return copy.deepcopy(obj) if obj is not None else None

        log.debug3("Reading uncached [%s/%s] in [%s]", kind, name, namespace)
        success, obj = self.deploy_manager.get_object_current_state(
            kind=kind, name=name, namespace=namespace, api_version=api_version
        )
        if not success:
            raise ClusterError(f"Failed to fetch [{kind}/{name}] in [{namespace}]")
        return obj

    ## Implementation Details ##################################################

    def _is_informed(self, kind, api_version, namespace) -> bool:
        """Only a synced informer answers reads for its kind"""
        with self._lock:
            for key, inf in self._informed.items():
                inf_kind, inf_api_version, inf_namespace = key
                if (
                    inf is not None
                    and inf.synced.is_set()
                    and inf_kind == kind
                    and (api_version is None or inf_api_version in [None, api_version])
                    and (inf_namespace is None or inf_namespace == namespace)
                ):
                    return True
        return False

    def _start_informer(self, key: InformerKey):
        kind, api_version, namespace = key
        informer = Informer(self, self._ctx, kind, api_version, namespace)
        self._informed[key] = informer
        informer.start()

    def _replace(self, kind: str, namespace: Optional[str], objects: List[dict]):
        """Make a fresh list the whole content of one informer's slice. Objects
        that disappeared while the watch was down are reported as deleted.
        """
        listed = {self._key(obj): obj for obj in objects}
        with self._lock:
            stale = [
                (key, obj)
                for key, obj in self._store.items()
                if key.kind == kind
                and (namespace is None or key.namespace == namespace)
                and key not in listed
            ]
            changed = [
                obj for key, obj in listed.items() if self._store.get(key) != obj
            ]
        log.debug2(
            "Re-listed [%s] in [%s]: %d changed, %d gone",
            kind,
            namespace,
            len(changed),
            len(stale),
        )
        for _, obj in stale:
            self._record(KubeEventType.DELETED, obj)
        for obj in changed:
            self._record(KubeEventType.ADDED, obj)

    @staticmethod
    def _key(obj: dict) -> ObjectKey:
        metadata = obj.get("metadata", {})
        return ObjectKey(
            obj.get("kind"), metadata.get("namespace") or None, metadata.get("name")
        )

    def _record(self, event_type: KubeEventType, obj: dict):
        key = self._key(obj)
        with self._lock:
            if event_type == KubeEventType.DELETED:
                self._store.pop(key, None)
            else:
                self._store[key] = copy.deepcopy(obj)
            callbacks = [
                callback
                for kind, namespace, callback in self._subscribers
                if kind == key.kind and namespace in [None, key.namespace]
            ]
        log.debug3("Cache %s [%s]", event_type.value, key)
        for callback in callbacks:
            callback(event_type, obj)
