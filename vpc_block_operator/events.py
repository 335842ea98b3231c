"""
The EventRecorder publishes cluster Events about the operator's actions. Recording
never blocks the caller: events are queued and written by a background thread.
"""

# Standard
from datetime import datetime, timezone
from queue import Empty, Full, Queue
from typing import Optional
import threading
import uuid

# First Party
import alog

# Local
from . import config, constants
from .context import Context
from .deploy_manager import DeployManagerBase

log = alog.use_channel("EVNTS")

# Event types understood by the cluster
NORMAL = "Normal"
WARNING = "Warning"

# How many unwritten events are held before new ones are dropped
MAX_PENDING_EVENTS = 256

# How often the writer thread checks for cancellation while idle
DRAIN_POLL_SECONDS = 0.1


class EventRecorder:
    """Queue-backed recorder of cluster Events for one involved object"""

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        component: str = constants.OPERATOR_NAME,
        namespace: Optional[str] = None,
        involved_object: Optional[dict] = None,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                Client used to write the Events
            component:  str
                The reporting component recorded on each Event
            namespace:  Optional[str]
                Namespace the Events are written to (config.operator_namespace)
            involved_object:  Optional[dict]
                Reference to the object the Events are about. Defaults to the
                ClusterCSIDriver instance.
        """
        self.deploy_manager = deploy_manager
        self.component = component
        self.namespace = namespace or config.operator_namespace
        self.involved_object = involved_object or {
            "apiVersion": constants.CSI_DRIVER_API_VERSION,
            "kind": constants.CSI_DRIVER_KIND,
            "name": config.instance_name,
        }
        self._queue = Queue(maxsize=MAX_PENDING_EVENTS)
        self._thread = None

    def record(self, reason: str, message: str, event_type: str = NORMAL):
        """Queue an Event. If the queue is full the Event is dropped."""
        log.debug2("Recording event [%s/%s]: %s", event_type, reason, message)
        try:
            self._queue.put_nowait((event_type, reason, message))
        except Full:
            log.warning("Event queue full. Dropping event [%s]", reason)

    def warning(self, reason: str, message: str):
        """Queue a Warning Event"""
        self.record(reason, message, event_type=WARNING)

    def start(self, ctx: Context):
        """Start writing queued events in the background until the context is
        cancelled
        """
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._drain, args=(ctx,), name="event-recorder", daemon=True
        )
        self._thread.start()

    def flush(self):
        """Write every queued event on the calling thread"""
        while True:
            try:
                event = self._queue.get_nowait()
            except Empty:
                return
            self._write(*event)

    ## Implementation Details ##################################################

    def _drain(self, ctx: Context):
        while not ctx.cancelled():
            try:
                event = self._queue.get(timeout=DRAIN_POLL_SECONDS)
            except Empty:
                continue
            self._write(*event)

    def _write(self, event_type: str, reason: str, message: str):
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        name = f"{self.involved_object.get('name')}.{uuid.uuid4().hex[:16]}"
        manifest = {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {"name": name, "namespace": self.namespace},
            "involvedObject": self.involved_object,
            "reason": reason,
            "message": message,
            "type": event_type,
            "source": {"component": self.component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }
        try:
            self.deploy_manager.apply(manifest, field_manager=self.component)
        except Exception as err:  # pylint: disable=broad-exception-caught
            # Events are best effort
            log.warning("Failed to write event [%s]: %s", reason, err)
