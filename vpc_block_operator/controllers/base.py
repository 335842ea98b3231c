"""
This module holds the base class for every controller along with the work queue
and the types that describe the outcome of a reconciliation tick.

A controller runs `worker_count` worker threads that drain its work queue. The
queue is fed by change notifications from the ObjectCache and by a resync timer.
Each dequeue runs one tick:

    Idle -> Reconciling -> {Applied | NoChangeNeeded | Failed} -> Idle

and ends by writing the controller's conditions into the status of the
ClusterCSIDriver instance under the controller's own field manager.
"""

# Standard
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import abc
import threading
import uuid

# First Party
import alog

# Local
from .. import config, constants
from ..api import ClusterCSIDriverSpec
from ..cache import ObjectCache
from ..context import Context
from ..events import EventRecorder
from ..exceptions import PreconditionError, TickCancelledError
from ..log_format import tick_context
from ..operator_client import OperatorStateAccessor
from ..status import (
    ConditionReason,
    condition_type,
    make_condition,
    merge_conditions,
    status_changed,
)

log = alog.use_channel("CTRLR")

# Every trigger of a controller coalesces onto this single key
SYNC_KEY = "sync"

# (kind, api_version, namespace) of a watched kind
WatchedKind = Tuple[str, Optional[str], Optional[str]]


class TickResult(Enum):
    """Terminal state of a single tick"""

    APPLIED = "Applied"
    NO_CHANGE_NEEDED = "NoChangeNeeded"
    FAILED = "Failed"


class ControllerState(Enum):
    """Whether a controller is between ticks or inside one"""

    IDLE = "Idle"
    RECONCILING = "Reconciling"


@dataclass
class ReconcileOutcome:
    """Result of one tick. The conditions and status fields are written to the
    ClusterCSIDriver status under the controller's field manager.
    """

    changed: bool = False
    conditions: List[dict] = field(default_factory=list)
    error: Optional[Exception] = None
    status_fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def result(self) -> TickResult:
        if self.error is not None:
            return TickResult.FAILED
        if self.changed:
            return TickResult.APPLIED
        return TickResult.NO_CHANGE_NEEDED


class WorkQueue:
    """Coalescing work queue. A key waits in the queue at most once and is never
    handed to two workers at the same time. A key added while it is being
    processed is queued again when processing is done.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._queue = deque()
        self._dirty = set()
        self._processing = set()
        self._shutting_down = False

    def add(self, key: str):
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self) -> Optional[str]:
        """Block until a key is ready. Returns None once the queue shuts down."""
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if self._shutting_down:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: str):
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self):
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    def __len__(self):
        with self._cond:
            return len(self._queue)


class ControllerBase(abc.ABC):
    """Base class for all controllers. Children implement sync()."""

    # Condition suffixes this controller reports
    reported_conditions = [constants.CONDITION_DEGRADED]

    def __init__(
        self,
        name: str,
        operator_client: OperatorStateAccessor,
        cache: ObjectCache,
        event_recorder: Optional[EventRecorder] = None,
        resync_period: Optional[float] = None,
        honor_management_state: bool = True,
    ):
        """
        Args:
            name:  str
                Unique name of the controller. Also its field manager.
            operator_client:  OperatorStateAccessor
                Shared handle on the ClusterCSIDriver instance
            cache:  ObjectCache
                Shared object cache
            event_recorder:  Optional[EventRecorder]
                Recorder for the events this controller emits
            resync_period:  Optional[float]
                Seconds between periodic resyncs (config.resync_period_seconds)
            honor_management_state:  bool
                If True, ticks are skipped while the operand is Unmanaged
        """
        self.name = name
        self.operator_client = operator_client
        self.cache = cache
        self.event_recorder = event_recorder
        self.resync_period = (
            resync_period
            if resync_period is not None
            else config.resync_period_seconds
        )
        self.honor_management_state = honor_management_state
        self.state = ControllerState.IDLE
        self.queue = WorkQueue()
        self._threads: List[threading.Thread] = []
        self._informers_ready = False
        self._lock = threading.Lock()

    ## Abstract Interface ######################################################

    @abc.abstractmethod
    def sync(
        self, ctx: Context, instance: dict, spec: ClusterCSIDriverSpec
    ) -> ReconcileOutcome:
        """Compute the desired state, compare it with the observed state and
        apply what differs

        Args:
            ctx:  Context
                Cancellation signal of the tick
            instance:  dict
                The ClusterCSIDriver instance as read at the start of the tick
            spec:  ClusterCSIDriverSpec
                The typed spec of the instance

        Returns:
            outcome:  ReconcileOutcome
                Whether anything changed and the conditions to report. Errors
                are raised rather than returned.
        """

    def watched_kinds(self) -> List[WatchedKind]:
        """The kinds whose changes trigger this controller. The custom resource
        itself is always watched.
        """
        return []

    ## Public ##################################################################

    def setup_informers(self):
        """Make the cache watch every kind this controller depends on and
        subscribe to their changes. Safe to call more than once.
        """
        with self._lock:
            if self._informers_ready:
                return
            self._informers_ready = True
        watched = [
            (
                self.operator_client.kind,
                self.operator_client.api_version,
                None,
            )
        ] + self.watched_kinds()
        for kind, api_version, namespace in watched:
            self.cache.inform(kind, api_version=api_version, namespace=namespace)
            self.cache.subscribe(kind, self._on_change, namespace=namespace)

    def run(self, ctx: Context, worker_count: int = 1):
        """Start the workers and the resync timer. Returns immediately. Every
        thread stops when the context is cancelled.
        """
        self.setup_informers()
        ctx.on_cancel(self.queue.shut_down)
        for idx in range(max(worker_count, 1)):
            self._start_thread(f"{self.name}-worker-{idx}", self._worker, ctx)
        self._start_thread(f"{self.name}-resync", self._resync, ctx)
        self.trigger()
        log.info("Started controller [%s] with %d workers", self.name, worker_count)

    def trigger(self):
        """Queue a tick"""
        self.queue.add(SYNC_KEY)

    def tick(self, ctx: Context) -> ReconcileOutcome:
        """Run a single reconciliation tick and report its status. No error
        escapes a tick.
        """
        tick_id = uuid.uuid4().hex[:8]
        with tick_context(self.name, tick_id):
            self.state = ControllerState.RECONCILING
            try:
                outcome = self._run_sync(ctx)
                if outcome is not None:
                    self._report_status(ctx, outcome)
                    log.debug(
                        "Tick of [%s] finished: %s", self.name, outcome.result.value
                    )
                return outcome or ReconcileOutcome(error=TickCancelledError())
            finally:
                self.state = ControllerState.IDLE

    def condition(
        self,
        suffix: str,
        status: bool,
        reason: ConditionReason,
        message: str = "",
    ) -> dict:
        """Build one of this controller's conditions"""
        return make_condition(
            condition_type(self.name, suffix), status, reason, message
        )

    def record_event(self, reason: str, message: str):
        if self.event_recorder is not None:
            self.event_recorder.record(reason, message)

    def record_warning(self, reason: str, message: str):
        if self.event_recorder is not None:
            self.event_recorder.warning(reason, message)

    ## Implementation Details ##################################################

    def _run_sync(self, ctx: Context) -> Optional[ReconcileOutcome]:
        try:
            ctx.raise_if_cancelled()
            instance = self.operator_client.get_instance()
            spec = self.operator_client.get_spec(instance)
            if (
                self.honor_management_state
                and spec.management_state == constants.UNMANAGED
            ):
                log.debug2("Operand unmanaged. Skipping [%s]", self.name)
                return ReconcileOutcome(
                    conditions=self._default_conditions(ConditionReason.UNMANAGED)
                )
            outcome = self.sync(ctx, instance, spec)
            ctx.raise_if_cancelled()
        except TickCancelledError:
            log.debug("Tick of [%s] cancelled", self.name)
            return None
        except PreconditionError as err:
            log.debug("Precondition for [%s] not met: %s", self.name, err)
            return self._failed_outcome(err, ConditionReason.PRECONDITION_WAIT)
        except Exception as err:  # pylint: disable=broad-exception-caught
            log.warning("Tick of [%s] failed: %s", self.name, err, exc_info=True)
            return self._failed_outcome(err, ConditionReason.SYNC_ERROR)

        # Fill in the Degraded condition if the sync did not set it
        degraded = condition_type(self.name, constants.CONDITION_DEGRADED)
        if constants.CONDITION_DEGRADED in self.reported_conditions and not any(
            cond["type"] == degraded for cond in outcome.conditions
        ):
            outcome.conditions.append(
                self.condition(
                    constants.CONDITION_DEGRADED, False, ConditionReason.AS_EXPECTED
                )
            )
        return outcome

    def _failed_outcome(
        self, err: Exception, reason: ConditionReason
    ) -> ReconcileOutcome:
        return ReconcileOutcome(
            error=err,
            conditions=[
                self.condition(constants.CONDITION_DEGRADED, True, reason, str(err))
            ],
        )

    def _default_conditions(self, reason: ConditionReason) -> List[dict]:
        conditions = []
        for suffix in self.reported_conditions:
            status = suffix == constants.CONDITION_AVAILABLE
            conditions.append(self.condition(suffix, status, reason))
        return conditions

    def _report_status(self, ctx: Context, outcome: ReconcileOutcome):
        """Write the outcome into the status fields owned by this controller.
        Conditions and fields not named in the outcome keep their last value.
        """

        def make_patch(instance: dict) -> Optional[dict]:
            previous = self.operator_client.extract_status(instance, self.name)
            previous = previous.to_dict() if previous is not None else {}
            patch = dict(previous)
            patch.update(outcome.status_fields)
            patch["conditions"] = merge_conditions(
                previous.get("conditions"), outcome.conditions
            )
            if not status_changed(previous, patch):
                log.debug3("No status change for [%s]", self.name)
                return None
            return patch

        try:
            self.operator_client.update_status_with_retry(
                self.name, make_patch, ctx=ctx
            )
        except TickCancelledError:
            log.debug("Status report of [%s] cancelled", self.name)
        except Exception as err:  # pylint: disable=broad-exception-caught
            log.warning(
                "Failed to report status of [%s]: %s", self.name, err, exc_info=True
            )

    def _on_change(self, *_):
        self.trigger()

    def _start_thread(self, name: str, target, ctx: Context):
        thread = threading.Thread(target=target, args=(ctx,), name=name, daemon=True)
        self._threads.append(thread)
        thread.start()

    def _worker(self, ctx: Context):
        while not ctx.cancelled():
            key = self.queue.get()
            if key is None:
                break
            try:
                self.tick(ctx)
            except Exception as err:  # pylint: disable=broad-exception-caught
                log.error("Unexpected error in [%s]: %s", self.name, err, exc_info=True)
            finally:
                self.queue.done(key)
        log.debug2("Worker of [%s] stopped", self.name)

    def _resync(self, ctx: Context):
        while not ctx.wait(self.resync_period):
            log.debug3("Resyncing [%s]", self.name)
            self.trigger()
