"""
The Context is the cancellation signal shared by every controller thread
"""

# Standard
from typing import Callable, List, Optional
import threading

# First Party
import alog

# Local
from .exceptions import TickCancelledError

log = alog.use_channel("CTX")


class Context:
    """A cancellable context. Cancelling it stops every worker, timer and watch
    that was started with it. Cancellation is one-way.
    """

    def __init__(self):
        self._done = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    def cancel(self):
        """Signal every holder of this context to stop"""
        with self._lock:
            if self._done.is_set():
                return
            self._done.set()
            callbacks = list(self._callbacks)
        log.debug("Context cancelled. Running %d callbacks", len(callbacks))
        for callback in callbacks:
            callback()

    def cancelled(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or until the timeout passes

        Returns:
            cancelled:  bool
                True if the context was cancelled while waiting
        """
        return self._done.wait(timeout)

    def on_cancel(self, callback: Callable[[], None]):
        """Register a callback that runs once when the context is cancelled. If
        it already is, the callback runs immediately.
        """
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def raise_if_cancelled(self):
        """Abort the current tick if the context has been cancelled"""
        if self._done.is_set():
            raise TickCancelledError("Context cancelled")
