"""
Custom logging formats that attach the controller and tick identity to json logs
"""

# Standard
from contextlib import contextmanager
from typing import Optional
import threading

# First Party
from alog import AlogJsonFormatter

# Each controller worker thread records the tick it is running here
_tick_identity = threading.local()


@contextmanager
def tick_context(controller_name: str, tick_id: str, resource: Optional[dict] = None):
    """Attach the identity of a controller tick to every record logged by the
    current thread until the block exits
    """
    previous = getattr(_tick_identity, "value", None)
    _tick_identity.value = (controller_name, tick_id, resource)
    try:
        yield
    finally:
        _tick_identity.value = previous


class OperatorJsonFormatter(AlogJsonFormatter):
    """Extends AlogJsonFormatter with the identity of the controller tick that
    emitted the record and of the resource it was working on
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "controllerName",
        "tickId",
        "kind",
        "resourceName",
    ]

    def format(self, record):
        controller_name, tick_id, resource = getattr(
            _tick_identity, "value", None
        ) or (None, None, None)
        if controller_name:
            record.controllerName = controller_name
            record.tickId = tick_id

        if resource := getattr(record, "resource", resource):
            record.kind = resource.get("kind")
            record.resourceName = resource.get("metadata", {}).get("name")

        return super().format(record)
