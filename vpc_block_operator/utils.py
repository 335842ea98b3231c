"""
Common utilities shared across the controllers
"""

# Standard
from typing import Any, Callable, Optional, TypeVar
import copy
import hashlib
import json
import time

# First Party
import alog

# Local
from . import config, constants
from .context import Context
from .exceptions import ConflictError, TickCancelledError

log = alog.use_channel("OPUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

T = TypeVar("T")

## Dicts #######################################################################


def nested_set(dct: dict, key: str, val: Any):
    """Helper to set values in a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict into which the key will be set
        key:  str
            Key that may contain '.' notation indicating dict nesting
        val:  Any
            The value to place at the nested key
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.setdefault(part, {})
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i])} "
                "is not a dict"
            )
    dct[parts[-1]] = val


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to read from
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for part in parts[:-1]:
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(f"Intermediate key {part} is not a dict")
    return dct.get(parts[-1], dflt)


def strip_server_fields(manifest: dict) -> dict:
    """Return a copy of the manifest without the metadata fields that the object
    store maintains on its own
    """
    manifest = copy.deepcopy(manifest)
    metadata = manifest.get("metadata", {})
    for metadata_field in constants.SERVER_METADATA_FIELDS:
        metadata.pop(metadata_field, None)
    return manifest


## Hashing #####################################################################


def content_hash(content: Any) -> str:
    """Compute a stable hash of any json-serializable content. Keys are sorted
    so that two dicts with the same content always hash the same.
    """
    return hashlib.sha256(
        json.dumps(content, sort_keys=True).encode("utf-8")
    ).hexdigest()


## Retries #####################################################################


def retry_on_conflict(
    operation: Callable[[], T],
    max_retries: Optional[int] = None,
    backoff_base_seconds: Optional[float] = None,
    ctx: Optional[Context] = None,
) -> T:
    """Run the operation, retrying with exponential backoff while it raises a
    ConflictError. The operation must re-read whatever it writes on every call
    so that the retry uses the latest observed version.

    Args:
        operation:  Callable[[], T]
            The write to perform
        max_retries:  Optional[int]
            Number of retries after the first attempt (config.status_retries)
        backoff_base_seconds:  Optional[float]
            First backoff duration (config.retry_backoff_base_seconds)
        ctx:  Optional[Context]
            Context whose cancellation interrupts the backoff

    Returns:
        result:  T
            The return value of the first attempt that did not conflict

    Raises:
        TickCancelledError: The context was cancelled during a backoff
    """
    max_retries = config.status_retries if max_retries is None else max_retries
    backoff_base_seconds = (
        config.retry_backoff_base_seconds
        if backoff_base_seconds is None
        else backoff_base_seconds
    )
    attempt = 0
    while True:
        try:
            return operation()
        except ConflictError as err:
            if attempt >= max_retries:
                log.warning("Giving up after %d conflicting attempts", attempt + 1)
                raise
            backoff_duration = backoff_base_seconds * (2**attempt)
            log.debug2("Conflict [%s]. Retrying in %fs", err, backoff_duration)
            if ctx is None:
                time.sleep(backoff_duration)
            elif ctx.wait(backoff_duration):
                raise TickCancelledError("Cancelled while backing off") from err
            attempt += 1
