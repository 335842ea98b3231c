"""
This module holds the common functionality used to build and compare the status
conditions that the controllers report on the ClusterCSIDriver instance.

Every controller reports a subset of three orthogonal condition types, each
prefixed with the controller's name:

* <Name>Available: True if what the controller manages is up and serving
* <Name>Progressing: True if a modification is still rolling out
* <Name>Degraded: True if the latest tick failed

Conditions are merged by type. The status of the ClusterCSIDriver has the
following shape:
{
    "observedGeneration": N,
    "readyReplicas": N,
    "conditions": [{"type", "status", "reason", "message", "lastTransitionTime"}],
    "generations": [{"group", "resource", "namespace", "name", "lastGeneration"}],
}
"""

# Standard
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Union
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from . import constants

log = alog.use_channel("STTUS")

## Public ######################################################################

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"


class ConditionReason(Enum):
    """Reason constants shared by all condition types"""

    # The tick applied a change
    APPLIED = "Applied"

    # The tick found nothing to change
    AS_EXPECTED = "AsExpected"

    # The tick failed and will be retried on the next trigger
    SYNC_ERROR = "SyncError"

    # A required input was not yet available
    PRECONDITION_WAIT = "PreconditionWait"

    # The workload is still rolling out
    ROLLING_OUT = "RollingOut"

    # The workload has no available replicas
    NOT_AVAILABLE = "NotAvailable"

    # The operand is not managed by the operator
    UNMANAGED = "Unmanaged"

    # The requested management state is not supported
    UNSUPPORTED = "Unsupported"


def condition_type(controller_name: str, suffix: str) -> str:
    """Build the condition type for the given controller"""
    return f"{controller_name}{suffix}"


def make_condition(
    type_name: str,
    status: Union[bool, str],
    reason: Optional[Union[ConditionReason, str]] = None,
    message: str = "",
    now: Optional[datetime] = None,
) -> dict:
    """Create a single condition

    Args:
        type_name:  str
            The full condition type
        status:  Union[bool, str]
            The condition value. Bools are converted to "True"/"False".
        reason:  Optional[Union[ConditionReason, str]]
            The reason enum for the condition
        message:  str
            Plain-text message explaining the condition value
        now:  Optional[datetime]
            The transition timestamp (defaults to the current time)

    Returns:
        condition:  dict
            Dict representation of the condition
    """
    if isinstance(status, bool):
        status = constants.CONDITION_TRUE if status else constants.CONDITION_FALSE
    if isinstance(reason, ConditionReason):
        reason = reason.value
    now = now or datetime.now(timezone.utc)
    condition = {
        "type": type_name,
        "status": status,
        TIMESTAMP_KEY: now.strftime("%Y-%m-%dT%H:%M:%SZ"),
    }
    if reason:
        condition["reason"] = reason
    if message:
        condition["message"] = message
    return condition


def get_condition(type_name: str, current_status: Optional[dict]) -> dict:
    """Extract the given condition type from a status object

    Args:
        type_name:  str
            The condition type to fetch
        current_status:  Optional[dict]
            The dict representation of the status

    Returns:
        condition:  dict
            The condition object if found, empty dict otherwise
    """
    for cond in (current_status or {}).get("conditions") or []:
        if cond.get("type") == type_name:
            return cond
    return {}


def merge_conditions(
    current_conditions: Optional[Iterable[dict]],
    new_conditions: Iterable[dict],
) -> List[dict]:
    """Merge new conditions into the current ones by type. A condition whose
    status did not change keeps its previous transition time. Conditions not
    named in new_conditions are kept as they are.

    Args:
        current_conditions:  Optional[Iterable[dict]]
            The conditions currently in the status
        new_conditions:  Iterable[dict]
            The conditions to set

    Returns:
        conditions:  List[dict]
            The merged list of conditions
    """
    merged = [copy.deepcopy(cond) for cond in current_conditions or []]
    by_type = {cond.get("type"): idx for idx, cond in enumerate(merged)}
    for cond in new_conditions:
        cond = copy.deepcopy(cond)
        idx = by_type.get(cond["type"])
        if idx is None:
            by_type[cond["type"]] = len(merged)
            merged.append(cond)
            continue
        previous = merged[idx]
        if previous.get("status") == cond.get("status") and TIMESTAMP_KEY in previous:
            cond[TIMESTAMP_KEY] = previous[TIMESTAMP_KEY]
        merged[idx] = cond
    return merged


def status_changed(current_status: Optional[dict], new_status: Optional[dict]) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a timestamp.

    Args:
        current_status:  dict
            The status currently recorded
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    # Status objects must be dicts
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return current_status != new_status

    # Perform a deep diff, excluding timestamps
    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )
