"""
Tests for the ManagementStateController
"""

# Third Party
import pytest

# Local
from vpc_block_operator import constants
from vpc_block_operator.context import Context
from vpc_block_operator.controllers import ManagementStateController, TickResult
from vpc_block_operator.status import get_condition
from vpc_block_operator.test_helpers.helpers import setup_clients, setup_cr


@pytest.mark.parametrize(
    ["state", "supports_removal", "degraded"],
    [
        (constants.MANAGED, False, "False"),
        (constants.UNMANAGED, False, "False"),
        (constants.REMOVED, False, "True"),
        (constants.REMOVED, True, "False"),
        ("Force", True, "True"),
    ],
)
def test_management_state(state, supports_removal, degraded):
    _, client, cache = setup_clients(cr=setup_cr(management_state=state))
    controller = ManagementStateController(
        "ManagementState", client, cache, supports_removal=supports_removal
    )
    assert controller.tick(Context()).result == TickResult.NO_CHANGE_NEEDED
    condition = get_condition(
        "ManagementStateDegraded", client.get_instance()["status"]
    )
    assert condition["status"] == degraded
    if degraded == "True":
        assert condition["reason"] == "Unsupported"
        assert constants.OPERAND_NAME in condition["message"]
