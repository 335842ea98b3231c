"""
Tests for the EventRecorder
"""

# Third Party
import pytest

# Local
from vpc_block_operator import constants, events
from vpc_block_operator.context import Context
from vpc_block_operator.events import EventRecorder
from vpc_block_operator.test_helpers.helpers import (
    TEST_NAMESPACE,
    MockDeployManager,
    wait_for,
)


def written_events(dm):
    _, objs = dm.filter_objects_current_state("Event", namespace=TEST_NAMESPACE)
    return objs


def test_flush_writes_events():
    """Recorded events are written about the instance"""
    dm = MockDeployManager()
    recorder = EventRecorder(dm)
    recorder.record("Synced", "All good")
    recorder.warning("Broken", "Not good")
    assert not written_events(dm)

    recorder.flush()
    objs = sorted(written_events(dm), key=lambda obj: obj["reason"])
    assert [(obj["reason"], obj["type"]) for obj in objs] == [
        ("Broken", events.WARNING),
        ("Synced", events.NORMAL),
    ]
    assert objs[0]["involvedObject"]["kind"] == constants.CSI_DRIVER_KIND
    assert objs[0]["source"]["component"] == constants.OPERATOR_NAME


def test_full_queue_drops_events(monkeypatch):
    """Recording never blocks, even when the writer is behind"""
    monkeypatch.setattr(events, "MAX_PENDING_EVENTS", 2)
    dm = MockDeployManager()
    recorder = EventRecorder(dm)
    for idx in range(5):
        recorder.record("Spam", str(idx))
    recorder.flush()
    assert len(written_events(dm)) == 2


def test_write_failure_is_not_raised():
    """A failed write is logged, not raised"""
    dm = MockDeployManager(apply_fail=RuntimeError("nope"))
    recorder = EventRecorder(dm)
    recorder.record("Synced", "All good")
    recorder.flush()
    assert dm.apply.call_count == 1


@pytest.mark.timeout(10)
def test_background_writer():
    dm = MockDeployManager()
    recorder = EventRecorder(dm)
    ctx = Context()
    try:
        recorder.start(ctx)
        recorder.record("Synced", "All good")
        assert wait_for(lambda: len(written_events(dm)) == 1)
    finally:
        ctx.cancel()
