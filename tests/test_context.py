"""
Tests for the cancellable Context
"""

# Standard
from unittest import mock

# Third Party
import pytest

# Local
from vpc_block_operator.context import Context
from vpc_block_operator.exceptions import TickCancelledError


def test_cancel_runs_callbacks_once():
    ctx = Context()
    callback = mock.Mock()
    ctx.on_cancel(callback)
    assert not ctx.cancelled()
    ctx.cancel()
    ctx.cancel()
    assert ctx.cancelled()
    callback.assert_called_once()


def test_on_cancel_after_cancel_runs_immediately():
    ctx = Context()
    ctx.cancel()
    callback = mock.Mock()
    ctx.on_cancel(callback)
    callback.assert_called_once()


def test_wait():
    ctx = Context()
    assert not ctx.wait(0.01)
    ctx.cancel()
    assert ctx.wait(0.01)


def test_raise_if_cancelled():
    ctx = Context()
    ctx.raise_if_cancelled()
    ctx.cancel()
    with pytest.raises(TickCancelledError):
        ctx.raise_if_cancelled()
