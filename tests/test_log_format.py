"""
Tests for the json log formatter
"""

# Standard
import json
import logging

# Local
from vpc_block_operator.log_format import OperatorJsonFormatter, tick_context


def make_record(**extra):
    record = logging.LogRecord(
        name="CTRLR",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello",
        args=None,
        exc_info=None,
    )
    for key, val in extra.items():
        setattr(record, key, val)
    return record


def test_tick_identity_attached():
    """Records logged inside a tick carry the controller and tick id"""
    formatter = OperatorJsonFormatter()
    with tick_context("FooController", "abcd1234"):
        inside = json.loads(formatter.format(make_record()))
    outside = json.loads(formatter.format(make_record()))
    assert inside["controllerName"] == "FooController"
    assert inside["tickId"] == "abcd1234"
    assert "controllerName" not in outside


def test_resource_identity_attached():
    formatter = OperatorJsonFormatter()
    record = make_record(
        resource={"kind": "Deployment", "metadata": {"name": "driver"}}
    )
    formatted = json.loads(formatter.format(record))
    assert formatted["kind"] == "Deployment"
    assert formatted["resourceName"] == "driver"
