import pytest

from dronecollector import semconv
from dronecollector.traceutils import (
    Span,
    StatusCode,
    new_span_id,
    new_trace_id,
    set_status,
    status_code_for,
)


@pytest.mark.parametrize(
    "code, expected",
    [
        ("failure", StatusCode.ERROR),
        ("error", StatusCode.ERROR),
        ("success", StatusCode.OK),
        ("unknown", StatusCode.UNSET),
    ],
)
def test_status_code_for(code, expected):
    assert status_code_for(code) is expected


def test_new_span_id():
    span_id = new_span_id()
    assert len(span_id) == 8
    assert len(span_id.hex()) == 16


def test_new_trace_id():
    trace_id = new_trace_id()
    assert len(trace_id) == 16
    assert len(trace_id.hex()) == 32


def test_trace_ids_are_unique():
    ids = [new_trace_id() for _ in range(50)]
    assert len(set(ids)) == 50
    assert all(len(trace_id) == 16 for trace_id in ids)


def test_set_status_failure():
    span = Span()
    set_status("failure", span)
    assert span.attributes[semconv.ATTRIBUTE_CI_WORKFLOW_ITEM_STATUS] == "failure"
    assert span.status_code is StatusCode.ERROR


def test_set_status_unknown_keeps_string():
    span = Span()
    set_status("killed", span)
    assert span.attributes == {"ci.workflow_item.status": "killed"}
    assert span.status_code is StatusCode.UNSET