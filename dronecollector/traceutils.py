"""Trace identifiers, spans and span status helpers."""

from __future__ import annotations

import enum
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any

from dronecollector import semconv

EMPTY_TRACE_ID = bytes(16)
EMPTY_SPAN_ID = bytes(8)


class StatusCode(enum.IntEnum):
    """Span status codes."""

    UNSET = 0
    OK = 1
    ERROR = 2


@dataclass
class Span:
    """A single span of a trace."""

    name: str = ""
    trace_id: bytes = EMPTY_TRACE_ID
    span_id: bytes = EMPTY_SPAN_ID
    parent_span_id: bytes = EMPTY_SPAN_ID
    start_timestamp: int = 0
    end_timestamp: int = 0
    attributes: dict[str, Any] = field(default_factory=dict)
    status_code: StatusCode = StatusCode.UNSET


def new_trace_id() -> bytes:
    """Return a new random 16-byte trace id."""
    return uuid.uuid4().bytes


def new_span_id() -> bytes:
    """Return a new random 8-byte span id."""
    return secrets.token_bytes(8)


def status_code_for(code: str) -> StatusCode:
    """Map a CI status string to a span status code."""
    if code in ("failure", "error"):
        return StatusCode.ERROR
    if code == "success":
        return StatusCode.OK
    return StatusCode.UNSET


def set_status(status: str, span: Span) -> None:
    """Record a CI status on a span, as attribute and status code."""
    span.attributes[semconv.ATTRIBUTE_CI_WORKFLOW_ITEM_STATUS] = status
    span.status_code = status_code_for(status)