"""
Type definitions for incremental SSE chat streaming.

Covers the framed lines produced by the SSE buffer, the terminal outcome of
a stream session, and the tagged error bodies read from rejected responses.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class SSELine:
    """
    One complete `data:` line taken from the byte stream.

    Fields:
        raw: The line as received, without its line terminator
        payload: Text after the `data:` prefix, surrounding whitespace stripped
    """

    raw: str
    payload: str

    @property
    def is_done(self) -> bool:
        """True when the payload is the `[DONE]` end-of-stream sentinel"""
        return self.payload == DONE_SENTINEL

    @classmethod
    def from_raw(cls, raw: str) -> "SSELine":
        return cls(raw=raw, payload=raw[len(DATA_PREFIX) :].strip())


class FailureReason(str, Enum):
    """Why a stream session failed"""

    RATE_LIMITED = "rate_limited"
    QUOTA_EXHAUSTED = "quota_exhausted"
    UPSTREAM_ERROR = "generic_upstream_error"
    SERVICE_NOT_CONFIGURED = "service_not_configured"
    UNEXPECTED_RESPONSE = "unexpected_response"
    TRANSPORT_ERROR = "transport_error"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Success:
    """Stream completed and produced text"""

    text: str
    kind: Literal["success"] = field(default="success", init=False)


@dataclass(frozen=True)
class EmptySuccess:
    """Stream completed over a successful HTTP exchange but no text was extracted"""

    kind: Literal["empty_success"] = field(default="empty_success", init=False)


@dataclass(frozen=True)
class Failure:
    """Transport failure or upstream rejection"""

    reason: FailureReason
    message: str = ""
    status_code: int | None = None
    kind: Literal["failure"] = field(default="failure", init=False)


@dataclass(frozen=True)
class Cancelled:
    """Session was stopped by the caller before the stream ended"""

    kind: Literal["cancelled"] = field(default="cancelled", init=False)


SessionOutcome = Success | EmptySuccess | Failure | Cancelled


@dataclass(frozen=True)
class JsonErrorBody:
    """Error body that parsed as JSON"""

    payload: Any
    message: str | None
    kind: Literal["json"] = field(default="json", init=False)


@dataclass(frozen=True)
class TextErrorBody:
    """Error body that was not JSON; text is truncated to 200 characters"""

    text: str
    kind: Literal["text"] = field(default="text", init=False)


ErrorBody = JsonErrorBody | TextErrorBody

# Receives the cumulative response text after every contributing chunk
ProgressCallback = Callable[[str], None] | Callable[[str], Awaitable[None]]
