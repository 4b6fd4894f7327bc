"""
apigate.tracing

Per-request correlation identifiers.

Responsibilities:
- Generate one immutable trace id per inbound request (128-bit random UUID4).
- Optionally continue a caller-supplied id for cross-service correlation.
- Bind the id into structlog contextvars and write it into the outbound response headers.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import structlog

TRACE_HEADER = "X-Request-ID"


@dataclass(frozen=True, slots=True)
class TraceContext:
    trace_id: str
    # Set when the id was continued from an inbound header rather than generated here.
    inherited: bool = False


def _is_valid_uuid(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(value)
        return True
    except (ValueError, AttributeError):
        return False


class Tracer:
    def __init__(self, *, header: str = TRACE_HEADER, trust_inbound: bool = False) -> None:
        self._header = header
        self._trust_inbound = trust_inbound

    @property
    def header(self) -> str:
        return self._header

    def begin(self, inbound: str | None = None) -> TraceContext:
        # Invalid inbound ids are replaced rather than rejected; tracing never fails a request.
        if self._trust_inbound and _is_valid_uuid(inbound):
            return TraceContext(trace_id=str(uuid.UUID(inbound)), inherited=True)
        return TraceContext(trace_id=str(uuid.uuid4()))

    def attach_to_response(self, ctx: TraceContext, headers: MutableMapping[str, str]) -> None:
        headers[self._header] = ctx.trace_id

    @contextmanager
    def bind(self, ctx: TraceContext, **fields: Any) -> Iterator[None]:
        tokens = structlog.contextvars.bind_contextvars(trace_id=ctx.trace_id, **fields)
        try:
            yield
        finally:
            # Restore only what we bound; avoids leaking context across concurrent requests.
            structlog.contextvars.reset_contextvars(**tokens)


# --- Module Notes -----------------------------------------------------------
# The same id appears in every log line for the request, in problem+json error bodies
# (`correlation_id`), and in the response header.
