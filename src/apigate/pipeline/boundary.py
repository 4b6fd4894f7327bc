"""
apigate.pipeline.boundary

Top-level error boundary: the single place where faults become responses.

Responsibilities:
- Map each `PipelineFault` variant to a fixed status and an RFC 7807 problem body.
- Treat anything else as `Internal`, logging it with the trace id and withholding detail.
- Guarantee the trace header on every error response, even if tracing itself failed.
"""

from __future__ import annotations

import json
import math
from typing import Any

from apigate.errors import FaultKind, Internal, PipelineFault, RateLimited
from apigate.observability.logging import get_logger
from apigate.pipeline.types import PipelineResponse, RequestContext
from apigate.tracing import Tracer

log = get_logger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"


class ErrorBoundary:
    def __init__(self, tracer: Tracer, *, realm: str = "api", logger: Any = None) -> None:
        self._tracer = tracer
        self._realm = realm
        self._logger = logger or log

    def to_response(self, ctx: RequestContext, exc: BaseException) -> PipelineResponse:
        if isinstance(exc, PipelineFault):
            fault = exc
        else:
            fault = Internal(repr(exc), stage="unknown", reason="unhandled_exception")

        if ctx.trace is None:
            ctx.trace = self._tracer.begin()
        trace_id = ctx.trace.trace_id
        self._log(ctx, fault, exc)

        problem: dict[str, Any] = {
            "type": f"/errors/{fault.kind.value.replace('_', '-')}",
            "title": fault.title,
            "status": fault.status_code,
            # Public text only; `fault.detail` may carry internals and stays in the logs.
            "detail": fault.public_detail,
            "error_code": fault.kind.value.upper(),
            "instance": ctx.request.path,
            "correlation_id": trace_id,
        }
        headers: dict[str, str] = {}
        if fault.kind is FaultKind.UNAUTHENTICATED:
            headers["WWW-Authenticate"] = f'Bearer realm="{self._realm}"'
        if isinstance(fault, RateLimited) and fault.retry_after is not None:
            # The oldest admission still counts at exactly `retry_after`; the slot frees just after.
            headers["Retry-After"] = str(math.floor(fault.retry_after) + 1)

        response = PipelineResponse(
            status_code=fault.status_code,
            body=json.dumps(problem, separators=(",", ":")).encode("utf-8"),
            content_type=PROBLEM_MEDIA_TYPE,
            headers=headers,
        )
        self._tracer.attach_to_response(ctx.trace, response.headers)
        return response

    def _log(self, ctx: RequestContext, fault: PipelineFault, exc: BaseException) -> None:
        fields: dict[str, Any] = {
            "trace_id": ctx.trace.trace_id if ctx.trace else None,
            "fault": fault.kind.value,
            "stage": fault.stage,
            "reason": fault.reason,
            "detail": fault.detail,
            "method": ctx.request.method,
            "path": ctx.request.path,
            "client_key": ctx.client_key,
            "subject": ctx.principal.subject if ctx.principal else None,
        }
        if fault.status_code >= 500:
            self._logger.error("request_failed", exc_info=exc, **fields)
        elif fault.kind is FaultKind.RATE_LIMITED:
            self._logger.warning("request_rejected", **fields)
        else:
            self._logger.info("request_rejected", **fields)


# --- Module Notes -----------------------------------------------------------
# Status mapping: UNAUTHENTICATED 401, FORBIDDEN 403, RATE_LIMITED 429,
# UPSTREAM_ERROR and INTERNAL 500 (see the class attributes in `apigate.errors`).
