"""
apigate.errors

Fault taxonomy shared by every pipeline stage.

Responsibilities:
- Define `PipelineFault` and its variants (401/403/429/500 outcomes).
- Keep internal detail (for logs) separate from what is returned to callers.
"""

from __future__ import annotations

from enum import StrEnum


class FaultKind(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_ERROR = "upstream_error"
    INTERNAL = "internal"


class PipelineFault(Exception):
    """
    Base class for faults raised by stages.

    `detail` is internal (logged with the trace id); the error boundary never copies it
    into a response body. `reason` is a short machine code such as `token_expired`.
    """

    kind: FaultKind = FaultKind.INTERNAL
    status_code: int = 500
    title: str = "Internal Server Error"
    public_detail: str = "The request could not be processed."

    def __init__(
        self,
        detail: str | None = None,
        *,
        stage: str = "unknown",
        reason: str | None = None,
    ) -> None:
        super().__init__(detail or self.public_detail)
        self.detail = detail
        self.stage = stage
        self.reason = reason or self.kind.value


class Unauthenticated(PipelineFault):
    kind = FaultKind.UNAUTHENTICATED
    status_code = 401
    title = "Unauthorized"
    public_detail = "Valid bearer credentials are required."


class Forbidden(PipelineFault):
    kind = FaultKind.FORBIDDEN
    status_code = 403
    title = "Forbidden"
    public_detail = "The authenticated principal is not permitted to access this route."


class RateLimited(PipelineFault):
    kind = FaultKind.RATE_LIMITED
    status_code = 429
    title = "Too Many Requests"
    public_detail = "Request rate limit exceeded."

    def __init__(
        self,
        detail: str | None = None,
        *,
        stage: str = "rate_limit",
        reason: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(detail, stage=stage, reason=reason)
        self.retry_after = retry_after


class UpstreamError(PipelineFault):
    kind = FaultKind.UPSTREAM_ERROR
    status_code = 500
    title = "Internal Server Error"
    public_detail = "A backing service failed while processing the request."


class Internal(PipelineFault):
    kind = FaultKind.INTERNAL


class StoreUnavailable(Exception):
    """
    Raised by backing-store helpers once bounded retries are exhausted.
    Stages translate it into `UpstreamError` or a degraded path (cache miss).
    """


# --- Module Notes -----------------------------------------------------------
# Status codes live on the fault classes so `pipeline.boundary` has a single lookup point.
