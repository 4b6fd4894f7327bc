"""
apigate.ratelimit.limiter

Sliding-window-log rate limiter.

Responsibilities:
- Admit or reject a request for a client key against `limit` admissions per `window`.
- Report a retry-after hint on rejection.
- Bound store calls with a timeout (single attempt); fail closed (`UpstreamError`) unless configured
  to fail open.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from apigate.errors import RateLimited, StoreUnavailable, UpstreamError
from apigate.observability.logging import get_logger
from apigate.ratelimit.store import RateWindowStore, WindowDecision
from apigate.retry import RetryPolicy, call_with_retry

_STAGE = "rate_limit"

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    limit: int
    window_seconds: float

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("rate limit must admit at least one request")
        if self.window_seconds <= 0:
            raise ValueError("rate limit window must be positive")


class SlidingWindowRateLimiter:
    def __init__(
        self,
        store: RateWindowStore,
        rule: RateLimitRule,
        *,
        retry: RetryPolicy | None = None,
        fail_open: bool = False,
    ) -> None:
        self._store = store
        self._rule = rule
        retry = retry or RetryPolicy()
        # Admit and release mutate the window and are never replayed.
        self._write_retry = replace(retry, attempts=1)
        self._fail_open = fail_open

    @property
    def store(self) -> RateWindowStore:
        return self._store

    @property
    def rule(self) -> RateLimitRule:
        return self._rule

    async def admit(
        self,
        client_key: str,
        now: float,
        *,
        rule: RateLimitRule | None = None,
    ) -> WindowDecision:
        # A per-request rule comes from the current config snapshot (hot reload).
        rule = rule or self._rule
        try:
            decision = await call_with_retry(
                lambda: self._store.admit(
                    client_key, now, limit=rule.limit, window=rule.window_seconds
                ),
                policy=self._write_retry,
                name="ratelimit.admit",
            )
        except StoreUnavailable as e:
            if self._fail_open:
                log.warning("rate_limit_fail_open", client_key=client_key, error=str(e))
                return WindowDecision(admitted=True, count=0, limit=rule.limit)
            raise UpstreamError(str(e), stage=_STAGE, reason="store_unavailable") from e

        if not decision.admitted:
            if decision.oldest is not None:
                retry_after = decision.oldest + rule.window_seconds - now
            else:
                retry_after = rule.window_seconds
            raise RateLimited(
                f"client {client_key!r} at {decision.count}/{rule.limit} "
                f"in {rule.window_seconds}s window",
                reason="limit_exceeded",
                retry_after=max(0.0, retry_after),
            )
        return decision

    async def release(self, client_key: str, decision: WindowDecision) -> None:
        if not decision.admitted or decision.admitted_at is None:
            return
        try:
            await call_with_retry(
                lambda: self._store.release(client_key, decision),
                policy=self._write_retry,
                name="ratelimit.release",
            )
        except StoreUnavailable as e:
            # A failed refund leaves the slot counted, which only errs toward stricter limiting.
            log.warning("rate_limit_release_failed", client_key=client_key, error=str(e))

    async def sweep(self, now: float, *, rule: RateLimitRule | None = None) -> int:
        rule = rule or self._rule
        evicted = await self._store.sweep(now, window=rule.window_seconds)
        if evicted:
            log.debug("rate_limit_swept", evicted=evicted)
        return evicted


# --- Module Notes -----------------------------------------------------------
# Store calls are bounded by the per-attempt timeout but never retried: a timed-out Redis
# admit may still have run, and a retry would count the request twice.
