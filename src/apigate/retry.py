"""
apigate.retry

Bounded retry with per-attempt timeouts for backing-store calls.

Responsibilities:
- Retry transient store failures a small, fixed number of times with short backoff.
- Bound every attempt with its own timeout, independent of the overall request deadline.
- Surface exhaustion as `StoreUnavailable` so callers pick fail-closed or degrade.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from apigate.errors import StoreUnavailable
from apigate.observability.logging import get_logger

T = TypeVar("T")

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    attempts: int = 2
    timeout_seconds: float = 0.25
    base_delay_seconds: float = 0.01
    max_delay_seconds: float = 0.1

    def delay_for(self, attempt: int) -> float:
        # Exponential backoff with full jitter; attempt is 1-based.
        ceiling = min(self.max_delay_seconds, self.base_delay_seconds * (2 ** (attempt - 1)))
        return random.uniform(0, ceiling)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    name: str,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    attempts = max(1, policy.attempts)
    last_error: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            async with asyncio.timeout(policy.timeout_seconds):
                return await operation()
        except TimeoutError as e:
            last_error = e
        except retry_on as e:
            last_error = e

        if attempt < attempts:
            log.warning(
                "store_call_retry",
                operation=name,
                attempt=attempt,
                error=repr(last_error),
            )
            await asyncio.sleep(policy.delay_for(attempt))

    log.error("store_call_exhausted", operation=name, attempts=attempts, error=repr(last_error))
    raise StoreUnavailable(f"{name} failed after {attempts} attempt(s): {last_error!r}") from last_error


# --- Module Notes -----------------------------------------------------------
# `asyncio.CancelledError` is a BaseException and is never caught here: cancellation
# always propagates to the caller immediately.
