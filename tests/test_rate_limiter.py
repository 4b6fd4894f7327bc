"""
tests.test_rate_limiter

Sliding-window admission, concurrency and store behaviour.

Responsibilities:
- Window boundaries: L admissions, rejection with retry-after, recovery after the window.
- Exactly L admissions under contention (threads and asyncio tasks).
- Idle-key eviction racing with admits, refunds, and store-failure policy.
- Redis store wiring against a mocked client.
"""

from __future__ import annotations

import asyncio
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock, MagicMock

import pytest

from apigate.errors import RateLimited, UpstreamError
from apigate.ratelimit.limiter import RateLimitRule, SlidingWindowRateLimiter
from apigate.ratelimit.store import InMemoryWindowStore, RedisWindowStore, WindowDecision

from conftest import FAST_RETRY


class FailingWindowStore:
    def __init__(self) -> None:
        self.calls = 0

    async def admit(self, key: str, now: float, *, limit: int, window: float) -> WindowDecision:
        self.calls += 1
        raise ConnectionError("store down")

    async def release(self, key: str, decision: WindowDecision) -> None:
        raise ConnectionError("store down")

    async def sweep(self, now: float, *, window: float) -> int:
        return 0

    async def ping(self) -> bool:
        return False

    async def close(self) -> None:
        return None


class YieldingWindowStore(InMemoryWindowStore):
    """
    Yields to the event loop a random number of times before each admit, so concurrent
    tasks interleave differently on every run.
    """

    async def admit(self, key: str, now: float, *, limit: int, window: float) -> WindowDecision:
        for _ in range(random.randint(0, 3)):
            await asyncio.sleep(0)
        return await super().admit(key, now, limit=limit, window=window)


def test_rule_validation() -> None:
    with pytest.raises(ValueError):
        RateLimitRule(limit=0, window_seconds=1.0)
    with pytest.raises(ValueError):
        RateLimitRule(limit=1, window_seconds=0)


@pytest.mark.asyncio
async def test_admits_limit_then_rejects_then_recovers() -> None:
    limiter = SlidingWindowRateLimiter(InMemoryWindowStore(), RateLimitRule(limit=3, window_seconds=10.0))

    for i in range(3):
        decision = await limiter.admit("client", 100.0 + i)
        assert decision.admitted
        assert decision.remaining == 2 - i

    with pytest.raises(RateLimited) as exc:
        await limiter.admit("client", 105.0)
    # Oldest admission (t=100) leaves the window just after t=110.
    assert exc.value.retry_after == pytest.approx(5.0)
    assert exc.value.status_code == 429

    # Exactly W after the oldest admission, that slot still counts.
    with pytest.raises(RateLimited) as exc:
        await limiter.admit("client", 110.0)
    assert exc.value.retry_after == pytest.approx(0.0)

    decision = await limiter.admit("client", 110.001)
    assert decision.admitted
    assert decision.count == 3


@pytest.mark.asyncio
async def test_admission_exactly_one_window_old_still_counts() -> None:
    limiter = SlidingWindowRateLimiter(InMemoryWindowStore(), RateLimitRule(limit=1, window_seconds=60.0))

    await limiter.admit("client", 0.0)
    with pytest.raises(RateLimited):
        await limiter.admit("client", 60.0)
    assert (await limiter.admit("client", 60.5)).admitted


@pytest.mark.asyncio
async def test_keys_are_independent() -> None:
    limiter = SlidingWindowRateLimiter(InMemoryWindowStore(), RateLimitRule(limit=1, window_seconds=10.0))

    await limiter.admit("a", 1.0)
    await limiter.admit("b", 1.0)
    with pytest.raises(RateLimited):
        await limiter.admit("a", 2.0)


@pytest.mark.asyncio
async def test_per_call_rule_overrides_default() -> None:
    limiter = SlidingWindowRateLimiter(InMemoryWindowStore(), RateLimitRule(limit=1, window_seconds=10.0))

    wider = RateLimitRule(limit=2, window_seconds=10.0)
    await limiter.admit("a", 1.0, rule=wider)
    await limiter.admit("a", 1.5, rule=wider)
    with pytest.raises(RateLimited):
        await limiter.admit("a", 2.0, rule=wider)


def test_out_of_order_timestamps_stay_sorted() -> None:
    store = InMemoryWindowStore()
    for now in (5.0, 3.0, 4.0):
        assert store.try_admit("k", now, limit=10, window=10.0).admitted

    decision = store.try_admit("k", 13.5, limit=10, window=10.0)
    # 3.0 is older than 3.5 and expired; 4.0 and 5.0 remain.
    assert decision.count == 3
    assert decision.oldest == 4.0


@pytest.mark.parametrize("round_", range(10))
def test_exactly_limit_admitted_across_threads(round_: int) -> None:
    store = InMemoryWindowStore()
    workers, limit = 48, 7
    barrier = threading.Barrier(workers)

    def attempt(i: int) -> bool:
        barrier.wait()
        return store.try_admit("shared", 50.0 + i * 1e-6, limit=limit, window=60.0).admitted

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(attempt, random.sample(range(workers), workers)))

    assert sum(results) == limit


@pytest.mark.asyncio
@pytest.mark.parametrize("round_", range(10))
async def test_exactly_limit_admitted_across_tasks(round_: int) -> None:
    limiter = SlidingWindowRateLimiter(YieldingWindowStore(), RateLimitRule(limit=5, window_seconds=60.0))

    async def attempt() -> bool:
        try:
            await limiter.admit("shared", 10.0)
            return True
        except RateLimited:
            return False

    results = await asyncio.gather(*(attempt() for _ in range(40)))
    assert sum(results) == 5


@pytest.mark.parametrize("round_", range(5))
def test_sweep_racing_admits_never_over_admits(round_: int) -> None:
    store = InMemoryWindowStore()
    limit, window = 5, 10.0
    # Fill the window long ago so every entry is idle and eligible for eviction.
    for _ in range(limit):
        store.try_admit("hot", 0.0, limit=limit, window=window)

    now = 100.0
    admitters, sweepers = 32, 8
    barrier = threading.Barrier(admitters + sweepers)

    def admit(_: int) -> bool:
        barrier.wait()
        return store.try_admit("hot", now, limit=limit, window=window).admitted

    def sweep(_: int) -> bool:
        barrier.wait()
        for _ in range(20):
            store.try_sweep(now, window=window)
        return False

    tasks = [admit] * admitters + [sweep] * sweepers
    random.shuffle(tasks)
    with ThreadPoolExecutor(max_workers=len(tasks)) as pool:
        results = list(pool.map(lambda fn: fn(0), tasks))

    assert sum(results) == limit
    assert store.try_admit("hot", now, limit=limit, window=window).admitted is False


def test_sweep_evicts_only_idle_keys() -> None:
    store = InMemoryWindowStore()
    store.try_admit("idle", 0.0, limit=5, window=10.0)
    store.try_admit("active", 9.0, limit=5, window=10.0)

    assert store.try_sweep(15.0, window=10.0) == 1
    assert len(store) == 1
    # An evicted key starts fresh.
    assert store.try_admit("idle", 15.0, limit=5, window=10.0).count == 1


@pytest.mark.asyncio
async def test_release_refunds_slot() -> None:
    limiter = SlidingWindowRateLimiter(InMemoryWindowStore(), RateLimitRule(limit=1, window_seconds=10.0))

    decision = await limiter.admit("a", 1.0)
    await limiter.release("a", decision)
    again = await limiter.admit("a", 2.0)
    assert again.admitted

    # Releasing a rejected decision is a no-op.
    await limiter.release("a", WindowDecision(admitted=False, count=1, limit=1))
    with pytest.raises(RateLimited):
        await limiter.admit("a", 3.0)


@pytest.mark.asyncio
async def test_limiter_sweep_uses_rule_window() -> None:
    store = InMemoryWindowStore()
    limiter = SlidingWindowRateLimiter(store, RateLimitRule(limit=2, window_seconds=5.0))
    await limiter.admit("a", 0.0)

    assert await limiter.sweep(4.0) == 0
    # At exactly one window the admission is still live.
    assert await limiter.sweep(5.0) == 0
    assert await limiter.sweep(5.5) == 1
    assert len(store) == 0


@pytest.mark.asyncio
async def test_store_failure_fails_closed() -> None:
    store = FailingWindowStore()
    limiter = SlidingWindowRateLimiter(store, RateLimitRule(limit=5, window_seconds=1.0), retry=FAST_RETRY)

    with pytest.raises(UpstreamError) as exc:
        await limiter.admit("a", 1.0)
    assert exc.value.reason == "store_unavailable"
    # Admission writes are never replayed, whatever the retry policy allows.
    assert FAST_RETRY.attempts > 1
    assert store.calls == 1


@pytest.mark.asyncio
async def test_store_failure_can_fail_open() -> None:
    limiter = SlidingWindowRateLimiter(
        FailingWindowStore(),
        RateLimitRule(limit=5, window_seconds=1.0),
        retry=FAST_RETRY,
        fail_open=True,
    )

    decision = await limiter.admit("a", 1.0)
    assert decision.admitted
    # Nothing was recorded, so there is nothing to refund.
    await limiter.release("a", decision)


def _redis_client(script_result: list) -> tuple[MagicMock, AsyncMock]:
    client = MagicMock()
    script = AsyncMock(return_value=script_result)
    client.register_script.return_value = script
    client.zrem = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client, script


@pytest.mark.asyncio
async def test_redis_store_admit_and_release() -> None:
    client, script = _redis_client([1, 2, b"41.5"])
    store = RedisWindowStore(client, prefix="t")

    decision = await store.admit("10.0.0.1", 42.0, limit=3, window=60.0)

    assert decision.admitted
    assert decision.count == 2
    assert decision.oldest == 41.5
    assert decision.admitted_at == 42.0
    # Only scores strictly older than now - window are trimmed.
    assert "'(' .. (now - window)" in client.register_script.call_args.args[0]
    kwargs = script.await_args.kwargs
    assert kwargs["keys"] == ["t:10.0.0.1"]
    assert kwargs["args"][2] == 3
    assert kwargs["args"][3] == decision.marker

    await store.release("10.0.0.1", decision)
    client.zrem.assert_awaited_once_with("t:10.0.0.1", decision.marker)

    assert await store.ping() is True
    await store.close()
    client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_store_rejection_has_no_marker() -> None:
    client, _ = _redis_client([0, 3, b"40"])
    store = RedisWindowStore(client)

    decision = await store.admit("k", 42.0, limit=3, window=60.0)

    assert not decision.admitted
    assert decision.marker is None
    assert decision.oldest == 40.0
    await store.release("k", decision)
    client.zrem.assert_not_awaited()
    assert await store.sweep(100.0, window=60.0) == 0


@pytest.mark.asyncio
async def test_limiter_over_redis_store_reports_retry_after() -> None:
    client, _ = _redis_client([0, 3, b"40"])
    limiter = SlidingWindowRateLimiter(RedisWindowStore(client), RateLimitRule(limit=3, window_seconds=60.0))

    with pytest.raises(RateLimited) as exc:
        await limiter.admit("k", 42.0)
    assert exc.value.retry_after == pytest.approx(58.0)


# --- Module Notes -----------------------------------------------------------
# Concurrency tests repeat with shuffled arrival order; each round must admit exactly L.
