"""
apigate.ratelimit.store

Backing stores for sliding-window rate-limit logs.

Responsibilities:
- Perform the prune-check-append step atomically per client key.
- Refund an admission (request cancelled before reaching the handler).
- Evict idle keys so memory stays bounded to active clients.

Two implementations share the `RateWindowStore` protocol:
- `InMemoryWindowStore`: per-key `threading.Lock`, safe for threads and asyncio tasks.
- `RedisWindowStore`: sorted set per key, atomic on the server through a Lua script.
"""

from __future__ import annotations

import threading
import uuid
from bisect import bisect_left, insort
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as redis


@dataclass(frozen=True, slots=True)
class WindowDecision:
    admitted: bool
    count: int
    limit: int
    admitted_at: float | None = None
    oldest: float | None = None
    # Store-specific handle for `release` (sorted-set member for Redis).
    marker: str | None = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RateWindowStore(Protocol):
    async def admit(self, key: str, now: float, *, limit: int, window: float) -> WindowDecision: ...

    async def release(self, key: str, decision: WindowDecision) -> None: ...

    async def sweep(self, now: float, *, window: float) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class _WindowEntry:
    __slots__ = ("lock", "timestamps", "evicted")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # Kept sorted: concurrent callers may read the clock in one order and append in another.
        self.timestamps: list[float] = []
        self.evicted = False

    def prune(self, cutoff: float) -> None:
        # The window is [now - window, now]; only timestamps strictly older than the cutoff expire.
        del self.timestamps[: bisect_left(self.timestamps, cutoff)]


class InMemoryWindowStore:
    def __init__(self) -> None:
        self._entries: dict[str, _WindowEntry] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._entries)

    def _entry(self, key: str) -> _WindowEntry:
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _WindowEntry()
            return entry

    def try_admit(self, key: str, now: float, *, limit: int, window: float) -> WindowDecision:
        while True:
            entry = self._entry(key)
            with entry.lock:
                if entry.evicted:
                    # Lost a race with `sweep`; the registry now holds (or will create) a fresh entry.
                    continue
                entry.prune(now - window)
                stamps = entry.timestamps
                if len(stamps) < limit:
                    insort(stamps, now)
                    return WindowDecision(
                        admitted=True,
                        count=len(stamps),
                        limit=limit,
                        admitted_at=now,
                        oldest=stamps[0],
                    )
                return WindowDecision(
                    admitted=False,
                    count=len(stamps),
                    limit=limit,
                    oldest=stamps[0] if stamps else None,
                )

    def try_release(self, key: str, admitted_at: float) -> bool:
        with self._registry_lock:
            entry = self._entries.get(key)
        if entry is None:
            return False
        with entry.lock:
            stamps = entry.timestamps
            i = bisect_left(stamps, admitted_at)
            if i < len(stamps) and stamps[i] == admitted_at:
                del stamps[i]
                return True
            return False

    def try_sweep(self, now: float, *, window: float) -> int:
        evicted = 0
        with self._registry_lock:
            for key, entry in list(self._entries.items()):
                # Skip keys with an admit in flight; they are active by definition.
                if not entry.lock.acquire(blocking=False):
                    continue
                try:
                    entry.prune(now - window)
                    if not entry.timestamps:
                        entry.evicted = True
                        del self._entries[key]
                        evicted += 1
                finally:
                    entry.lock.release()
        return evicted

    async def admit(self, key: str, now: float, *, limit: int, window: float) -> WindowDecision:
        return self.try_admit(key, now, limit=limit, window=window)

    async def release(self, key: str, decision: WindowDecision) -> None:
        if decision.admitted_at is not None:
            self.try_release(key, decision.admitted_at)

    async def sweep(self, now: float, *, window: float) -> int:
        return self.try_sweep(now, window=window)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


_ADMIT_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]
redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. (now - window))
local count = redis.call('ZCARD', key)
local admitted = 0
if count < limit then
  redis.call('ZADD', key, now, member)
  count = count + 1
  admitted = 1
end
redis.call('PEXPIRE', key, math.ceil(window * 1000) + 1)
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_score = ''
if oldest[2] then
  oldest_score = oldest[2]
end
return {admitted, count, oldest_score}
"""


class RedisWindowStore:
    """
    Shares windows across processes. Keys carry a PEXPIRE of one window, so Redis evicts
    idle clients itself and `sweep` has nothing to do.

    The limiter feeding this store must use a wall clock (`SystemClock`): monotonic
    readings are not comparable between processes.
    """

    def __init__(self, client: Any, *, prefix: str = "apigate:ratelimit") -> None:
        self._client = client
        self._prefix = prefix
        self._admit_script = client.register_script(_ADMIT_LUA)

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "apigate:ratelimit") -> RedisWindowStore:
        return cls(redis.from_url(url), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def admit(self, key: str, now: float, *, limit: int, window: float) -> WindowDecision:
        marker = f"{now!r}:{uuid.uuid4().hex}"
        admitted, count, oldest = await self._admit_script(
            keys=[self._key(key)],
            args=[repr(now), repr(window), limit, marker],
        )
        if isinstance(oldest, bytes):
            oldest = oldest.decode("utf-8")
        return WindowDecision(
            admitted=bool(int(admitted)),
            count=int(count),
            limit=limit,
            admitted_at=now if int(admitted) else None,
            oldest=float(oldest) if oldest else None,
            marker=marker if int(admitted) else None,
        )

    async def release(self, key: str, decision: WindowDecision) -> None:
        if decision.marker is not None:
            await self._client.zrem(self._key(key), decision.marker)

    async def sweep(self, now: float, *, window: float) -> int:
        return 0

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


# --- Module Notes -----------------------------------------------------------
# Neither store holds an in-process lock across an await: the in-memory store does all
# its work synchronously, and the Redis store relies on server-side script atomicity.
