"""
apigate.cache.response_cache

TTL-bounded response cache over a pluggable store.

Responsibilities:
- Serve an entry only while `now < expires_at`.
- Stamp entries with an absolute expiry on write (replace-on-write).
- Degrade store failures and timeouts: reads become misses, writes are skipped.
"""

from __future__ import annotations

from dataclasses import replace

from apigate.cache.store import CacheEntry, CacheStore
from apigate.errors import StoreUnavailable
from apigate.observability.logging import get_logger
from apigate.retry import RetryPolicy, call_with_retry

log = get_logger(__name__)


class ResponseCache:
    def __init__(self, store: CacheStore, *, retry: RetryPolicy | None = None) -> None:
        self._store = store
        self._retry = retry or RetryPolicy()

    @property
    def store(self) -> CacheStore:
        return self._store

    async def get(self, fingerprint: str, now: float) -> CacheEntry | None:
        try:
            entry = await call_with_retry(
                lambda: self._store.get(fingerprint),
                policy=self._retry,
                name="cache.get",
            )
        except StoreUnavailable as e:
            log.warning("cache_read_degraded", fingerprint=fingerprint, error=str(e))
            return None
        if entry is None or entry.expires_at <= now:
            return None
        return entry

    async def put(
        self,
        fingerprint: str,
        entry: CacheEntry,
        ttl: float,
        now: float,
    ) -> CacheEntry | None:
        if ttl <= 0:
            return None
        stored = replace(entry, expires_at=now + ttl)
        try:
            await call_with_retry(
                lambda: self._store.set(fingerprint, stored, ttl),
                policy=self._retry,
                name="cache.put",
            )
        except StoreUnavailable as e:
            log.warning("cache_write_skipped", fingerprint=fingerprint, error=str(e))
            return None
        return stored

    async def invalidate(self, fingerprint: str) -> None:
        try:
            await call_with_retry(
                lambda: self._store.delete(fingerprint),
                policy=self._retry,
                name="cache.invalidate",
            )
        except StoreUnavailable as e:
            log.warning("cache_invalidate_failed", fingerprint=fingerprint, error=str(e))


# --- Module Notes -----------------------------------------------------------
# Two concurrent misses for one fingerprint may both compute and write; the later write
# wins. Collapsing them (single-flight) is deliberately left to callers.
