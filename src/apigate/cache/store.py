"""
apigate.cache.store

Key-value backends for cached responses.

Responsibilities:
- Define `CacheEntry`, the immutable stored response.
- Provide an in-memory store and a Redis store behind one `CacheStore` protocol.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as redis


@dataclass(frozen=True, slots=True)
class CacheEntry:
    body: bytes
    content_type: str
    status_code: int = 200
    expires_at: float = 0.0

    def to_json(self) -> str:
        return json.dumps(
            {
                "body": base64.b64encode(self.body).decode("ascii"),
                "content_type": self.content_type,
                "status_code": self.status_code,
                "expires_at": self.expires_at,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> CacheEntry:
        data = json.loads(raw)
        return cls(
            body=base64.b64decode(data["body"]),
            content_type=data["content_type"],
            status_code=int(data["status_code"]),
            expires_at=float(data["expires_at"]),
        )


class CacheStore(Protocol):
    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(self, key: str, entry: CacheEntry, ttl: float) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class InMemoryCacheStore:
    """
    Dict-backed store. Entries are replaced whole, never mutated. Expired entries stay
    until overwritten; `max_entries` bounds memory by dropping the oldest insertion.
    """

    def __init__(self, *, max_entries: int = 10_000) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._max_entries = max_entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry, ttl: float) -> None:
        if key not in self._entries and len(self._entries) >= self._max_entries:
            try:
                self._entries.pop(next(iter(self._entries)))
            except (StopIteration, KeyError):
                # Another writer already made room.
                pass
        self._entries[key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()


class RedisCacheStore:
    def __init__(self, client: Any, *, prefix: str = "apigate:cache") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "apigate:cache") -> RedisCacheStore:
        return cls(redis.from_url(url), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> CacheEntry | None:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        return CacheEntry.from_json(raw)

    async def set(self, key: str, entry: CacheEntry, ttl: float) -> None:
        # Redis expiry is a memory bound only; `ResponseCache` still checks `expires_at`.
        await self._client.set(self._key(key), entry.to_json(), px=max(1, int(ttl * 1000)))

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


# --- Module Notes -----------------------------------------------------------
# Stores never interpret time; expiry decisions use the pipeline's injected clock.
