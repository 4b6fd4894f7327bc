"""
tests.conftest

Shared fixtures for the pipeline test suite.

Responsibilities:
- Provide deterministic clocks and a fixed JWT configuration.
- Mint valid, expired and forged credentials.
- Assemble a fully wired chain around a recording handler.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from apigate.auth.jwt import JwtConfig, issue_token
from apigate.auth.policy import RolePolicyTable
from apigate.cache.response_cache import ResponseCache
from apigate.cache.store import CacheEntry, CacheStore, InMemoryCacheStore
from apigate.clock import ManualClock
from apigate.config import PathSet, PipelineConfig
from apigate.pipeline.boundary import ErrorBoundary
from apigate.pipeline.chain import MiddlewareChain, build_chain
from apigate.pipeline.types import PipelineResponse, RequestContext
from apigate.ratelimit.limiter import RateLimitRule, SlidingWindowRateLimiter
from apigate.ratelimit.store import InMemoryWindowStore
from apigate.retry import RetryPolicy
from apigate.settings import Settings
from apigate.tracing import Tracer

WALL_START = 1_700_000_000.0

JWT_CFG = JwtConfig(
    alg="HS256",
    issuer="apigate-test",
    audience="apigate-test-api",
    secret="test-secret-key-that-is-at-least-32-bytes",
)

# Fast retries keep failure-path tests quick.
FAST_RETRY = RetryPolicy(attempts=2, timeout_seconds=0.05, base_delay_seconds=0.0, max_delay_seconds=0.0)


def mint(
    subject: str = "alice",
    roles: list[str] | None = None,
    *,
    cfg: JwtConfig = JWT_CFG,
    issued_at: float = WALL_START,
    ttl: timedelta = timedelta(hours=1),
) -> str:
    return issue_token(
        cfg=cfg,
        subject=subject,
        roles=roles if roles is not None else [],
        ttl=ttl,
        now=datetime.fromtimestamp(issued_at, tz=UTC),
    )


def make_config(**overrides) -> PipelineConfig:
    values = {
        "jwt": JWT_CFG,
        "public_paths": PathSet(["/healthz", "/v1/public/*"]),
        "policies": RolePolicyTable({"/v1/reports/*": ["analyst", "admin"], "/v1/admin/*": ["admin"]}),
        "rate_limit": RateLimitRule(limit=60, window_seconds=60.0),
        "cache_ttl_seconds": 5.0,
        "cache_vary_headers": ("accept",),
        "cache_per_principal": True,
        "no_cache_paths": PathSet(["/healthz"]),
    }
    values.update(overrides)
    return PipelineConfig(**values)


def make_settings(**overrides) -> Settings:
    values = {
        "env": "test",
        "log_level": "WARNING",
        "jwt_issuer": JWT_CFG.issuer,
        "jwt_audience": JWT_CFG.audience,
        "jwt_secret": JWT_CFG.secret,
    }
    values.update(overrides)
    return Settings(**values)


class BrokenCacheStore:
    async def get(self, key: str) -> CacheEntry | None:
        raise ConnectionError("cache down")

    async def set(self, key: str, entry: CacheEntry, ttl: float) -> None:
        raise ConnectionError("cache down")

    async def delete(self, key: str) -> None:
        raise ConnectionError("cache down")

    async def ping(self) -> bool:
        return False

    async def close(self) -> None:
        return None


@dataclass
class RecordingHandler:
    """
    Terminal handler that records every context it receives and echoes a JSON body.
    """

    status_code: int = 200
    calls: list[RequestContext] = field(default_factory=list)

    async def __call__(self, ctx: RequestContext) -> PipelineResponse:
        self.calls.append(ctx)
        return PipelineResponse.json(
            {
                "path": ctx.request.path,
                "subject": ctx.principal.subject if ctx.principal else None,
                "render": len(self.calls),
            },
            status_code=self.status_code,
        )


@dataclass
class Harness:
    chain: MiddlewareChain
    handler: RecordingHandler
    window_store: InMemoryWindowStore
    cache_store: CacheStore
    limiter: SlidingWindowRateLimiter
    cache: ResponseCache
    clock: ManualClock
    wall: ManualClock


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=1_000.0)


@pytest.fixture
def wall() -> ManualClock:
    return ManualClock(start=WALL_START)


@pytest.fixture
def make_harness(clock: ManualClock, wall: ManualClock) -> Callable[..., Harness]:
    def factory(
        *,
        config: PipelineConfig | None = None,
        handler: RecordingHandler | None = None,
        cache_store: CacheStore | None = None,
        boundary_logger: Any = None,
    ) -> Harness:
        config = config or make_config()
        handler = handler or RecordingHandler()
        window_store = InMemoryWindowStore()
        if cache_store is None:
            cache_store = InMemoryCacheStore()
        limiter = SlidingWindowRateLimiter(window_store, config.rate_limit, retry=FAST_RETRY)
        cache = ResponseCache(cache_store, retry=FAST_RETRY)
        chain = build_chain(
            config,
            handler,
            limiter=limiter,
            cache=cache,
            clock=clock,
            wall_clock=wall,
            boundary=ErrorBoundary(Tracer(), logger=boundary_logger),
        )
        return Harness(chain, handler, window_store, cache_store, limiter, cache, clock, wall)

    return factory


# --- Module Notes -----------------------------------------------------------
# `clock` drives rate windows and cache TTLs; `wall` drives token expiry. They are separate
# so tests can expire a token without touching rate windows, and vice versa.
