"""
apigate.api.app

FastAPI app factory for the pipeline service.

Responsibilities:
- Build the backing stores, limiter, cache and middleware chain from settings.
- Mount the pipeline as ASGI middleware in front of every router.
- Run the idle-key sweeper and close stores on shutdown.
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable

from fastapi import FastAPI

from apigate import __version__
from apigate.api.middleware import PipelineMiddleware, forward_to_app
from apigate.api.routers.dev_auth import router as dev_auth_router
from apigate.api.routers.health import router as health_router
from apigate.api.routers.resources import router as resources_router
from apigate.cache.response_cache import ResponseCache
from apigate.cache.store import CacheStore, InMemoryCacheStore, RedisCacheStore
from apigate.clock import Clock, MonotonicClock, SystemClock
from apigate.config import ConfigHolder, PipelineConfig
from apigate.observability.logging import configure_logging, get_logger
from apigate.pipeline.chain import build_chain
from apigate.ratelimit.limiter import SlidingWindowRateLimiter
from apigate.ratelimit.store import InMemoryWindowStore, RateWindowStore, RedisWindowStore
from apigate.retry import RetryPolicy
from apigate.settings import Settings
from apigate.tracing import Tracer

log = get_logger(__name__)


def build_window_store(settings: Settings) -> RateWindowStore:
    if settings.backing_store == "redis":
        return RedisWindowStore.from_url(settings.redis_url)
    return InMemoryWindowStore()


def build_cache_store(settings: Settings) -> CacheStore:
    if settings.backing_store == "redis":
        return RedisCacheStore.from_url(settings.redis_url)
    return InMemoryCacheStore()


def default_clock(settings: Settings) -> Clock:
    # Redis windows are shared across processes, so timestamps must come from a clock all of
    # them agree on.
    if settings.backing_store == "redis":
        return SystemClock()
    return MonotonicClock()


async def _sweep_idle_keys(
    limiter: SlidingWindowRateLimiter,
    holder: ConfigHolder,
    clock: Clock,
) -> None:
    while True:
        rule = holder.current().rate_limit
        await asyncio.sleep(rule.window_seconds)
        try:
            await limiter.sweep(clock.now(), rule=rule)
        except Exception:
            log.exception("rate_limit_sweep_failed")


def create_app(
    *,
    settings: Settings,
    window_store: RateWindowStore | None = None,
    cache_store: CacheStore | None = None,
    clock: Clock | None = None,
    wall_clock: Clock | None = None,
    settings_factory: Callable[[], Settings] = Settings,
) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    # Only build what was not injected; a caller-supplied store is used as is, even when empty.
    if window_store is None:
        window_store = build_window_store(settings)
    if cache_store is None:
        cache_store = build_cache_store(settings)
    if clock is None:
        clock = default_clock(settings)

    holder = ConfigHolder(PipelineConfig.from_settings(settings))
    retry = RetryPolicy(
        attempts=settings.store_retry_attempts,
        timeout_seconds=settings.store_timeout_seconds,
    )
    limiter = SlidingWindowRateLimiter(
        window_store,
        holder.current().rate_limit,
        retry=retry,
        fail_open=settings.rate_limit_fail_open,
    )
    cache = ResponseCache(cache_store, retry=retry)
    chain = build_chain(
        holder,
        forward_to_app,
        limiter=limiter,
        cache=cache,
        tracer=Tracer(header=settings.trace_header, trust_inbound=settings.trust_inbound_trace_id),
        clock=clock,
        wall_clock=wall_clock,
        deadline_seconds=settings.request_timeout_seconds,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env, backing_store=settings.backing_store, stages=chain.stage_names)
        sweeper = asyncio.create_task(_sweep_idle_keys(limiter, holder, clock))
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            await limiter.store.close()
            await cache.store.close()
            log.info("shutdown")

    app = FastAPI(
        title="apigate",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.settings_factory = settings_factory
    app.state.config_holder = holder
    app.state.limiter = limiter
    app.state.cache = cache
    app.state.chain = chain

    app.add_middleware(PipelineMiddleware, chain=chain)
    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(resources_router)

    return app


# --- Module Notes -----------------------------------------------------------
# This file is intentionally small: app composition stays here; request semantics live in
# `apigate.pipeline`, and routers only consume the principal the pipeline attached.
