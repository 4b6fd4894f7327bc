"""
apigate.pipeline.chain

Middleware chain composition and the canonical pipeline builder.

Responsibilities:
- Compose an ordered list of stages and a terminal handler into nested continuations, once.
- Run one request through the chain under an optional deadline.
- Route every fault to the error boundary; never convert cancellation into a response.
- Build the standard order: boundary > tracing > rate limit > authn > authz > cache > handler.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

from apigate.auth.policy import AuthorizationEngine
from apigate.cache.response_cache import ResponseCache
from apigate.clock import Clock, MonotonicClock, SystemClock
from apigate.config import ConfigHolder, PipelineConfig
from apigate.errors import Internal
from apigate.pipeline.boundary import ErrorBoundary
from apigate.pipeline.stages import (
    AuthenticationStage,
    AuthorizationStage,
    CacheStage,
    RateLimitStage,
    TracingStage,
)
from apigate.pipeline.types import (
    Continuation,
    Handler,
    PipelineRequest,
    PipelineResponse,
    RequestContext,
    Stage,
)
from apigate.ratelimit.limiter import SlidingWindowRateLimiter
from apigate.tracing import Tracer


def _link(stage: Stage, call_next: Continuation) -> Continuation:
    async def run(ctx: RequestContext) -> PipelineResponse:
        return await stage.process(ctx, call_next)

    return run


class MiddlewareChain:
    def __init__(
        self,
        stages: Sequence[Stage],
        handler: Handler,
        *,
        config: ConfigHolder | PipelineConfig,
        boundary: ErrorBoundary,
        deadline_seconds: float | None = None,
    ) -> None:
        self._stages = tuple(stages)
        self._handler = handler
        self._config = config if isinstance(config, ConfigHolder) else ConfigHolder(config)
        self._boundary = boundary
        self._deadline = deadline_seconds or None
        self._entry = self._compose()

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self._stages]

    @property
    def config(self) -> ConfigHolder:
        return self._config

    def _compose(self) -> Continuation:
        async def terminal(ctx: RequestContext) -> PipelineResponse:
            ctx.reached_handler = True
            return await self._handler(ctx)

        call_next: Continuation = terminal
        for stage in reversed(self._stages):
            call_next = _link(stage, call_next)
        return call_next

    async def handle(
        self,
        request: PipelineRequest,
        *,
        deadline_seconds: float | None = None,
        extensions: Mapping[str, Any] | None = None,
    ) -> PipelineResponse:
        # One config snapshot per request, even if a reload lands mid-flight.
        ctx = RequestContext(
            request=request,
            config=self._config.current(),
            extensions=dict(extensions or {}),
        )
        deadline = deadline_seconds if deadline_seconds is not None else self._deadline

        if not deadline:
            try:
                return await self._entry(ctx)
            except Exception as e:
                return self._boundary.to_response(ctx, e)

        scope = asyncio.timeout(deadline)
        try:
            async with scope:
                return await self._entry(ctx)
        except TimeoutError as e:
            if scope.expired():
                fault = Internal(
                    f"request deadline of {deadline}s exceeded",
                    stage="chain",
                    reason="deadline_exceeded",
                )
                return self._boundary.to_response(ctx, fault)
            return self._boundary.to_response(ctx, e)
        except Exception as e:
            return self._boundary.to_response(ctx, e)


def build_chain(
    config: ConfigHolder | PipelineConfig,
    handler: Handler,
    *,
    limiter: SlidingWindowRateLimiter,
    cache: ResponseCache,
    tracer: Tracer | None = None,
    clock: Clock | None = None,
    wall_clock: Clock | None = None,
    authorization: AuthorizationEngine | None = None,
    boundary: ErrorBoundary | None = None,
    deadline_seconds: float | None = None,
) -> MiddlewareChain:
    """
    `clock` drives rate windows and cache expiry (monotonic by default; pass a wall clock
    when stores are shared across processes). `wall_clock` drives token expiry.
    """

    tracer = tracer or Tracer()
    clock = clock or MonotonicClock()
    wall_clock = wall_clock or SystemClock()
    stages: list[Stage] = [
        TracingStage(tracer),
        RateLimitStage(limiter, clock),
        AuthenticationStage(wall_clock),
        AuthorizationStage(authorization),
        CacheStage(cache, clock),
    ]
    return MiddlewareChain(
        stages,
        handler,
        config=config,
        boundary=boundary or ErrorBoundary(tracer),
        deadline_seconds=deadline_seconds,
    )


# --- Module Notes -----------------------------------------------------------
# Rate limiting sits before authentication so floods of bad credentials are throttled too;
# authorization sits before caching so a denied caller can never read or seed an entry.
