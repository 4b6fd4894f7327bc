"""
apigate.pipeline.stages

The gating and post-processing stages of the request pipeline.

Responsibilities:
- Tracing: one correlation id per request, bound to logs and written to the response.
- Rate limiting: sliding-window admission per client key, refunded on early cancellation.
- Authentication: bearer credential -> `Principal` (optional on public paths).
- Authorization: principal vs. the route's role policy, before any side-effecting work.
- Caching: read-through/write-through for idempotent reads only.
"""

from __future__ import annotations

import asyncio
import time

from apigate.auth.policy import AuthorizationEngine
from apigate.cache.fingerprint import compute_fingerprint
from apigate.cache.response_cache import ResponseCache
from apigate.cache.store import CacheEntry
from apigate.clock import Clock
from apigate.errors import Internal, PipelineFault, Unauthenticated
from apigate.observability.logging import get_logger
from apigate.pipeline.types import (
    Continuation,
    PipelineRequest,
    PipelineResponse,
    RequestContext,
)
from apigate.ratelimit.limiter import SlidingWindowRateLimiter
from apigate.tracing import Tracer

log = get_logger(__name__)

CACHE_STATUS_HEADER = "X-Cache"


class TracingStage:
    name = "tracing"

    def __init__(self, tracer: Tracer) -> None:
        self._tracer = tracer

    async def process(self, ctx: RequestContext, call_next: Continuation) -> PipelineResponse:
        request = ctx.request
        ctx.trace = self._tracer.begin(request.header(self._tracer.header))
        started = time.perf_counter()
        with self._tracer.bind(ctx.trace, method=request.method, path=request.path):
            log.info("request_started", inherited_trace=ctx.trace.inherited)
            response = await call_next(ctx)
            self._tracer.attach_to_response(ctx.trace, response.headers)
            log.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 3),
                cache=ctx.cache_status,
            )
        return response


def client_key_for(request: PipelineRequest, *, trust_forwarded_for: bool = False) -> str:
    # Principal identity is not known yet at this point in the chain; key by network origin.
    if trust_forwarded_for:
        forwarded = request.header("x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
        real_ip = request.header("x-real-ip")
        if real_ip:
            return real_ip.strip()
    return request.client_host or "unknown"


class RateLimitStage:
    name = "rate_limit"

    def __init__(self, limiter: SlidingWindowRateLimiter, clock: Clock) -> None:
        self._limiter = limiter
        self._clock = clock

    async def process(self, ctx: RequestContext, call_next: Continuation) -> PipelineResponse:
        key = client_key_for(ctx.request, trust_forwarded_for=ctx.config.trust_forwarded_for)
        ctx.client_key = key
        decision = await self._limiter.admit(key, self._clock.now(), rule=ctx.config.rate_limit)

        try:
            response = await call_next(ctx)
        except asyncio.CancelledError:
            # The caller went away before any backend work happened; give the slot back.
            if not ctx.reached_handler:
                await self._limiter.release(key, decision)
                log.info("rate_limit_refunded", client_key=key)
            raise

        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response


def _bearer_credential(header: str) -> str | None:
    scheme, _, credential = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credential.strip()


class AuthenticationStage:
    name = "authentication"

    def __init__(self, clock: Clock) -> None:
        # Wall clock: token `exp` claims are epoch seconds.
        self._clock = clock

    async def process(self, ctx: RequestContext, call_next: Continuation) -> PipelineResponse:
        request = ctx.request
        header = request.header("authorization")

        if not header:
            if request.path in ctx.config.public_paths:
                return await call_next(ctx)
            raise Unauthenticated(
                "no Authorization header", stage=self.name, reason="missing_token"
            )

        # A credential presented on a public path is still verified; a bad one is rejected.
        credential = _bearer_credential(header)
        if credential is None:
            raise Unauthenticated(
                "Authorization header must use the Bearer scheme",
                stage=self.name,
                reason="invalid_format",
            )

        try:
            principal = ctx.config.verifier.verify(credential, self._clock.now())
        except PipelineFault:
            raise
        except Exception as e:
            raise Internal(f"token verification failed: {e!r}", stage=self.name, reason="verifier_error") from e

        ctx.attach_principal(principal)
        log.debug("authenticated", subject=principal.subject, roles=sorted(principal.roles))
        return await call_next(ctx)


class AuthorizationStage:
    name = "authorization"

    def __init__(self, engine: AuthorizationEngine | None = None) -> None:
        self._engine = engine or AuthorizationEngine()

    async def process(self, ctx: RequestContext, call_next: Continuation) -> PipelineResponse:
        policy = ctx.config.policies.resolve(ctx.request.path)
        ctx.policy = policy
        self._engine.authorize(ctx.principal, policy)
        return await call_next(ctx)


class CacheStage:
    name = "cache"

    def __init__(self, cache: ResponseCache, clock: Clock) -> None:
        self._cache = cache
        self._clock = clock

    def _fingerprint(self, ctx: RequestContext) -> str | None:
        request, config = ctx.request, ctx.config
        if not request.is_read or config.cache_ttl_seconds <= 0:
            return None
        if request.path in config.no_cache_paths:
            return None
        if "no-store" in (request.header("cache-control") or "").lower():
            return None
        # Undeclared query params could change the response; such requests bypass the cache.
        if any(name not in config.cache_vary_query for name, _ in request.query):
            return None
        subject = ctx.principal.subject if (config.cache_per_principal and ctx.principal) else None
        return compute_fingerprint(
            request.method,
            request.path,
            query=request.query,
            headers=request.headers,
            vary_query=config.cache_vary_query,
            vary_headers=config.cache_vary_headers,
            principal_subject=subject,
        )

    async def process(self, ctx: RequestContext, call_next: Continuation) -> PipelineResponse:
        fingerprint = self._fingerprint(ctx)
        if fingerprint is None:
            return await call_next(ctx)

        entry = await self._cache.get(fingerprint, self._clock.now())
        if entry is not None:
            ctx.cache_status = "hit"
            return PipelineResponse(
                status_code=entry.status_code,
                body=entry.body,
                content_type=entry.content_type,
                headers={CACHE_STATUS_HEADER: "HIT"},
            )

        response = await call_next(ctx)
        ctx.cache_status = "miss"
        # Cached entries keep only the body, so per-caller cookies are never stored.
        if (
            response.status_code == 200
            and "no-store" not in (response.header("cache-control") or "").lower()
            and response.header("set-cookie") is None
        ):
            await self._cache.put(
                fingerprint,
                CacheEntry(
                    body=response.body,
                    content_type=response.content_type,
                    status_code=response.status_code,
                ),
                ctx.config.cache_ttl_seconds,
                self._clock.now(),
            )
        response.headers[CACHE_STATUS_HEADER] = "MISS"
        return response


# --- Module Notes -----------------------------------------------------------
# Stages raise `PipelineFault`s and never build error responses themselves; the boundary in
# `pipeline.boundary` is the only place faults become responses.
