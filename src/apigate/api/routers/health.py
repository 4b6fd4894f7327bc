"""
apigate.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness check (`/healthz`).
- Provide readiness check (`/readyz`) with backing-store connectivity validation.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from apigate.api.deps import rate_limiter, response_cache
from apigate.cache.response_cache import ResponseCache
from apigate.ratelimit.limiter import SlidingWindowRateLimiter

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    # Liveness: process is up and serving HTTP.
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(
    limiter: SlidingWindowRateLimiter = Depends(rate_limiter),
    cache: ResponseCache = Depends(response_cache),
):
    # Readiness: the rate-limit store is critical; the cache only degrades, so report it.
    checks: dict[str, bool] = {}
    for name, store in (("rate_limit_store", limiter.store), ("cache_store", cache.store)):
        try:
            checks[name] = await store.ping()
        except Exception:
            checks[name] = False

    if not checks["rate_limit_store"]:
        return JSONResponse(
            status_code=HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable", "checks": checks},
        )
    return {"status": "ready", "checks": checks}


# --- Module Notes -----------------------------------------------------------
# Kubernetes typically uses /healthz for liveness and /readyz for readiness gating.
