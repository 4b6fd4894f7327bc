"""
apigate.api.routers.resources

Sample resources behind the pipeline.

Responsibilities:
- Public, authenticated, and role-gated endpoints used by operators and integration tests.
- An admin endpoint to hot-reload the pipeline configuration through the app's settings factory.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from starlette.status import HTTP_409_CONFLICT

from apigate.api.deps import config_holder, settings_dep, settings_factory
from apigate.auth.deps import get_principal, optional_principal
from apigate.auth.models import Principal
from apigate.config import ConfigHolder
from apigate.observability.logging import get_logger
from apigate.settings import DEV_JWT_SECRET, Settings

log = get_logger(__name__)

router = APIRouter(prefix="/v1")

# Lets callers (and tests) see whether a response came from the handler or the cache.
_render_counter = itertools.count(1)


@router.get("/public/status", tags=["public"])
async def public_status(principal: Principal | None = Depends(optional_principal)) -> dict[str, Any]:
    return {"status": "ok", "caller": principal.subject if principal else None}


@router.get("/me", tags=["identity"])
async def whoami(request: Request, principal: Principal = Depends(get_principal)) -> dict[str, Any]:
    return {
        "subject": principal.subject,
        "roles": sorted(principal.roles),
        "expires_at": principal.expires_at,
        "trace_id": request.state.trace_id,
    }


@router.get("/reports/summary", tags=["reports"])
async def report_summary(principal: Principal = Depends(get_principal)) -> dict[str, Any]:
    return {
        "report": "summary",
        "requested_by": principal.subject,
        "render": next(_render_counter),
    }


@router.get("/reports/{report_id}", tags=["reports"])
async def report_detail(report_id: str, principal: Principal = Depends(get_principal)) -> dict[str, Any]:
    return {"report": report_id, "requested_by": principal.subject, "render": next(_render_counter)}


class ReportRequest(BaseModel):
    name: str = Field(min_length=1, max_length=128)


@router.post("/reports", tags=["reports"], status_code=201)
async def create_report(body: ReportRequest, principal: Principal = Depends(get_principal)) -> dict[str, Any]:
    return {"report": body.name, "created_by": principal.subject}


@router.post("/admin/reload", tags=["admin"])
async def reload_config(
    request: Request,
    settings: Settings = Depends(settings_dep),
    factory: Callable[[], Settings] = Depends(settings_factory),
    holder: ConfigHolder = Depends(config_holder),
) -> dict[str, Any]:
    # Re-reads configuration through the app's factory; the new snapshot applies to requests
    # that start after the swap.
    fresh = factory()
    if fresh.jwt_secret == DEV_JWT_SECRET and (settings.env != "dev" or fresh.env != "dev"):
        log.warning("config_reload_refused", reason="dev_jwt_secret", env=settings.env)
        raise HTTPException(
            status_code=HTTP_409_CONFLICT,
            detail="Refusing to reload: JWT secret is the built-in development default",
        )

    holder.reload(fresh)
    request.app.state.settings = fresh
    current = holder.current()
    log.info("config_reloaded", rate_limit=current.rate_limit.limit, routes=current.policies.routes())
    return {
        "reloaded": True,
        "rate_limit": {
            "count": current.rate_limit.limit,
            "window_seconds": current.rate_limit.window_seconds,
        },
        "routes": current.policies.routes(),
    }
