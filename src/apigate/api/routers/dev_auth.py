"""
apigate.api.routers.dev_auth

Dev-only token minting.

Responsibilities:
- Issue HS256 tokens signed with the currently active verification material.
- Hide the endpoint entirely in prod.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from starlette.status import HTTP_404_NOT_FOUND

from apigate.api.deps import config_holder, settings_dep
from apigate.auth.jwt import issue_token
from apigate.config import ConfigHolder
from apigate.settings import Settings

router = APIRouter(prefix="/v1/dev", tags=["dev"])


class DevTokenRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=256)
    roles: list[str] = Field(default_factory=list)
    ttl_minutes: int = Field(default=60, ge=1, le=24 * 60)


class DevTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


@router.post("/token", response_model=DevTokenResponse)
async def mint_dev_token(
    body: DevTokenRequest,
    settings: Settings = Depends(settings_dep),
    holder: ConfigHolder = Depends(config_holder),
) -> DevTokenResponse:
    if settings.env == "prod":
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Not found")

    ttl = timedelta(minutes=body.ttl_minutes)
    token = issue_token(
        cfg=holder.current().jwt,
        subject=body.subject,
        roles=body.roles,
        ttl=ttl,
    )
    return DevTokenResponse(access_token=token, expires_in=int(ttl.total_seconds()))
