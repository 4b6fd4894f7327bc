"""
apigate.auth.deps

FastAPI dependency functions exposing the pipeline's authentication result to routes.

Responsibilities:
- Hand route handlers the `Principal` the pipeline attached (authn happened upstream).
- Offer an optional variant for public routes that personalize when a caller is known.
"""

from __future__ import annotations

from fastapi import HTTPException, Request
from starlette.status import HTTP_401_UNAUTHORIZED

from apigate.auth.models import Principal


def optional_principal(request: Request) -> Principal | None:
    return getattr(request.state, "principal", None)


def get_principal(request: Request) -> Principal:
    principal = optional_principal(request)
    # Only reachable if a route is mounted on a public path but expects a caller.
    if principal is None:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Missing principal")
    return principal


# --- Module Notes -----------------------------------------------------------
# Role checks are not repeated here: the authorization stage has already enforced the
# route's policy before any handler runs.
