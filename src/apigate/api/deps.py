"""
apigate.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings and the pipeline components on app.state.
- Encapsulate app.state access patterns (config holder, stores).
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from apigate.cache.response_cache import ResponseCache
from apigate.config import ConfigHolder
from apigate.ratelimit.limiter import SlidingWindowRateLimiter
from apigate.settings import Settings


def settings_dep(request: Request) -> Settings:
    # The app's own settings, not the process-wide cached instance; tests build apps
    # with explicit settings.
    return request.app.state.settings  # type: ignore[attr-defined]


def settings_factory(request: Request) -> Callable[[], Settings]:
    # What `POST /v1/admin/reload` builds fresh settings from (defaults to reading the env).
    return request.app.state.settings_factory  # type: ignore[attr-defined]


def config_holder(request: Request) -> ConfigHolder:
    return request.app.state.config_holder  # type: ignore[attr-defined]


def rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.limiter  # type: ignore[attr-defined]


def response_cache(request: Request) -> ResponseCache:
    return request.app.state.cache  # type: ignore[attr-defined]


# --- Module Notes -----------------------------------------------------------
# Everything here is created once in `api.app.create_app`; dependencies only look it up.
