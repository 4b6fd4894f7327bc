"""
apigate.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for the pipeline and the HTTP layer.
- Hide secrets from repr/logging (e.g., JWT secret).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Only acceptable for local development; never valid outside `env="dev"`.
DEV_JWT_SECRET = "dev-secret-change-me-before-deploying!"


class Settings(BaseSettings):
    """
    Enterprise pattern:
    - Strict env-driven configuration (list/dict fields are JSON in the environment)
    - Defaults safe for local dev
    - Loaded once; `config.PipelineConfig.from_settings` freezes it for request handling
    """

    model_config = SettingsConfigDict(env_prefix="APIGATE_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "apigate"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Token verification material
    jwt_alg: str = "HS256"
    jwt_issuer: str = "apigate"
    jwt_audience: str = "apigate-api"
    jwt_secret: str = Field(default=DEV_JWT_SECRET, repr=False)

    # Routing policy
    public_paths: list[str] = Field(
        default_factory=lambda: [
            "/healthz",
            "/readyz",
            "/docs",
            "/openapi.json",
            "/v1/dev/token",
            "/v1/public/*",
        ]
    )
    role_policy: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "/v1/reports/*": ["analyst", "admin"],
            "/v1/admin/*": ["admin"],
        }
    )

    # Rate limiting
    rate_limit_count: int = Field(default=60, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    rate_limit_fail_open: bool = False
    # Key clients by the first X-Forwarded-For hop (only safe behind a trusted proxy).
    trust_forwarded_for: bool = False

    # Response caching
    cache_ttl_seconds: float = Field(default=5.0, ge=0)
    cache_vary_headers: list[str] = Field(default_factory=lambda: ["accept", "accept-language"])
    cache_vary_query: list[str] = Field(default_factory=list)
    cache_per_principal: bool = True
    no_cache_paths: list[str] = Field(default_factory=lambda: ["/healthz", "/readyz"])

    # Tracing
    trace_header: str = "X-Request-ID"
    trust_inbound_trace_id: bool = False

    # Backing stores
    backing_store: Literal["memory", "redis"] = "memory"
    redis_url: str = Field(default="redis://localhost:6379/0", repr=False)
    store_timeout_seconds: float = Field(default=0.25, gt=0)
    # Applies to cache calls; rate-limit writes always make a single attempt.
    store_retry_attempts: int = Field(default=2, ge=1, le=5)

    # Overall per-request deadline; 0 disables it.
    request_timeout_seconds: float = Field(default=30.0, ge=0)

    @field_validator("cache_vary_headers")
    @classmethod
    def _lower_headers(cls, value: list[str]) -> list[str]:
        return [h.lower() for h in value]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Hot reload never mutates a Settings instance; build a new one and swap the derived
# `PipelineConfig` through `config.ConfigHolder`.
