"""
apigate.config

Immutable pipeline configuration and its atomic holder.

Responsibilities:
- Freeze `Settings` into a `PipelineConfig` snapshot read by every stage.
- Swap the whole snapshot atomically on reload; a request keeps the snapshot it started with.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

from apigate.auth.jwt import JwtConfig, TokenVerifier
from apigate.auth.policy import RolePolicyTable
from apigate.ratelimit.limiter import RateLimitRule
from apigate.settings import Settings


class PathSet:
    """
    Exact paths plus `/*` prefixes, e.g. {"/healthz", "/v1/public/*"}.
    """

    def __init__(self, paths: Iterable[str] = ()) -> None:
        exact: set[str] = set()
        prefixes: list[str] = []
        for path in paths:
            if path.endswith("/*"):
                prefixes.append(path[:-1])
            else:
                exact.add(path)
        self._exact = frozenset(exact)
        self._prefixes = tuple(prefixes)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        return path in self._exact or any(path.startswith(p) for p in self._prefixes)


@dataclass(frozen=True)
class PipelineConfig:
    jwt: JwtConfig
    public_paths: PathSet = field(default_factory=PathSet)
    policies: RolePolicyTable = field(default_factory=RolePolicyTable)
    rate_limit: RateLimitRule = field(default_factory=lambda: RateLimitRule(60, 60.0))
    cache_ttl_seconds: float = 5.0
    cache_vary_headers: tuple[str, ...] = ()
    cache_vary_query: tuple[str, ...] = ()
    cache_per_principal: bool = True
    no_cache_paths: PathSet = field(default_factory=PathSet)
    trust_forwarded_for: bool = False
    verifier: TokenVerifier = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # The verifier is bound to this snapshot's key material; rotation means a new snapshot.
        object.__setattr__(self, "verifier", TokenVerifier(self.jwt))

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            jwt=JwtConfig(
                alg=settings.jwt_alg,
                issuer=settings.jwt_issuer,
                audience=settings.jwt_audience,
                secret=settings.jwt_secret,
            ),
            public_paths=PathSet(settings.public_paths),
            policies=RolePolicyTable(settings.role_policy),
            rate_limit=RateLimitRule(
                limit=settings.rate_limit_count,
                window_seconds=settings.rate_limit_window_seconds,
            ),
            cache_ttl_seconds=settings.cache_ttl_seconds,
            cache_vary_headers=tuple(settings.cache_vary_headers),
            cache_vary_query=tuple(settings.cache_vary_query),
            cache_per_principal=settings.cache_per_principal,
            no_cache_paths=PathSet(settings.no_cache_paths),
            trust_forwarded_for=settings.trust_forwarded_for,
        )


class ConfigHolder:
    def __init__(self, initial: PipelineConfig) -> None:
        self._current = initial
        self._lock = threading.Lock()

    def current(self) -> PipelineConfig:
        return self._current

    def swap(self, new: PipelineConfig) -> PipelineConfig:
        with self._lock:
            old, self._current = self._current, new
        return old

    def reload(self, settings: Settings) -> PipelineConfig:
        return self.swap(PipelineConfig.from_settings(settings))


# --- Module Notes -----------------------------------------------------------
# Snapshots are built completely before `swap`, so readers never observe a half-applied reload.
