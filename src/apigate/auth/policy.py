"""
apigate.auth.policy

Route policies and the authorization decision.

Responsibilities:
- Resolve the `RoutePolicy` for a request path from static configuration.
- Decide whether a (possibly absent) principal satisfies that policy.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from apigate.auth.models import Principal, RoutePolicy
from apigate.errors import Forbidden, Unauthenticated

_STAGE = "authorization"


class RolePolicyTable:
    """
    Immutable route -> roles mapping.

    Routes are matched exactly first; entries ending in `/*` match any path under that prefix,
    longest prefix wins. Unmapped routes get an empty requirement (any authenticated caller).
    """

    def __init__(self, policies: Mapping[str, Iterable[str]] | None = None) -> None:
        exact: dict[str, RoutePolicy] = {}
        prefixes: list[tuple[str, RoutePolicy]] = []
        for route, roles in (policies or {}).items():
            policy = RoutePolicy(route=route, required_roles=frozenset(roles))
            if route.endswith("/*"):
                prefixes.append((route[:-1], policy))
            else:
                exact[route] = policy
        self._exact = exact
        # Longest prefix first so the most specific rule wins.
        self._prefixes = tuple(sorted(prefixes, key=lambda item: len(item[0]), reverse=True))

    def resolve(self, path: str) -> RoutePolicy:
        policy = self._exact.get(path)
        if policy is not None:
            return policy
        for prefix, candidate in self._prefixes:
            if path.startswith(prefix):
                return candidate
        return RoutePolicy(route=path)

    def routes(self) -> list[str]:
        return [*self._exact, *(p.route for _, p in self._prefixes)]


class AuthorizationEngine:
    def authorize(self, principal: Principal | None, policy: RoutePolicy) -> None:
        if policy.is_public:
            return
        if principal is None:
            raise Unauthenticated(
                f"route {policy.route!r} requires a principal",
                stage=_STAGE,
                reason="missing_principal",
            )
        if not principal.has_any_role(policy.required_roles):
            raise Forbidden(
                f"subject {principal.subject!r} lacks any of {sorted(policy.required_roles)}",
                stage=_STAGE,
                reason="insufficient_role",
            )


# --- Module Notes -----------------------------------------------------------
# Decisions are deterministic given their inputs, so they are never retried.
