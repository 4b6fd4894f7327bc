"""
apigate.auth.models

Auth domain models.

Responsibilities:
- Define the authenticated identity type (`Principal`) attached to a request context.
- Define the per-route role requirement (`RoutePolicy`).
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity.
    """

    subject: str
    roles: frozenset[str]
    expires_at: float

    def has_any_role(self, roles: frozenset[str]) -> bool:
        return not self.roles.isdisjoint(roles)


@dataclass(frozen=True, slots=True)
class RoutePolicy:
    route: str
    required_roles: frozenset[str] = frozenset()

    @property
    def is_public(self) -> bool:
        # An empty requirement means any caller (or none) may pass authorization.
        return not self.required_roles


# --- Module Notes -----------------------------------------------------------
# Roles are matched exactly (case-sensitive); there is no implied hierarchy between them.
