"""
apigate.auth.jwt

JWT issuing and verification.

Responsibilities:
- Issue short-lived JWTs for local/dev scenarios and tests.
- Verify bearer credentials into a `Principal`, classifying every failure as `Unauthenticated`
  with a distinct reason code (missing, malformed, bad signature, bad claims, expired).

Note:
- Production systems often prefer RS256 + JWKS; this repo uses HS256 for simplicity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import (
    DecodeError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    MissingRequiredClaimError,
)

from apigate.auth.models import Principal
from apigate.errors import Unauthenticated

_STAGE = "authentication"


@dataclass(frozen=True, slots=True)
class JwtConfig:
    # Algorithm/issuer/audience are enforced during decoding.
    alg: str
    issuer: str
    audience: str
    secret: str

    def __repr__(self) -> str:
        return f"JwtConfig(alg={self.alg!r}, issuer={self.issuer!r}, audience={self.audience!r})"


def issue_token(
    *,
    cfg: JwtConfig,
    subject: str,
    roles: list[str],
    ttl: timedelta = timedelta(hours=1),
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(tz=UTC)
    # Keep payload minimal and stable; downstream services should avoid parsing arbitrary fields.
    payload: dict[str, Any] = {
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "sub": subject,
        "roles": roles,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.alg)


def decode_and_validate(*, cfg: JwtConfig, token: str) -> dict[str, Any]:
    """
    Check signature, issuer and audience. Time-based claims are left to the caller, which
    evaluates them against an injected clock instead of PyJWT's wall clock.
    """

    try:
        return jwt.decode(
            token,
            cfg.secret,
            algorithms=[cfg.alg],
            issuer=cfg.issuer,
            audience=cfg.audience,
            options={
                "require": ["exp", "iss", "aud", "sub"],
                "verify_exp": False,
                "verify_nbf": False,
                "verify_iat": False,
            },
        )
    # InvalidSignatureError subclasses DecodeError, so it must be matched first.
    except InvalidSignatureError as e:
        raise Unauthenticated(str(e), stage=_STAGE, reason="invalid_signature") from e
    except (InvalidIssuerError, InvalidAudienceError, MissingRequiredClaimError) as e:
        raise Unauthenticated(str(e), stage=_STAGE, reason="invalid_claims") from e
    except DecodeError as e:
        raise Unauthenticated(str(e), stage=_STAGE, reason="invalid_token") from e
    except InvalidTokenError as e:
        raise Unauthenticated(str(e), stage=_STAGE, reason="invalid_token") from e


class TokenVerifier:
    """
    Stateless apart from the verification material, which is never mutated.
    Key rotation builds a new verifier from a new `JwtConfig` (see `config.ConfigHolder`).
    """

    def __init__(self, cfg: JwtConfig) -> None:
        self._cfg = cfg

    @property
    def config(self) -> JwtConfig:
        return self._cfg

    def verify(self, credential: str | None, now: float) -> Principal:
        if not credential or not credential.strip():
            raise Unauthenticated("no bearer credential presented", stage=_STAGE, reason="missing_token")

        claims = decode_and_validate(cfg=self._cfg, token=credential.strip())

        expires_at = _numeric_claim(claims, "exp")
        if now >= expires_at:
            raise Unauthenticated(
                f"token expired at {expires_at:.0f} (now {now:.0f})",
                stage=_STAGE,
                reason="token_expired",
            )
        if "nbf" in claims and now < _numeric_claim(claims, "nbf"):
            raise Unauthenticated("token not yet valid", stage=_STAGE, reason="invalid_claims")

        subject = str(claims.get("sub") or "")
        if not subject:
            raise Unauthenticated("empty subject claim", stage=_STAGE, reason="invalid_claims")

        return Principal(subject=subject, roles=_roles_from_claims(claims), expires_at=expires_at)


def _numeric_claim(claims: dict[str, Any], name: str) -> float:
    value = claims.get(name)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise Unauthenticated(f"claim {name!r} is not numeric", stage=_STAGE, reason="invalid_claims")
    return float(value)


def _roles_from_claims(claims: dict[str, Any]) -> frozenset[str]:
    # Absent or unusable roles mean "no roles", not a failure; public policies still apply.
    raw = claims.get("roles")
    if isinstance(raw, str):
        return frozenset({raw})
    if isinstance(raw, list | tuple):
        return frozenset(str(r) for r in raw if isinstance(r, str) and r)
    return frozenset()


# --- Module Notes -----------------------------------------------------------
# Token issuing is used by:
# - `api/routers/dev_auth.py` (dev convenience)
# - the test suite, to mint valid/expired/forged credentials
