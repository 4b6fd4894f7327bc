"""
tests.test_auth

Token verification and authorization decisions.

Responsibilities:
- Cover every verifier failure reason, including expiry against an injected clock.
- Check the authorization decision over every combination of policy and principal roles.
"""

from __future__ import annotations

import itertools
from datetime import timedelta

import jwt
import pytest

from apigate.auth.jwt import JwtConfig, TokenVerifier
from apigate.auth.models import Principal, RoutePolicy
from apigate.auth.policy import AuthorizationEngine, RolePolicyTable
from apigate.errors import FaultKind, Forbidden, Unauthenticated

from conftest import JWT_CFG, WALL_START, mint


def _reason(exc: pytest.ExceptionInfo[Unauthenticated]) -> str | None:
    return exc.value.reason


def test_valid_token_yields_principal() -> None:
    token = mint("alice", ["analyst", "viewer"])
    principal = TokenVerifier(JWT_CFG).verify(token, WALL_START + 10)

    assert principal.subject == "alice"
    assert principal.roles == frozenset({"analyst", "viewer"})
    assert principal.expires_at == WALL_START + 3600


@pytest.mark.parametrize("credential", [None, "", "   "])
def test_missing_credential(credential: str | None) -> None:
    with pytest.raises(Unauthenticated) as exc:
        TokenVerifier(JWT_CFG).verify(credential, WALL_START)
    assert _reason(exc) == "missing_token"


def test_malformed_token() -> None:
    with pytest.raises(Unauthenticated) as exc:
        TokenVerifier(JWT_CFG).verify("not-a-jwt", WALL_START)
    assert _reason(exc) == "invalid_token"
    assert exc.value.kind is FaultKind.UNAUTHENTICATED


def test_signature_from_other_key_rejected() -> None:
    forged_cfg = JwtConfig(
        alg=JWT_CFG.alg,
        issuer=JWT_CFG.issuer,
        audience=JWT_CFG.audience,
        secret="another-secret-key-that-is-32-bytes-long",
    )
    with pytest.raises(Unauthenticated) as exc:
        TokenVerifier(JWT_CFG).verify(mint(cfg=forged_cfg), WALL_START)
    assert _reason(exc) == "invalid_signature"


def test_tampered_payload_rejected() -> None:
    header, payload, signature = mint("alice", ["viewer"]).split(".")
    other_payload = mint("mallory", ["admin"]).split(".")[1]
    with pytest.raises(Unauthenticated) as exc:
        TokenVerifier(JWT_CFG).verify(f"{header}.{other_payload}.{signature}", WALL_START)
    assert _reason(exc) == "invalid_signature"


@pytest.mark.parametrize(
    ("field", "value"),
    [("issuer", "someone-else"), ("audience", "another-api")],
)
def test_wrong_issuer_or_audience(field: str, value: str) -> None:
    values = {"alg": JWT_CFG.alg, "issuer": JWT_CFG.issuer, "audience": JWT_CFG.audience, "secret": JWT_CFG.secret}
    values[field] = value
    with pytest.raises(Unauthenticated) as exc:
        TokenVerifier(JWT_CFG).verify(mint(cfg=JwtConfig(**values)), WALL_START)
    assert _reason(exc) == "invalid_claims"


def test_missing_exp_claim_rejected() -> None:
    token = jwt.encode(
        {"iss": JWT_CFG.issuer, "aud": JWT_CFG.audience, "sub": "alice"},
        JWT_CFG.secret,
        algorithm=JWT_CFG.alg,
    )
    with pytest.raises(Unauthenticated) as exc:
        TokenVerifier(JWT_CFG).verify(token, WALL_START)
    assert _reason(exc) == "invalid_claims"


def test_expiry_uses_injected_time() -> None:
    token = mint(ttl=timedelta(seconds=30))
    verifier = TokenVerifier(JWT_CFG)

    assert verifier.verify(token, WALL_START + 29).subject == "alice"
    with pytest.raises(Unauthenticated) as exc:
        verifier.verify(token, WALL_START + 30)
    assert _reason(exc) == "token_expired"


def test_expired_and_malformed_share_kind_but_not_reason() -> None:
    verifier = TokenVerifier(JWT_CFG)
    with pytest.raises(Unauthenticated) as expired:
        verifier.verify(mint(ttl=timedelta(seconds=1)), WALL_START + 5)
    with pytest.raises(Unauthenticated) as malformed:
        verifier.verify("a.b.c", WALL_START)

    assert expired.value.kind is malformed.value.kind
    assert expired.value.public_detail == malformed.value.public_detail
    assert expired.value.reason != malformed.value.reason


def test_not_yet_valid_token_rejected() -> None:
    token = jwt.encode(
        {
            "iss": JWT_CFG.issuer,
            "aud": JWT_CFG.audience,
            "sub": "alice",
            "nbf": int(WALL_START + 60),
            "exp": int(WALL_START + 3600),
        },
        JWT_CFG.secret,
        algorithm=JWT_CFG.alg,
    )
    with pytest.raises(Unauthenticated) as exc:
        TokenVerifier(JWT_CFG).verify(token, WALL_START)
    assert _reason(exc) == "invalid_claims"


@pytest.mark.parametrize("roles_claim", [None, 42, {"admin": True}])
def test_unusable_roles_claim_means_no_roles(roles_claim: object) -> None:
    payload = {
        "iss": JWT_CFG.issuer,
        "aud": JWT_CFG.audience,
        "sub": "alice",
        "exp": int(WALL_START + 3600),
    }
    if roles_claim is not None:
        payload["roles"] = roles_claim
    token = jwt.encode(payload, JWT_CFG.secret, algorithm=JWT_CFG.alg)

    assert TokenVerifier(JWT_CFG).verify(token, WALL_START).roles == frozenset()


def test_jwt_config_repr_hides_secret() -> None:
    assert JWT_CFG.secret not in repr(JWT_CFG)


def test_policy_table_resolution() -> None:
    table = RolePolicyTable(
        {
            "/v1/reports/*": ["analyst"],
            "/v1/reports/secret/*": ["admin"],
            "/v1/me": ["viewer"],
        }
    )

    assert table.resolve("/v1/me").required_roles == frozenset({"viewer"})
    assert table.resolve("/v1/reports/42").required_roles == frozenset({"analyst"})
    assert table.resolve("/v1/reports/secret/1").required_roles == frozenset({"admin"})
    unmapped = table.resolve("/v1/elsewhere")
    assert unmapped.route == "/v1/elsewhere"
    assert unmapped.is_public


_ROLE_UNIVERSE = ("admin", "analyst", "viewer")


def _subsets(items: tuple[str, ...]) -> list[frozenset[str]]:
    return [frozenset(c) for n in range(len(items) + 1) for c in itertools.combinations(items, n)]


@pytest.mark.parametrize("required", _subsets(_ROLE_UNIVERSE))
def test_authorization_truth_table(required: frozenset[str]) -> None:
    engine = AuthorizationEngine()
    policy = RoutePolicy(route="/r", required_roles=required)

    # No principal: only a policy without requirements passes.
    if required:
        with pytest.raises(Unauthenticated):
            engine.authorize(None, policy)
    else:
        engine.authorize(None, policy)

    for roles in _subsets(_ROLE_UNIVERSE):
        principal = Principal(subject="p", roles=roles, expires_at=WALL_START + 60)
        expect_allowed = not required or bool(roles & required)
        if expect_allowed:
            engine.authorize(principal, policy)
        else:
            with pytest.raises(Forbidden) as exc:
                engine.authorize(principal, policy)
            assert exc.value.status_code == 403
            assert exc.value.reason == "insufficient_role"


# --- Module Notes -----------------------------------------------------------
# Role universe is small enough to enumerate every (required, held) pair exhaustively.
