from __future__ import annotations

import time

import pytest

from app.core.errors import Unauthenticated
from app.core.roles import Role
from app.repos.user_repo import user_repo
from app.services import token_service
from app.services.identity import (
    INVALID_TOKEN,
    INVALID_USER,
    NO_TOKEN,
    extract_token,
    resolve_identity,
    resolve_optional_identity,
)
from app.services.token_blacklist import token_blacklist
from tests.conftest import mint_token, run


@pytest.mark.parametrize(
    ("cookies", "authorization", "expected"),
    [
        ({"accessToken": "from-cookie"}, "Bearer from-header", "from-cookie"),
        ({}, "Bearer from-header", "from-header"),
        ({}, "bearer  padded ", "padded"),
        ({}, "Basic dXNlcjpwYXNz", None),
        ({}, "Bearer ", None),
        ({"accessToken": ""}, None, None),
    ],
    ids=["cookie-wins", "header", "case-insensitive", "wrong-scheme", "empty", "nothing"],
)
def test_extract_token(cookies: dict, authorization: str | None, expected: str | None) -> None:
    assert extract_token(cookies, authorization) == expected


def test_resolves_principal_from_current_user(member, org) -> None:
    principal = run(resolve_identity(mint_token(member)))
    assert principal.user_id == member.id
    assert principal.organization_id == org.id
    assert principal.token_jti


@pytest.mark.parametrize(
    ("token", "message"),
    [(None, NO_TOKEN), ("not-a-jwt", INVALID_TOKEN)],
    ids=["missing", "garbage"],
)
def test_rejects_bad_tokens(token: str | None, message: str) -> None:
    with pytest.raises(Unauthenticated, match=message):
        run(resolve_identity(token))


def test_refresh_token_is_not_an_access_token(member) -> None:
    refresh = token_service.create_refresh_token(sub=str(member.id))
    with pytest.raises(Unauthenticated, match=INVALID_TOKEN):
        run(resolve_identity(refresh))


def test_revoked_token_is_rejected(member) -> None:
    token = mint_token(member)
    jti = token_service.decode_access_token(token)["jti"]
    run(token_blacklist.revoke(jti, time.time() + 900))
    with pytest.raises(Unauthenticated, match=INVALID_TOKEN):
        run(resolve_identity(token))


def test_deactivation_applies_to_live_tokens(member) -> None:
    token = mint_token(member)
    run(user_repo.update(member.id, is_active=False))
    with pytest.raises(Unauthenticated, match=INVALID_USER):
        run(resolve_identity(token))


def test_role_is_reloaded_not_read_from_token(member) -> None:
    token = mint_token(member)
    run(user_repo.update(member.id, role=Role.ORG_ADMIN))
    assert run(resolve_identity(token)).role is Role.ORG_ADMIN


def test_optional_identity_never_raises(member) -> None:
    assert run(resolve_optional_identity(None)) is None
    assert run(resolve_optional_identity("junk")) is None
    assert run(resolve_optional_identity(mint_token(member))) is not None
