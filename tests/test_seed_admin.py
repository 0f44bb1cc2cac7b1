from __future__ import annotations

import pytest

from app.core.roles import Role
from app.repos.user_repo import user_repo
from scripts.seed_admin import main
from tests.conftest import run


def test_seeds_super_admin_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SEED_ADMIN_EMAIL", "Root@Example.com")
    monkeypatch.setenv("SEED_ADMIN_PASSWORD", "s3cret!")
    assert run(main()) == 0
    admin = run(user_repo.get_by_email("root@example.com"))
    assert admin is not None
    assert admin.role is Role.SUPER_ADMIN


@pytest.mark.parametrize(
    ("email", "password"),
    [("", "s3cret!"), ("root@example.com", "short")],
    ids=["no-email", "short-password"],
)
def test_refuses_incomplete_env(monkeypatch: pytest.MonkeyPatch, email: str, password: str) -> None:
    monkeypatch.setenv("SEED_ADMIN_EMAIL", email)
    monkeypatch.setenv("SEED_ADMIN_PASSWORD", password)
    assert run(main()) == 1
    assert run(user_repo.get_by_email("root@example.com")) is None
