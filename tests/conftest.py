from __future__ import annotations

import asyncio
import sys
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.api.ratelimit import rate_limiter
from app.core.roles import Role
from app.main import app
from app.models.organization import (
    Organization,
    OrgStatus,
    Plan,
    SubscriptionStatus,
    Usage,
)
from app.models.team import Team
from app.models.user import User
from app.repos.invitation_repo import invitation_repo
from app.repos.notification_repo import notification_repo
from app.repos.org_repo import org_repo
from app.repos.team_repo import team_repo
from app.repos.user_repo import user_repo
from app.services import token_service
from app.services.auth_service import hash_password
from app.services.cache import cache_service
from app.services.task_queue import task_queue
from app.services.token_blacklist import token_blacklist

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

PASSWORD = "password123"


@pytest.fixture(autouse=True)
def reset_repos() -> None:
    """Empty every in-memory repository between tests."""
    for repo in (user_repo, org_repo, team_repo, invitation_repo, notification_repo):
        repo._by_id.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Clear rate limit buckets between tests so limits don't bleed."""
    if hasattr(rate_limiter, "clear"):
        rate_limiter.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_token_blacklist() -> None:
    if hasattr(token_blacklist, "clear"):
        token_blacklist.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "clear"):
        cache_service.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    if hasattr(task_queue, "clear"):
        task_queue.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def run(coro):
    """Drive one coroutine to completion from a sync test."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


def create_org(
    slug: str = "acme",
    *,
    plan: Plan = Plan.FREE,
    subscription_status: SubscriptionStatus = SubscriptionStatus.TRIALING,
    trial_days: float | None = 14,
    users: int = 1,
    teams: int = 0,
    owner_id=None,
    **extra,
) -> Organization:
    """Persist an organization.  ``trial_days`` may be negative (expired)."""
    trial_ends_at = (
        datetime.now(UTC) + timedelta(days=trial_days) if trial_days is not None else None
    )
    org = Organization(
        id=uuid4(),
        name=slug.replace("-", " ").title(),
        slug=slug,
        owner_id=owner_id,
        plan=plan,
        subscription_status=subscription_status,
        trial_ends_at=trial_ends_at,
        usage=Usage(users=users, teams=teams),
        status=extra.pop("status", OrgStatus.ACTIVE),
        **extra,
    )
    run(org_repo.add(org))
    return org


def create_user(
    email: str,
    *,
    role: Role = Role.ORG_MEMBER,
    org: Organization | None = None,
    password: str = PASSWORD,
    **extra,
) -> User:
    user = User.new(
        email=email,
        password_hash=hash_password(password),
        name=email.split("@")[0].title(),
        role=role,
        organization_id=org.id if org else None,
    )
    if extra:
        user = replace(user, **extra)
    run(user_repo.add(user))
    if org is not None and role is Role.ORG_OWNER and org.owner_id is None:
        run(org_repo.update(org.id, owner_id=user.id))
    return user


def create_team(org: Organization, name: str = "Alpha", **extra) -> Team:
    team = Team.new(organization_id=org.id, name=name)
    if extra:
        team = replace(team, **extra)
    run(team_repo.add(team))
    return team


def mint_token(user: User) -> str:
    """Create a valid ES256 access token for *user*."""
    return token_service.create_access_token(
        sub=str(user.id), email=user.email, role=user.role.value
    )


def auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user)}"}


@pytest.fixture
def org() -> Organization:
    return create_org()


@pytest.fixture
def owner(org: Organization) -> User:
    return create_user("owner@acme.test", role=Role.ORG_OWNER, org=org)


@pytest.fixture
def org_admin(org: Organization) -> User:
    return create_user("admin@acme.test", role=Role.ORG_ADMIN, org=org)


@pytest.fixture
def member(org: Organization) -> User:
    return create_user("member@acme.test", role=Role.ORG_MEMBER, org=org)


@pytest.fixture
def super_admin() -> User:
    return create_user("root@platform.test", role=Role.SUPER_ADMIN)
