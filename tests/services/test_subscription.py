"""Trial gate, subscription status checks and plan limits."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from app.core.errors import Forbidden, PaymentRequired
from app.core.roles import Role
from app.models.organization import Organization, Plan, SubscriptionStatus, Usage
from app.models.principal import Principal
from app.repos.org_repo import org_repo
from app.services import usage
from app.services.subscription import (
    TRIAL_EXPIRED_TEAMS,
    can_access_features,
    check_feature_access,
    check_subscription_status,
    requires_active_subscription,
    trial_status,
)
from tests.conftest import create_org, run

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _org(status: SubscriptionStatus, trial_ends_at: datetime | None, **extra) -> Organization:
    return Organization(
        id=uuid4(),
        name="Acme",
        slug="acme",
        owner_id=None,
        subscription_status=status,
        trial_ends_at=trial_ends_at,
        **extra,
    )


@pytest.mark.parametrize(
    ("status", "ends", "allowed"),
    [
        (SubscriptionStatus.ACTIVE, None, True),
        (SubscriptionStatus.TRIALING, NOW + timedelta(days=1), True),
        (SubscriptionStatus.TRIALING, NOW + timedelta(seconds=1), True),
        (SubscriptionStatus.TRIALING, NOW, False),
        (SubscriptionStatus.TRIALING, NOW - timedelta(days=1), False),
        (SubscriptionStatus.TRIALING, None, False),
        (SubscriptionStatus.PAST_DUE, NOW + timedelta(days=5), False),
        (SubscriptionStatus.CANCELED, None, False),
        (SubscriptionStatus.INCOMPLETE, None, False),
    ],
    ids=[
        "active",
        "trial-running",
        "trial-last-second",
        "trial-ends-now",
        "trial-expired-not-swept",
        "trial-without-end",
        "past-due",
        "canceled",
        "incomplete",
    ],
)
def test_can_access_features(status, ends, allowed: bool) -> None:
    assert can_access_features(_org(status, ends), NOW) is allowed


def test_trial_status_for_running_trial() -> None:
    org = _org(SubscriptionStatus.TRIALING, NOW + timedelta(days=3, hours=1))
    status = trial_status(org, NOW)
    assert status["isOnTrial"] is True
    assert status["daysLeft"] == 4
    assert status["hasExpired"] is False
    assert status["canAccessFeatures"] is True
    assert status["subscriptionStatus"] == "trialing"


def test_trial_status_for_expired_unswept_trial() -> None:
    org = _org(SubscriptionStatus.TRIALING, NOW - timedelta(hours=1))
    status = trial_status(org, NOW)
    assert status["isOnTrial"] is False
    assert status["daysLeft"] == 0
    assert status["hasExpired"] is True
    assert status["canAccessFeatures"] is False


def test_gate_rejects_expired_trial_with_given_message() -> None:
    org = create_org(trial_days=-1)
    principal = Principal(
        user_id=uuid4(), email="o@test", role=Role.ORG_OWNER, organization_id=org.id
    )
    with pytest.raises(Forbidden, match="create new teams"):
        run(requires_active_subscription(principal, message=TRIAL_EXPIRED_TEAMS))


def test_gate_returns_org_when_allowed() -> None:
    org = create_org(trial_days=5)
    principal = Principal(
        user_id=uuid4(), email="o@test", role=Role.ORG_OWNER, organization_id=org.id
    )
    assert run(requires_active_subscription(principal)).id == org.id


def test_gate_exempts_platform_admin() -> None:
    principal = Principal(user_id=uuid4(), email="root@test", role=Role.SUPER_ADMIN)
    assert run(requires_active_subscription(principal)) is None


@pytest.mark.parametrize(
    ("status", "error"),
    [
        (SubscriptionStatus.PAST_DUE, PaymentRequired),
        (SubscriptionStatus.CANCELED, Forbidden),
        (SubscriptionStatus.INCOMPLETE, PaymentRequired),
    ],
    ids=["past-due-402", "canceled-403", "incomplete-402"],
)
def test_check_subscription_status_rejects(status, error) -> None:
    with pytest.raises(error):
        check_subscription_status(_org(status, None))


@pytest.mark.parametrize(
    "status", [SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING], ids=str
)
def test_check_subscription_status_allows(status) -> None:
    check_subscription_status(_org(status, None))


def test_feature_access_follows_plan() -> None:
    free = _org(SubscriptionStatus.ACTIVE, None)
    with pytest.raises(Forbidden, match="not available in your free plan"):
        check_feature_access(free, "analytics")
    check_feature_access(replace(free, plan=Plan.PROFESSIONAL), "analytics")


# ---------------------------------------------------------------------------
# Usage limits
# ---------------------------------------------------------------------------


def test_usage_percentages_are_rounded() -> None:
    org = _org(SubscriptionStatus.ACTIVE, None, usage=Usage(users=1, teams=2))
    assert org.usage_percentages() == {"users": 20, "teams": 67}


def test_reserve_stops_at_plan_limit() -> None:
    org = create_org(teams=2)
    run(usage.reserve(org.id, "teams"))
    with pytest.raises(Forbidden, match="Team limit reached. Your free plan allows 3 teams"):
        run(usage.reserve(org.id, "teams"))
    assert run(org_repo.get_by_id(org.id)).usage.teams == 3


def test_release_never_goes_negative() -> None:
    org = create_org(users=1)
    run(usage.release(org.id, "users", 5))
    assert run(org_repo.get_by_id(org.id)).usage.users == 0


def test_user_limit_message() -> None:
    org = _org(SubscriptionStatus.ACTIVE, None, usage=Usage(users=5))
    assert not usage.can_add_user(org)
    assert usage.limit_message(org, "users").startswith(
        "User limit reached. Your free plan allows 5 users."
    )
