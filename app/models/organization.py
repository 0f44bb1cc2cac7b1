from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from types import MappingProxyType
from typing import Any
from uuid import UUID, uuid4

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class Plan(StrEnum):
    FREE = "free"
    PROFESSIONAL = "professional"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


class OrgStatus(StrEnum):
    PENDING_SETUP = "pending_setup"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class BillingCycle(StrEnum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


@dataclass(frozen=True, slots=True)
class PlanLimits:
    max_users: int
    max_teams: int
    storage: str
    features: frozenset[str]


_FREE_FEATURES = ("basic", "approvals")
_PROFESSIONAL_FEATURES = (*_FREE_FEATURES, "analytics", "export", "email_support")
_BUSINESS_FEATURES = (
    *_PROFESSIONAL_FEATURES,
    "api",
    "advanced_permissions",
    "priority_support",
    "sso",
)
_ENTERPRISE_FEATURES = (
    *_BUSINESS_FEATURES,
    "dedicated_support",
    "custom_integrations",
    "audit_logs",
    "mfa",
)

PLAN_LIMITS: MappingProxyType[Plan, PlanLimits] = MappingProxyType(
    {
        Plan.FREE: PlanLimits(5, 3, "1GB", frozenset(_FREE_FEATURES)),
        Plan.PROFESSIONAL: PlanLimits(
            50, 20, "50GB", frozenset(_PROFESSIONAL_FEATURES)
        ),
        Plan.BUSINESS: PlanLimits(200, 100, "500GB", frozenset(_BUSINESS_FEATURES)),
        Plan.ENTERPRISE: PlanLimits(
            999999, 999999, "Unlimited", frozenset(_ENTERPRISE_FEATURES)
        ),
    }
)


@dataclass(frozen=True, slots=True)
class Usage:
    users: int = 0
    teams: int = 0


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True, slots=True)
class Organization:
    """Tenant root.

    ``limits`` is a property of ``plan``: changing the plan is the only way
    to change the limits.
    """

    id: UUID
    name: str
    slug: str
    owner_id: UUID | None
    plan: Plan = Plan.FREE
    subscription_status: SubscriptionStatus = SubscriptionStatus.TRIALING
    trial_ends_at: datetime | None = None
    usage: Usage = field(default_factory=Usage)
    status: OrgStatus = OrgStatus.ACTIVE
    is_active: bool = True
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    stripe_price_id: str | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    setup_token_hash: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def new_trial(
        *,
        name: str,
        slug: str,
        owner_id: UUID | None,
        trial_days: int,
        plan: Plan = Plan.FREE,
        now: datetime | None = None,
    ) -> Organization:
        """Self-registered organization: trialing, owner counted as user #1."""
        now = now or datetime.now(UTC)
        return Organization(
            id=uuid4(),
            name=name.strip(),
            slug=slug,
            owner_id=owner_id,
            plan=plan,
            subscription_status=SubscriptionStatus.TRIALING,
            trial_ends_at=now + timedelta(days=trial_days),
            usage=Usage(users=1, teams=0),
        )

    @property
    def limits(self) -> PlanLimits:
        return PLAN_LIMITS[self.plan]

    def is_on_trial(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return (
            self.subscription_status is SubscriptionStatus.TRIALING
            and self.trial_ends_at is not None
            and self.trial_ends_at > now
        )

    def days_left_in_trial(self, now: datetime | None = None) -> int:
        if self.trial_ends_at is None:
            return 0
        now = now or datetime.now(UTC)
        return max(0, days_until(self.trial_ends_at, now))

    def usage_percentages(self) -> dict[str, int]:
        return {
            "users": round(self.usage.users / self.limits.max_users * 100),
            "teams": round(self.usage.teams / self.limits.max_teams * 100),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "slug": self.slug,
            "owner_id": str(self.owner_id) if self.owner_id else None,
            "plan": self.plan.value,
            "subscription_status": self.subscription_status.value,
            "trial_ends_at": _iso(self.trial_ends_at),
            "usage": {"users": self.usage.users, "teams": self.usage.teams},
            "status": self.status.value,
            "is_active": self.is_active,
            "billing_cycle": self.billing_cycle.value,
            "stripe_customer_id": self.stripe_customer_id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "stripe_price_id": self.stripe_price_id,
            "current_period_end": _iso(self.current_period_end),
            "cancel_at_period_end": self.cancel_at_period_end,
            "created_at": _iso(self.created_at),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Organization:
        return Organization(
            id=UUID(data["id"]),
            name=data["name"],
            slug=data["slug"],
            owner_id=UUID(data["owner_id"]) if data.get("owner_id") else None,
            plan=Plan(data["plan"]),
            subscription_status=SubscriptionStatus(data["subscription_status"]),
            trial_ends_at=_parse_dt(data.get("trial_ends_at")),
            usage=Usage(**data.get("usage", {})),
            status=OrgStatus(data.get("status", OrgStatus.ACTIVE)),
            is_active=data.get("is_active", True),
            billing_cycle=BillingCycle(data.get("billing_cycle", BillingCycle.MONTHLY)),
            stripe_customer_id=data.get("stripe_customer_id"),
            stripe_subscription_id=data.get("stripe_subscription_id"),
            stripe_price_id=data.get("stripe_price_id"),
            current_period_end=_parse_dt(data.get("current_period_end")),
            cancel_at_period_end=data.get("cancel_at_period_end", False),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(UTC),
        )


def days_until(when: datetime, now: datetime) -> int:
    """Whole days from *now* to *when*, rounded up (negative once past)."""
    return math.ceil((when - now).total_seconds() / 86400)
