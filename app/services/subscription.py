"""Trial/subscription gate.

An organization may use gated features iff

    subscription_status == active
    OR (subscription_status == trialing AND trial_ends_at > now)

Expiry is decided here, at read time, against the current clock: the
daily sweep only moves the stored status along, it is never what locks
an organization out.  Platform admins bypass the gate.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from app.core.errors import BadRequest, Forbidden, PaymentRequired
from app.core.metrics import AUTHZ_DENIALS
from app.models.organization import Organization, SubscriptionStatus
from app.models.principal import Principal
from app.services.org_service import get_organization

logger = logging.getLogger(__name__)

TRIAL_EXPIRED = (
    "Your trial has expired. Please upgrade your subscription to continue "
    "using this feature."
)
TRIAL_EXPIRED_TEAMS = "Your trial has expired. Please upgrade to create new teams."
TRIAL_EXPIRED_INVITES = "Your trial has expired. Please upgrade to invite new members."


def can_access_features(org: Organization, now: datetime | None = None) -> bool:
    now = now or datetime.now(UTC)
    if org.subscription_status is SubscriptionStatus.ACTIVE:
        return True
    return (
        org.subscription_status is SubscriptionStatus.TRIALING
        and org.trial_ends_at is not None
        and org.trial_ends_at > now
    )


def trial_status(org: Organization, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(UTC)
    on_trial = org.is_on_trial(now)
    return {
        "isOnTrial": on_trial,
        "daysLeft": org.days_left_in_trial(now) if on_trial else 0,
        "trialEndsAt": org.trial_ends_at.isoformat() if org.trial_ends_at else None,
        "hasExpired": (
            org.subscription_status is SubscriptionStatus.TRIALING
            and org.trial_ends_at is not None
            and org.trial_ends_at <= now
        )
        or org.subscription_status is SubscriptionStatus.PAST_DUE,
        "canAccessFeatures": can_access_features(org, now),
        "subscriptionStatus": org.subscription_status.value,
        "plan": org.plan.value,
    }


async def requires_active_subscription(
    principal: Principal,
    *,
    message: str = TRIAL_EXPIRED,
    now: datetime | None = None,
) -> Organization | None:
    """Gate the caller's organization.

    Returns the organization it checked, or None for a platform admin
    (who is not gated).  Raises Forbidden(*message*) when gated.
    """
    if principal.is_platform_admin():
        return None
    if principal.organization_id is None:
        raise BadRequest("Organization context required")

    org = await get_organization(principal.organization_id)
    if not can_access_features(org, now):
        logger.warning(
            "Access denied: org=%s status=%s trial_ends_at=%s (subscription gate)",
            org.id,
            org.subscription_status,
            org.trial_ends_at,
        )
        AUTHZ_DENIALS.labels(guard="requires_active_subscription").inc()
        raise Forbidden(message)
    return org


def check_subscription_status(org: Organization) -> None:
    status = org.subscription_status
    if status in (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE):
        return
    AUTHZ_DENIALS.labels(guard="check_subscription_status").inc()
    if status is SubscriptionStatus.PAST_DUE:
        raise PaymentRequired(
            "Your subscription payment is past due. Please update your payment "
            "method to continue using the service."
        )
    if status is SubscriptionStatus.CANCELED:
        raise Forbidden(
            "Your subscription has been canceled. Please reactivate your "
            "subscription to continue."
        )
    raise PaymentRequired(
        "Your subscription setup is incomplete. Please complete the payment process."
    )


def check_feature_access(org: Organization, feature: str) -> None:
    if feature in org.limits.features:
        return
    AUTHZ_DENIALS.labels(guard="check_feature_access").inc()
    raise Forbidden(
        f"This feature is not available in your {org.plan.value} plan. "
        f"Please upgrade to access {feature}."
    )
