"""Per-plan usage limits.

``can_add_user``/``can_add_team`` answer the question for display; the
write paths call ``reserve`` instead, which increments the counter only
while it is below the plan limit in one storage operation.  A rejected
reservation changes nothing, so callers reserve before any other write
and ``release`` the slot if a later step fails.
"""

from __future__ import annotations

import logging
from uuid import UUID

from app.core.errors import Forbidden, NotFound
from app.core.metrics import AUTHZ_DENIALS
from app.models.organization import Organization
from app.repos.org_repo import UsageKind, org_repo
from app.services.org_service import invalidate_organization

logger = logging.getLogger(__name__)


def can_add_user(org: Organization) -> bool:
    return org.usage.users < org.limits.max_users


def can_add_team(org: Organization) -> bool:
    return org.usage.teams < org.limits.max_teams


def limit_message(org: Organization, kind: UsageKind) -> str:
    if kind == "users":
        return (
            f"User limit reached. Your {org.plan.value} plan allows "
            f"{org.limits.max_users} users. Please upgrade your plan to add more users."
        )
    return (
        f"Team limit reached. Your {org.plan.value} plan allows "
        f"{org.limits.max_teams} teams. Please upgrade your plan to add more teams."
    )


async def reserve(org_id: UUID, kind: UsageKind, count: int = 1) -> None:
    """Take *count* slots of *kind* or raise Forbidden with the plan limit."""
    if await org_repo.try_increment_usage(org_id, kind, count):
        await invalidate_organization(org_id)
        return

    org = await org_repo.get_by_id(org_id)
    if org is None:
        raise NotFound("Organization not found")
    logger.warning(
        "Access denied: org=%s %s limit reached (%s plan, %d/%d)",
        org_id,
        kind,
        org.plan,
        getattr(org.usage, kind),
        org.limits.max_users if kind == "users" else org.limits.max_teams,
    )
    AUTHZ_DENIALS.labels(guard=f"usage_{kind}").inc()
    raise Forbidden(limit_message(org, kind))


async def release(org_id: UUID, kind: UsageKind, count: int = 1) -> None:
    """Give slots back; the counter never drops below zero."""
    await org_repo.decrement_usage(org_id, kind, count)
    await invalidate_organization(org_id)
