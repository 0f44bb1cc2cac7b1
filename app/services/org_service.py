"""Organization reads and writes for tenant users.

``get_organization`` is the read-through entry point the gate, the usage
checks and the organization endpoints share: cached under
``organization:{id}`` for ten minutes, invalidated by every write in
this module and by usage changes.
"""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import replace
from typing import Any
from uuid import UUID

from app.core.errors import BadRequest, Forbidden, NotFound
from app.core.roles import Role, can_manage_role
from app.models.organization import (
    SLUG_RE,
    BillingCycle,
    Organization,
    Plan,
    SubscriptionStatus,
)
from app.models.principal import Principal
from app.models.user import User
from app.repos.org_repo import org_repo
from app.repos.team_repo import team_repo
from app.repos.user_repo import user_repo
from app.services import cache

logger = logging.getLogger(__name__)

ORG_NOT_FOUND = "Organization not found"


async def get_organization(org_id: UUID) -> Organization:
    """Cached read.  Inactive organizations are reported as not found."""
    key = cache.organization_key(org_id)
    cached = await cache.get_json(key)
    if cached is not None:
        return Organization.from_dict(cached)

    org = await org_repo.get_by_id(org_id)
    if org is None or not org.is_active:
        raise NotFound(ORG_NOT_FOUND)
    await cache.set_json(key, org.to_dict(), cache.ORGANIZATION_TTL)
    return org


async def invalidate_organization(org_id: UUID) -> None:
    await cache.invalidate(cache.organization_key(org_id))


async def check_slug(slug: str) -> bool:
    """True when *slug* is well-formed and not taken."""
    if not SLUG_RE.match(slug):
        return False
    return await org_repo.get_by_slug(slug) is None


async def slug_belongs_to(slug: str, organization_id: UUID) -> bool:
    taken = await org_repo.get_by_slug(slug)
    return taken is not None and taken.id == organization_id


def slugify(name: str) -> str:
    base = re.sub(r"[^a-z0-9\s-]", "", name.lower().strip())
    base = re.sub(r"[\s-]+", "-", base).strip("-")
    return base[:40].strip("-") or "org"


async def generate_slug(name: str) -> str:
    base = slugify(name)
    slug = base
    while not await check_slug(slug):
        slug = f"{base}-{secrets.token_hex(3)}"
    return slug


async def update_settings(org_id: UUID, *, name: str | None) -> Organization:
    org = await get_organization(org_id)
    changes: dict[str, Any] = {}
    if name is not None:
        if not name.strip():
            raise BadRequest("Organization name cannot be empty")
        changes["name"] = name.strip()
    if not changes:
        return org
    updated = await org_repo.update(org_id, **changes)
    if updated is None:
        raise NotFound(ORG_NOT_FOUND)
    await invalidate_organization(org_id)
    logger.info("Organization %s settings updated: %s", org_id, sorted(changes))
    return updated


async def usage_stats(org_id: UUID) -> dict[str, Any]:
    org = await get_organization(org_id)
    limits = org.limits
    return {
        "usage": {"users": org.usage.users, "teams": org.usage.teams},
        "limits": {
            "max_users": limits.max_users,
            "max_teams": limits.max_teams,
            "storage": limits.storage,
            "features": sorted(limits.features),
        },
        "percentages": org.usage_percentages(),
    }


async def upgrade_plan(
    principal: Principal, org_id: UUID, *, plan: Plan, billing_cycle: BillingCycle
) -> Organization:
    """Owner-only plan change.  Limits follow the plan automatically.

    Moving to the free plan activates the subscription immediately; paid
    plans become active once billing confirms payment.
    """
    org = await get_organization(org_id)
    if org.owner_id != principal.user_id and not principal.is_platform_admin():
        raise Forbidden("Only organization owner can upgrade plan")

    changes: dict[str, Any] = {"plan": plan, "billing_cycle": billing_cycle}
    if plan is Plan.FREE:
        changes["subscription_status"] = SubscriptionStatus.ACTIVE
    updated = await org_repo.update(org_id, **changes)
    if updated is None:
        raise NotFound(ORG_NOT_FOUND)
    await invalidate_organization(org_id)
    logger.info("Organization %s moved to plan=%s cycle=%s", org_id, plan, billing_cycle)
    return updated


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


async def list_members(org_id: UUID) -> list[User]:
    members = await user_repo.list_by_organization(org_id)
    return sorted(members, key=lambda u: u.created_at)


async def _load_member(org_id: UUID, user_id: UUID) -> User:
    user = await user_repo.get_by_id(user_id)
    if user is None or user.organization_id != org_id:
        raise NotFound("User not found in this organization")
    return user


def _check_member_change(principal: Principal, org: Organization, target: User) -> None:
    if target.id == org.owner_id or target.role is Role.ORG_OWNER:
        raise Forbidden("Cannot modify the organization owner")
    if target.id == principal.user_id:
        raise Forbidden("You cannot modify your own membership")
    if not can_manage_role(principal.role, target.role):
        raise Forbidden("You cannot manage users with this role")


async def update_member_role(
    principal: Principal, org_id: UUID, user_id: UUID, role: Role
) -> User:
    org = await get_organization(org_id)
    target = await _load_member(org_id, user_id)
    _check_member_change(principal, org, target)
    if not can_manage_role(principal.role, role):
        raise Forbidden(f"You cannot assign the {role} role")

    updated = await user_repo.update(user_id, role=role)
    if updated is None:
        raise NotFound("User not found in this organization")
    logger.info(
        "Member %s role changed %s -> %s in org %s by %s",
        user_id,
        target.role,
        role,
        org_id,
        principal.user_id,
    )
    return updated


async def remove_member(principal: Principal, org_id: UUID, user_id: UUID) -> None:
    org = await get_organization(org_id)
    target = await _load_member(org_id, user_id)
    _check_member_change(principal, org, target)

    await release_member(org_id, user_id)
    await user_repo.update(user_id, organization_id=None, managed_team_ids=())
    logger.info("Member %s removed from org %s by %s", user_id, org_id, principal.user_id)


async def release_member(org_id: UUID, user_id: UUID) -> None:
    """Drop *user_id* from every team of the organization and free its user slot."""
    for team in await team_repo.list_by_organization(org_id):
        if team.has_member(user_id) or team.manager_id == user_id:
            changed = team.without_member(user_id)
            if changed.manager_id == user_id:
                changed = replace(changed, manager_id=None)
            await team_repo.save(changed)

    await org_repo.decrement_usage(org_id, "users")
    await invalidate_organization(org_id)
    await cache.invalidate(patterns=(cache.teams_pattern(org_id),))
