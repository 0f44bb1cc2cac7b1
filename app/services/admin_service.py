"""Platform administration: every organization and every user.

Callers are platform admins; the permission checks happen at the route.
Admin-created organizations start in ``pending_setup`` with an active
subscription (no trial) and an inactive owner, and become usable once
the owner redeems the emailed setup token (``auth_service.setup_account``).
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import replace
from typing import Any
from uuid import UUID, uuid4

from app.core.errors import BadRequest, Conflict, Forbidden, NotFound
from app.core.roles import Role, can_manage_role
from app.models.organization import (
    Organization,
    OrgStatus,
    Plan,
    SubscriptionStatus,
    Usage,
)
from app.models.principal import Principal
from app.models.user import User, normalize_email
from app.repos.org_repo import org_repo
from app.repos.query import ListQuery, Page, apply_in_memory
from app.repos.team_repo import team_repo
from app.repos.user_repo import user_repo
from app.services import cache
from app.services.auth_service import hash_password, hash_token
from app.services.email_service import queue_email
from app.services.org_service import (
    check_slug,
    generate_slug,
    invalidate_organization,
    release_member,
)

logger = logging.getLogger(__name__)

_ORG_FIELDS = ("name", "slug", "plan", "subscription_status", "status", "created_at")
_USER_FIELDS = ("name", "email", "role", "organization_id", "is_active", "created_at")


def _page(rows: list[dict[str, Any]], query: ListQuery, fields: tuple[str, ...]) -> Page[dict]:
    items, total = apply_in_memory(
        rows,
        query,
        searchable=("name", "email", "slug"),
        filterable=fields,
        sortable=fields,
    )
    return Page(items=[dict(r) for r in items], total=total, page=query.page, limit=query.limit)


async def list_organizations(query: ListQuery) -> Page[dict]:
    orgs = await org_repo.list_all()
    return _page([o.to_dict() for o in orgs], query, _ORG_FIELDS)


async def list_users(query: ListQuery) -> Page[dict]:
    users = await user_repo.list_all()
    return _page([u.to_dict() for u in users], query, _USER_FIELDS)


async def create_organization(
    *,
    name: str,
    owner_email: str,
    owner_name: str = "",
    slug: str | None = None,
    plan: Plan = Plan.FREE,
) -> tuple[Organization, User, str]:
    """Create an organization awaiting setup by its owner.

    Returns the organization, the (inactive) owner and the raw setup
    token that was emailed to the owner.
    """
    if not name.strip():
        raise BadRequest("Organization name is required")
    owner_email = normalize_email(owner_email)
    if await user_repo.get_by_email(owner_email) is not None:
        raise Conflict("User with this email already exists")
    if slug:
        slug = slug.strip().lower()
        if not await check_slug(slug):
            raise Conflict("Organization slug already exists or is invalid")
    else:
        slug = await generate_slug(name)

    token = secrets.token_hex(32)
    owner = User.new(
        email=owner_email,
        # unusable until setup replaces it
        password_hash=hash_password(secrets.token_urlsafe(32)),
        name=owner_name,
        role=Role.ORG_OWNER,
        is_active=False,
        must_change_password=True,
    )
    org = Organization(
        id=uuid4(),
        name=name.strip(),
        slug=slug,
        owner_id=owner.id,
        plan=plan,
        subscription_status=SubscriptionStatus.ACTIVE,
        trial_ends_at=None,
        usage=Usage(users=1, teams=0),
        status=OrgStatus.PENDING_SETUP,
        setup_token_hash=hash_token(token),
    )
    try:
        await org_repo.add(org)
    except ValueError:
        raise Conflict("Organization slug already exists or is invalid") from None
    owner = replace(owner, organization_id=org.id)
    try:
        await user_repo.add(owner)
    except ValueError:
        await org_repo.delete(org.id)
        raise Conflict("User with this email already exists") from None

    await queue_email("org_setup", owner.email, organization_name=org.name, token=token)
    logger.info("Organization %s (%s) created by platform admin, owner=%s", org.id, slug, owner.id)
    return org, owner, token


async def set_organization_status(org_id: UUID, status: OrgStatus) -> Organization:
    if status is OrgStatus.PENDING_SETUP:
        raise BadRequest("Status must be active or suspended")
    updated = await org_repo.update(
        org_id, status=status, is_active=status is OrgStatus.ACTIVE
    )
    if updated is None:
        raise NotFound("Organization not found")
    await invalidate_organization(org_id)
    logger.info("Organization %s status set to %s", org_id, status)
    return updated


async def delete_organization(org_id: UUID) -> None:
    """Hard delete: the organization, its teams and its users."""
    org = await org_repo.get_by_id(org_id)
    if org is None:
        raise NotFound("Organization not found")

    teams = await team_repo.list_by_organization(org_id)
    await team_repo.delete_many(org_id, [t.id for t in teams])
    for user in await user_repo.list_by_organization(org_id):
        await user_repo.delete(user.id)
    await org_repo.delete(org_id)

    await invalidate_organization(org_id)
    await cache.invalidate(
        patterns=(cache.teams_pattern(org_id), cache.analytics_pattern(org_id))
    )
    logger.warning("Organization %s (%s) deleted with %d teams", org_id, org.slug, len(teams))


async def update_user_role(principal: Principal, user_id: UUID, role: Role) -> User:
    target = await user_repo.get_by_id(user_id)
    if target is None:
        raise NotFound("User not found")
    if target.id == principal.user_id:
        raise Forbidden("You cannot change your own role")
    if not can_manage_role(principal.role, target.role) or not can_manage_role(
        principal.role, role
    ):
        raise Forbidden("You cannot manage users with this role")

    updated = await user_repo.update(user_id, role=role)
    if updated is None:
        raise NotFound("User not found")
    logger.info("User %s role changed %s -> %s by %s", user_id, target.role, role, principal.user_id)
    return updated


async def _load_managed_user(principal: Principal, user_id: UUID, action: str) -> User:
    target = await user_repo.get_by_id(user_id)
    if target is None:
        raise NotFound("User not found")
    if target.id == principal.user_id:
        raise Forbidden(f"You cannot {action} your own account")
    if not can_manage_role(principal.role, target.role):
        raise Forbidden("You cannot manage users with this role")
    return target


async def set_user_status(principal: Principal, user_id: UUID, is_active: bool) -> User:
    """Activate or deactivate an account; a deactivated user fails authentication."""
    await _load_managed_user(principal, user_id, "deactivate")
    updated = await user_repo.update(user_id, is_active=is_active)
    if updated is None:
        raise NotFound("User not found")
    logger.info("User %s is_active=%s set by %s", user_id, is_active, principal.user_id)
    return updated


async def delete_user(principal: Principal, user_id: UUID) -> None:
    """Hard delete a user, freeing its seat and team memberships."""
    target = await _load_managed_user(principal, user_id, "delete")
    if target.role is Role.ORG_OWNER:
        raise BadRequest("Organization owners are removed by deleting their organization")

    if target.organization_id is not None:
        await release_member(target.organization_id, target.id)
    await user_repo.delete(target.id)
    logger.warning("User %s (%s) deleted by %s", target.id, target.email, principal.user_id)


async def seed_super_admin(*, email: str, password: str, name: str = "Super Admin") -> User | None:
    """Create the first SuperAdmin.  Returns None if one already exists."""
    for user in await user_repo.list_all():
        if user.role is Role.SUPER_ADMIN:
            logger.info("SuperAdmin %s already exists; nothing to seed", user.email)
            return None
    email = normalize_email(email)
    if await user_repo.get_by_email(email) is not None:
        raise Conflict("User with this email already exists")

    admin = User.new(
        email=email,
        password_hash=hash_password(password),
        name=name,
        role=Role.SUPER_ADMIN,
    )
    await user_repo.add(admin)
    logger.info("SuperAdmin %s created", admin.email)
    return admin
