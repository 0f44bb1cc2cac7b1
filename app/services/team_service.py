"""Team management inside one organization.

Every function takes the caller's TenantContext and only ever touches
teams of ``ctx.organization_id``.  Route-level permission checks
(``org:create_team``, ``org:delete_team``) happen in the API layer; the
per-team guards (``can_view_team``/``can_manage_team``) run here, after
the team is loaded, because they need the team's manager and members.

Creation order: gate (trial) -> quota (plan limit) -> write.  The quota
slot is taken atomically and handed back if the write fails.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from app.core.errors import BadRequest, Conflict, NotFound
from app.models.notification import NotificationKind
from app.models.principal import TenantContext
from app.models.team import APPROVAL_FIELDS, Approval, Team, TeamMember
from app.models.user import User
from app.repos.query import ListQuery, project_fields
from app.repos.team_repo import team_repo
from app.repos.user_repo import user_repo
from app.services import cache, guards, usage
from app.services.email_service import queue_email
from app.services.notification_service import notify
from app.services.subscription import (
    TRIAL_EXPIRED,
    TRIAL_EXPIRED_TEAMS,
    requires_active_subscription,
)

logger = logging.getLogger(__name__)

TEAM_NOT_FOUND = "Team not found"
MEMBER_ROLES = frozenset({"member", "lead"})


async def invalidate_team_caches(org_id: UUID) -> None:
    await cache.invalidate(
        patterns=(cache.teams_pattern(org_id), cache.analytics_pattern(org_id))
    )


async def _load(ctx: TenantContext, team_id: UUID, guard: guards.Guard) -> Team:
    team = await team_repo.get_by_id(team_id)
    if team is None:
        raise NotFound(TEAM_NOT_FOUND)
    guards.check(guard, ctx.principal, team)
    return team


async def _load_org_user(ctx: TenantContext, user_id: UUID) -> User:
    user = await user_repo.get_by_id(user_id)
    if user is None or user.organization_id != ctx.organization_id:
        raise BadRequest("User does not belong to this organization")
    return user


def _touch(team: Team, **changes: Any) -> Team:
    return replace(team, updated_at=datetime.now(UTC), **changes)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def create_team(
    ctx: TenantContext,
    *,
    name: str,
    description: str = "",
    manager_id: UUID | None = None,
) -> Team:
    if not name.strip():
        raise BadRequest("Team name is required")
    await requires_active_subscription(ctx.principal, message=TRIAL_EXPIRED_TEAMS)
    manager = await _load_org_user(ctx, manager_id) if manager_id else None

    await usage.reserve(ctx.organization_id, "teams")
    try:
        team = Team.new(
            organization_id=ctx.organization_id,
            name=name,
            description=description,
            manager_id=manager_id,
            order=await team_repo.next_order(ctx.organization_id),
        )
        await team_repo.add(team)
    except Exception:
        await usage.release(ctx.organization_id, "teams")
        raise

    if manager is not None:
        await _grant_managed_team(manager, team)
    await invalidate_team_caches(ctx.organization_id)
    logger.info(
        "Team %s (%s) created in org %s by %s",
        team.id,
        team.name,
        ctx.organization_id,
        ctx.principal.user_id,
    )
    return team


async def list_teams(ctx: TenantContext, query: ListQuery) -> dict[str, Any]:
    """One page of the organization's teams: ``{"items": [...], "meta": {...}}``.

    Cached per organization and query for five minutes.
    """
    key = f"teams:{ctx.organization_id}:{query.cache_key()}"
    cached = await cache.get_json(key)
    if cached is not None:
        return cached

    page = await team_repo.query(ctx.organization_id, query)
    result = {
        "items": [project_fields(t.to_dict(), query.fields) for t in page.items],
        "meta": page.meta(),
    }
    await cache.set_json(key, result, cache.TEAMS_TTL)
    return result


async def get_team(ctx: TenantContext, team_id: UUID) -> Team:
    return await _load(ctx, team_id, guards.can_view_team)


async def update_team(
    ctx: TenantContext,
    team_id: UUID,
    *,
    name: str | None = None,
    description: str | None = None,
) -> Team:
    team = await _load(ctx, team_id, guards.can_manage_team)
    await requires_active_subscription(ctx.principal, message=TRIAL_EXPIRED)

    changes: dict[str, Any] = {}
    if name is not None:
        if not name.strip():
            raise BadRequest("Team name cannot be empty")
        changes["name"] = name.strip()
    if description is not None:
        changes["description"] = description
    if not changes:
        return team

    team = _touch(team, **changes)
    await team_repo.save(team)
    await invalidate_team_caches(ctx.organization_id)
    return team


async def delete_team(ctx: TenantContext, team_id: UUID) -> None:
    team = await _load(ctx, team_id, guards.can_manage_team)
    if not await team_repo.delete(team.id):
        raise NotFound(TEAM_NOT_FOUND)
    await usage.release(ctx.organization_id, "teams")
    if team.manager_id is not None:
        await _revoke_managed_team(team.manager_id, team.id)
    await invalidate_team_caches(ctx.organization_id)
    logger.info("Team %s deleted from org %s", team.id, ctx.organization_id)


async def delete_teams(ctx: TenantContext, team_ids: Iterable[UUID]) -> list[UUID]:
    """Bulk delete.  Ids of other organizations' teams are skipped."""
    ids = list(dict.fromkeys(team_ids))
    if not ids:
        raise BadRequest("No team ids provided")

    managers: dict[UUID, UUID] = {}
    for team_id in ids:
        team = await team_repo.get_by_id(team_id)
        if team is not None and team.manager_id is not None:
            managers[team.id] = team.manager_id

    deleted = await team_repo.delete_many(ctx.organization_id, ids)
    if deleted:
        await usage.release(ctx.organization_id, "teams", len(deleted))
    for team_id in deleted:
        if team_id in managers:
            await _revoke_managed_team(managers[team_id], team_id)
    await invalidate_team_caches(ctx.organization_id)
    logger.info(
        "Bulk delete in org %s: %d of %d teams removed",
        ctx.organization_id,
        len(deleted),
        len(ids),
    )
    return deleted


async def set_approval(
    ctx: TenantContext, team_id: UUID, field: str, value: int
) -> Team:
    """Set ``manager_approved`` or ``director_approved`` to 0, 1 or 2."""
    if field not in APPROVAL_FIELDS:
        raise BadRequest(f"Approval field must be one of: {', '.join(APPROVAL_FIELDS)}")
    try:
        approval = Approval(value)
    except ValueError:
        raise BadRequest(
            "Approval value must be 0 (pending), 1 (approved) or 2 (rejected)"
        ) from None

    team = await _load(ctx, team_id, guards.can_manage_team)
    team = _touch(team, **{field: approval})
    await team_repo.save(team)
    await invalidate_team_caches(ctx.organization_id)
    logger.info("Team %s %s set to %s", team.id, field, approval.name.lower())
    return team


async def reorder_teams(ctx: TenantContext, orders: Mapping[UUID, int]) -> int:
    if not orders:
        raise BadRequest("No team order provided")
    updated = await team_repo.set_orders(ctx.organization_id, orders)
    await invalidate_team_caches(ctx.organization_id)
    return updated


# ---------------------------------------------------------------------------
# Members and manager
# ---------------------------------------------------------------------------


def _check_member_role(role: str) -> None:
    if role not in MEMBER_ROLES:
        raise BadRequest(f"Member role must be one of: {', '.join(sorted(MEMBER_ROLES))}")


async def add_member(
    ctx: TenantContext, team_id: UUID, user_id: UUID, role: str = "member"
) -> Team:
    _check_member_role(role)
    team = await _load(ctx, team_id, guards.can_manage_team)
    user = await _load_org_user(ctx, user_id)
    if team.has_member(user_id):
        raise Conflict("User is already a member of this team")

    team = team.with_member(TeamMember(user_id=user_id, role=role))
    await team_repo.save(team)
    await invalidate_team_caches(ctx.organization_id)
    await queue_email(
        "team_member_added", user.email, name=user.name, team_name=team.name
    )
    await notify(
        user.id,
        "Added to team",
        f"You have been added to the team {team.name}.",
        link=f"/teams/{team.id}",
    )
    return team


async def update_member_role(
    ctx: TenantContext, team_id: UUID, user_id: UUID, role: str
) -> Team:
    _check_member_role(role)
    team = await _load(ctx, team_id, guards.can_manage_team)
    if not team.has_member(user_id):
        raise NotFound("Member not found in this team")
    members = tuple(
        replace(m, role=role) if m.user_id == user_id else m for m in team.members
    )
    team = _touch(team, members=members)
    await team_repo.save(team)
    await invalidate_team_caches(ctx.organization_id)
    return team


async def remove_member(ctx: TenantContext, team_id: UUID, user_id: UUID) -> Team:
    team = await _load(ctx, team_id, guards.can_manage_team)
    if not team.has_member(user_id):
        raise NotFound("Member not found in this team")
    team = team.without_member(user_id)
    await team_repo.save(team)
    await invalidate_team_caches(ctx.organization_id)
    return team


async def assign_manager(ctx: TenantContext, team_id: UUID, manager_id: UUID) -> Team:
    team = await _load(ctx, team_id, guards.can_manage_team)
    manager = await _load_org_user(ctx, manager_id)
    if team.manager_id == manager_id:
        return team

    previous = team.manager_id
    team = _touch(team, manager_id=manager_id)
    await team_repo.save(team)
    if previous is not None:
        await _revoke_managed_team(previous, team.id)
    await _grant_managed_team(manager, team)
    await invalidate_team_caches(ctx.organization_id)
    await queue_email(
        "manager_assigned", manager.email, name=manager.name, team_name=team.name
    )
    await notify(
        manager.id,
        "Team manager",
        f"You are now the manager of the team {team.name}.",
        kind=NotificationKind.SUCCESS,
        link=f"/teams/{team.id}",
    )
    logger.info("User %s now manages team %s", manager_id, team.id)
    return team


async def _grant_managed_team(user: User, team: Team) -> None:
    if team.id in user.managed_team_ids:
        return
    await user_repo.update(user.id, managed_team_ids=(*user.managed_team_ids, team.id))


async def _revoke_managed_team(user_id: UUID, team_id: UUID) -> None:
    user = await user_repo.get_by_id(user_id)
    if user is None or team_id not in user.managed_team_ids:
        return
    kept = tuple(t for t in user.managed_team_ids if t != team_id)
    await user_repo.update(user_id, managed_team_ids=kept)
