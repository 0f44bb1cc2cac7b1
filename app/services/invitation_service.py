"""Invitations: invite by email, accept by token.

An invitation is usable while it is ``pending`` AND ``expires_at > now``.
The stored status is never trusted on its own: a pending invitation whose
expiry has passed is reported as expired and cannot be accepted.

Creating an invitation checks the user quota without taking a slot (the
invitee may never accept); accepting takes the slot atomically, and the
pending -> accepted flip is a conditional write, so one token yields at
most one membership.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from app.core.errors import BadRequest, Conflict, Forbidden, NotFound
from app.core.roles import Role, can_manage_role, is_platform_role
from app.models.invitation import INVITATION_TTL_DAYS, Invitation, InvitationStatus
from app.models.principal import TenantContext
from app.models.team import TeamMember
from app.models.user import User, normalize_email
from app.repos.invitation_repo import invitation_repo
from app.repos.org_repo import org_repo
from app.repos.team_repo import team_repo
from app.repos.user_repo import user_repo
from app.services import guards, usage
from app.services.auth_service import IssuedTokens, hash_password, issue_tokens
from app.services.email_service import queue_email
from app.services.org_service import get_organization
from app.services.subscription import TRIAL_EXPIRED_INVITES, requires_active_subscription
from app.services.team_service import invalidate_team_caches

logger = logging.getLogger(__name__)

INVALID_INVITATION = "Invalid or expired invitation"
INVITATION_NOT_FOUND = "Invitation not found"
PLATFORM_USER_INVITE = "Platform administrators cannot join an organization"


def to_public_dict(inv: Invitation, now: datetime | None = None) -> dict[str, Any]:
    """Serialized invitation with its effective status (token omitted)."""
    return {
        "id": str(inv.id),
        "organization_id": str(inv.organization_id),
        "invited_by": str(inv.invited_by),
        "email": inv.email,
        "role": inv.role.value,
        "team_id": str(inv.team_id) if inv.team_id else None,
        "status": inv.effective_status(now).value,
        "expires_at": inv.expires_at.isoformat(),
        "accepted_at": inv.accepted_at.isoformat() if inv.accepted_at else None,
        "created_at": inv.created_at.isoformat(),
    }


async def create_invitation(
    ctx: TenantContext,
    *,
    email: str,
    role: Role = Role.ORG_MEMBER,
    team_id: UUID | None = None,
    now: datetime | None = None,
) -> Invitation:
    """Guard -> gate -> quota -> duplicate checks -> write -> email."""
    now = now or datetime.now(UTC)
    principal = ctx.principal
    guards.check(guards.can_invite_members, principal)
    org = await requires_active_subscription(
        principal, message=TRIAL_EXPIRED_INVITES, now=now
    )
    if org is None:
        org = await get_organization(ctx.organization_id)

    if not usage.can_add_user(org):
        logger.warning("Access denied: org=%s user limit reached", org.id)
        raise Forbidden(usage.limit_message(org, "users"))
    if not can_manage_role(principal.role, role):
        raise Forbidden(f"You cannot invite users with the {role} role")

    email = normalize_email(email)
    existing = await user_repo.get_by_email(email)
    if existing is not None and is_platform_role(existing.role):
        raise BadRequest(PLATFORM_USER_INVITE)
    if existing is not None and existing.organization_id == org.id:
        raise BadRequest("User is already a member of this organization")
    if await invitation_repo.find_active(org.id, email, now) is not None:
        raise BadRequest("An active invitation already exists for this email")
    if team_id is not None:
        team = await team_repo.get_by_id(team_id)
        if team is None or team.organization_id != org.id:
            raise BadRequest("Team not found in this organization")

    inv = Invitation.new(
        organization_id=org.id,
        invited_by=principal.user_id,
        email=email,
        role=role,
        team_id=team_id,
        now=now,
    )
    await invitation_repo.add(inv)
    inviter = await user_repo.get_by_id(principal.user_id)
    await _send(inv, org.name, inviter.name if inviter else None)
    logger.info("Invitation %s sent to %s for org %s", inv.id, email, org.id)
    return inv


async def _send(inv: Invitation, organization_name: str, inviter_name: str | None) -> None:
    await queue_email(
        "invitation",
        inv.email,
        organization_name=organization_name,
        inviter_name=inviter_name,
        role=inv.role.value,
        token=inv.token,
        expires_at=inv.expires_at.isoformat(),
    )


async def list_invitations(
    ctx: TenantContext,
    status: InvitationStatus | None = None,
    now: datetime | None = None,
) -> list[Invitation]:
    """Invitations of the caller's organization, newest first.

    Filtering uses the effective status, so ``expired`` also matches
    pending invitations past their expiry.
    """
    now = now or datetime.now(UTC)
    found = await invitation_repo.list_by_organization(ctx.organization_id)
    if status is None:
        return found
    return [i for i in found if i.effective_status(now) is status]


async def get_by_token(token: str, now: datetime | None = None) -> tuple[Invitation, str]:
    """Public lookup: the usable invitation and its organization's name."""
    inv = await invitation_repo.get_by_token(token)
    if inv is None or not inv.is_usable(now):
        raise BadRequest(INVALID_INVITATION)
    org = await org_repo.get_by_id(inv.organization_id)
    if org is None or not org.is_active:
        raise BadRequest(INVALID_INVITATION)
    return inv, org.name


async def accept_invitation(
    token: str,
    *,
    name: str | None = None,
    password: str | None = None,
    now: datetime | None = None,
) -> tuple[User, IssuedTokens]:
    now = now or datetime.now(UTC)
    inv = await invitation_repo.get_by_token(token)
    if inv is None or not inv.is_usable(now):
        logger.warning("Rejected invitation accept: unknown or unusable token")
        raise BadRequest(INVALID_INVITATION)

    existing = await user_repo.get_by_email(inv.email)
    if existing is not None and is_platform_role(existing.role):
        logger.warning("Rejected invitation %s for platform user %s", inv.id, existing.id)
        raise BadRequest(PLATFORM_USER_INVITE)
    if existing is not None and existing.organization_id is not None:
        if existing.organization_id == inv.organization_id:
            raise BadRequest("User is already a member of this organization")
        raise BadRequest("User already belongs to another organization")
    if existing is None and not password:
        raise BadRequest("Password is required to accept this invitation")

    await usage.reserve(inv.organization_id, "users")
    if not await invitation_repo.mark_accepted(inv.id, now):
        await usage.release(inv.organization_id, "users")
        raise BadRequest(INVALID_INVITATION)

    try:
        user = await _join(inv, existing, name=name, password=password)
    except ValueError:
        await _undo_accept(inv)
        raise Conflict("User with this email already exists") from None
    except Exception:
        await _undo_accept(inv)
        raise

    if inv.team_id is not None:
        team = await team_repo.get_by_id(inv.team_id)
        if team is not None and team.organization_id == inv.organization_id:
            await team_repo.save(team.with_member(TeamMember(user_id=user.id)))
            await invalidate_team_caches(inv.organization_id)

    logger.info(
        "Invitation %s accepted: user=%s joined org=%s as %s",
        inv.id,
        user.id,
        inv.organization_id,
        inv.role,
    )
    return user, issue_tokens(user)


async def _join(
    inv: Invitation, existing: User | None, *, name: str | None, password: str | None
) -> User:
    if existing is None:
        user = User.new(
            email=inv.email,
            password_hash=hash_password(password),
            name=name or "",
            role=inv.role,
            organization_id=inv.organization_id,
        )
        await user_repo.add(user)
        return user
    changes: dict[str, Any] = {
        "organization_id": inv.organization_id,
        "role": inv.role,
        "is_active": True,
    }
    if name:
        changes["name"] = name.strip()
    return await user_repo.update(existing.id, **changes) or existing


async def _undo_accept(inv: Invitation) -> None:
    """Give back the user slot and reopen the invitation."""
    await invitation_repo.update(inv.id, status=InvitationStatus.PENDING, accepted_at=None)
    await usage.release(inv.organization_id, "users")
    logger.warning("Invitation %s accept rolled back", inv.id)


async def _load_for_org(ctx: TenantContext, invitation_id: UUID) -> Invitation:
    guards.check(guards.can_invite_members, ctx.principal)
    inv = await invitation_repo.get_by_id(invitation_id)
    if inv is None or inv.organization_id != ctx.organization_id:
        raise NotFound(INVITATION_NOT_FOUND)
    return inv


async def revoke_invitation(ctx: TenantContext, invitation_id: UUID) -> Invitation:
    inv = await _load_for_org(ctx, invitation_id)
    if inv.status is not InvitationStatus.PENDING:
        raise BadRequest("Only pending invitations can be revoked")
    updated = await invitation_repo.update(inv.id, status=InvitationStatus.REVOKED)
    logger.info("Invitation %s revoked by %s", inv.id, ctx.principal.user_id)
    return updated or inv


async def resend_invitation(
    ctx: TenantContext, invitation_id: UUID, now: datetime | None = None
) -> Invitation:
    now = now or datetime.now(UTC)
    inv = await _load_for_org(ctx, invitation_id)
    if inv.status is not InvitationStatus.PENDING:
        raise BadRequest("Only pending invitations can be resent")
    if inv.expires_at <= now:
        raise BadRequest("Invitation has expired. Please create a new invitation")

    updated = await invitation_repo.update(
        inv.id, expires_at=now + timedelta(days=INVITATION_TTL_DAYS)
    )
    inv = updated or inv
    org = await get_organization(ctx.organization_id)
    inviter = await user_repo.get_by_id(ctx.principal.user_id)
    await _send(inv, org.name, inviter.name if inviter else None)
    return inv
