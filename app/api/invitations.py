"""Invitation endpoints (/api/v1/invitations).

``GET /token/{token}`` and ``POST /accept`` are public: the invitee has no
account (or no organization) yet.  Everything else acts on the caller's
organization.
"""

from __future__ import annotations

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from app.api.auth import Email, Password, set_auth_cookies
from app.api.dependencies import Tenant, tenant_permission
from app.api.ratelimit import require_rate_limit
from app.api.responses import ok
from app.core.roles import Permission as P
from app.core.roles import Role
from app.models.invitation import InvitationStatus
from app.models.principal import TenantContext
from app.services import invitation_service
from app.services.invitation_service import to_public_dict

router = APIRouter(
    prefix="/api/v1/invitations",
    tags=["invitations"],
    dependencies=[Depends(require_rate_limit())],
)

CanViewInvitations = Annotated[
    TenantContext, Depends(tenant_permission(P.ORG_VIEW_INVITATIONS))
]


class InvitationIn(BaseModel):
    email: Email
    role: Role = Role.ORG_MEMBER
    teamId: UUID | None = None


class AcceptIn(BaseModel):
    token: str = Field(min_length=1)
    name: str | None = Field(default=None, min_length=2)
    password: Password | None = None


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_invitation(payload: InvitationIn, ctx: Tenant) -> dict[str, Any]:
    inv = await invitation_service.create_invitation(
        ctx, email=payload.email, role=payload.role, team_id=payload.teamId
    )
    return ok("Invitation sent successfully", to_public_dict(inv))


@router.get("")
async def list_invitations(
    ctx: CanViewInvitations,
    status_filter: Annotated[InvitationStatus | None, Query(alias="status")] = None,
) -> dict[str, Any]:
    found = await invitation_service.list_invitations(ctx, status_filter)
    return ok("Invitations retrieved successfully", [to_public_dict(i) for i in found])


@router.get("/token/{token}")
async def get_invitation_by_token(token: str) -> dict[str, Any]:
    inv, org_name = await invitation_service.get_by_token(token)
    return ok(
        "Invitation retrieved successfully",
        {**to_public_dict(inv), "organization_name": org_name},
    )


@router.post("/accept")
async def accept_invitation(payload: AcceptIn, response: Response) -> dict[str, Any]:
    user, tokens = await invitation_service.accept_invitation(
        payload.token, name=payload.name, password=payload.password
    )
    set_auth_cookies(response, tokens)
    return ok(
        "Invitation accepted successfully",
        {
            "user": user.to_dict(),
            "accessToken": tokens.access_token,
            "refreshToken": tokens.refresh_token,
        },
    )


@router.patch("/{invitation_id}/revoke")
async def revoke_invitation(invitation_id: UUID, ctx: Tenant) -> dict[str, Any]:
    inv = await invitation_service.revoke_invitation(ctx, invitation_id)
    return ok("Invitation revoked successfully", to_public_dict(inv))


@router.post("/{invitation_id}/resend")
async def resend_invitation(invitation_id: UUID, ctx: Tenant) -> dict[str, Any]:
    inv = await invitation_service.resend_invitation(ctx, invitation_id)
    return ok("Invitation resent successfully", to_public_dict(inv))
