"""Organization endpoints (/api/v1/organizations).

Routes with an ``{organization_id}`` path parameter run the cross-tenant
check (``OrgAccess``) before anything is loaded; ``/me`` and ``/trial/*``
always act on the caller's own organization.
"""

from __future__ import annotations

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.dependencies import OptionalPrincipal, OrgAccess, Tenant, require_permission
from app.api.ratelimit import require_rate_limit
from app.api.responses import ok
from app.core.roles import Permission as P
from app.core.roles import Role
from app.models.organization import BillingCycle, Plan
from app.services import org_service
from app.services.subscription import can_access_features, trial_status
from app.services.tenant import inject_optional_tenant

router = APIRouter(
    prefix="/api/v1/organizations",
    tags=["organizations"],
    dependencies=[Depends(require_rate_limit())],
)


class OrgUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=2)


class UpgradeIn(BaseModel):
    plan: Plan
    billingCycle: BillingCycle = BillingCycle.MONTHLY


class MemberRoleIn(BaseModel):
    role: Role


# --- Caller's own organization ------------------------------------------------


@router.get("/me")
async def my_organization(ctx: Tenant) -> dict[str, Any]:
    org = await org_service.get_organization(ctx.organization_id)
    return ok(
        "Organization retrieved successfully",
        {**org.to_dict(), "trial": trial_status(org)},
    )


@router.get("/check-slug")
async def check_slug(
    slug: Annotated[str, Query(min_length=1)], principal: OptionalPrincipal
) -> dict[str, Any]:
    """Public.  A signed-in caller also learns whether the slug is already theirs."""
    slug = slug.strip().lower()
    available = await org_service.check_slug(slug)
    ctx = inject_optional_tenant(principal)
    current = False
    if ctx is not None and not available:
        current = await org_service.slug_belongs_to(slug, ctx.organization_id)
    return ok(
        "Slug is available" if available else "Slug is not available",
        {"slug": slug, "available": available, "isCurrent": current},
    )


@router.get("/trial/status")
async def get_trial_status(ctx: Tenant) -> dict[str, Any]:
    org = await org_service.get_organization(ctx.organization_id)
    return ok("Trial status retrieved successfully", trial_status(org))


@router.get("/trial/can-access-features")
async def get_feature_access(ctx: Tenant) -> dict[str, Any]:
    org = await org_service.get_organization(ctx.organization_id)
    return ok(
        "Feature access checked",
        {"canAccessFeatures": can_access_features(org)},
    )


# --- By id ----------------------------------------------------------------------


@router.get("/{organization_id}")
async def get_organization(organization_id: UUID, _principal: OrgAccess) -> dict[str, Any]:
    org = await org_service.get_organization(organization_id)
    return ok("Organization retrieved successfully", org.to_dict())


@router.patch(
    "/{organization_id}",
    dependencies=[Depends(require_permission(P.ORG_UPDATE_SETTINGS))],
)
async def update_organization(
    organization_id: UUID, payload: OrgUpdateIn, _principal: OrgAccess
) -> dict[str, Any]:
    org = await org_service.update_settings(organization_id, name=payload.name)
    return ok("Organization updated successfully", org.to_dict())


@router.get("/{organization_id}/usage")
async def get_usage(organization_id: UUID, _principal: OrgAccess) -> dict[str, Any]:
    return ok(
        "Usage statistics retrieved successfully",
        await org_service.usage_stats(organization_id),
    )


@router.post("/{organization_id}/upgrade")
async def upgrade(
    organization_id: UUID, payload: UpgradeIn, principal: OrgAccess
) -> dict[str, Any]:
    org = await org_service.upgrade_plan(
        principal, organization_id, plan=payload.plan, billing_cycle=payload.billingCycle
    )
    return ok("Plan upgraded successfully", org.to_dict())


# --- Members ----------------------------------------------------------------------


@router.get(
    "/{organization_id}/members",
    dependencies=[Depends(require_permission(P.ORG_VIEW_MEMBERS))],
)
async def list_members(organization_id: UUID, _principal: OrgAccess) -> dict[str, Any]:
    members = await org_service.list_members(organization_id)
    return ok("Members retrieved successfully", [m.to_dict() for m in members])


@router.patch(
    "/{organization_id}/members/{user_id}",
    dependencies=[Depends(require_permission(P.ORG_UPDATE_MEMBER_ROLE))],
)
async def update_member_role(
    organization_id: UUID, user_id: UUID, payload: MemberRoleIn, principal: OrgAccess
) -> dict[str, Any]:
    user = await org_service.update_member_role(
        principal, organization_id, user_id, payload.role
    )
    return ok("Member role updated successfully", user.to_dict())


@router.delete(
    "/{organization_id}/members/{user_id}",
    dependencies=[Depends(require_permission(P.ORG_REMOVE_MEMBERS))],
)
async def remove_member(
    organization_id: UUID, user_id: UUID, principal: OrgAccess
) -> dict[str, Any]:
    await org_service.remove_member(principal, organization_id, user_id)
    return ok("Member removed successfully")
