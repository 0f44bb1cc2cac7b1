"""Platform administration (/api/v1/admin).

SuperAdmin and Admin only; each route names its platform permission.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from app.api.auth import Email
from app.api.dependencies import require_permission
from app.api.ratelimit import require_rate_limit
from app.api.responses import ok, paged
from app.core.roles import Permission as P
from app.core.roles import Role
from app.models.organization import OrgStatus, Plan
from app.models.principal import Principal
from app.repos.query import ListQuery
from app.services import admin_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
    dependencies=[Depends(require_rate_limit())],
)


def _admin(permission: P) -> Any:
    return Annotated[Principal, Depends(require_permission(permission))]


ViewOrganizations = _admin(P.PLATFORM_VIEW_ALL_ORGANIZATIONS)
CreateOrganization = _admin(P.PLATFORM_CREATE_ORGANIZATION)
SuspendOrganization = _admin(P.PLATFORM_SUSPEND_ORGANIZATION)
DeleteOrganization = _admin(P.PLATFORM_DELETE_ORGANIZATION)
ViewUsers = _admin(P.PLATFORM_VIEW_ALL_USERS)
UpdateUserRole = _admin(P.PLATFORM_UPDATE_USER_ROLE)
UpdateUserStatus = _admin(P.PLATFORM_UPDATE_USER_STATUS)
DeleteUser = _admin(P.PLATFORM_DELETE_USER)


class OrganizationIn(BaseModel):
    name: str = Field(min_length=2)
    ownerEmail: Email
    ownerName: str = ""
    slug: str | None = None
    plan: Plan = Plan.FREE


class StatusIn(BaseModel):
    status: OrgStatus


class UserStatusIn(BaseModel):
    isActive: bool


class RoleIn(BaseModel):
    role: Role


@router.get("/organizations")
async def list_organizations(
    request: Request, principal: ViewOrganizations
) -> dict[str, Any]:
    page = await admin_service.list_organizations(
        ListQuery.from_params(dict(request.query_params))
    )
    return paged("Organizations retrieved successfully", page)


@router.post("/organizations", status_code=status.HTTP_201_CREATED)
async def create_organization(
    payload: OrganizationIn, principal: CreateOrganization
) -> dict[str, Any]:
    org, owner, _token = await admin_service.create_organization(
        name=payload.name,
        owner_email=payload.ownerEmail,
        owner_name=payload.ownerName,
        slug=payload.slug,
        plan=payload.plan,
    )
    logger.info("Admin %s created organization %s", principal.user_id, org.id)
    return ok(
        "Organization created. A setup link has been sent to the owner",
        {"organization": org.to_dict(), "owner": owner.to_dict()},
    )


@router.patch("/organizations/{organization_id}/status")
async def set_organization_status(
    organization_id: UUID,
    payload: StatusIn,
    principal: SuspendOrganization,
) -> dict[str, Any]:
    org = await admin_service.set_organization_status(organization_id, payload.status)
    logger.info(
        "Admin %s set organization %s to %s", principal.user_id, organization_id, payload.status
    )
    return ok("Organization status updated successfully", org.to_dict())


@router.delete("/organizations/{organization_id}")
async def delete_organization(
    organization_id: UUID, principal: DeleteOrganization
) -> dict[str, Any]:
    await admin_service.delete_organization(organization_id)
    logger.warning("Admin %s deleted organization %s", principal.user_id, organization_id)
    return ok("Organization deleted successfully")


@router.get("/users")
async def list_users(
    request: Request, principal: ViewUsers
) -> dict[str, Any]:
    page = await admin_service.list_users(ListQuery.from_params(dict(request.query_params)))
    return paged("Users retrieved successfully", page)


@router.patch("/users/{user_id}/role")
async def update_user_role(
    user_id: UUID, payload: RoleIn, principal: UpdateUserRole
) -> dict[str, Any]:
    user = await admin_service.update_user_role(principal, user_id, payload.role)
    return ok("User role updated successfully", user.to_dict())


@router.patch("/users/{user_id}/status")
async def set_user_status(
    user_id: UUID, payload: UserStatusIn, principal: UpdateUserStatus
) -> dict[str, Any]:
    user = await admin_service.set_user_status(principal, user_id, payload.isActive)
    return ok("User status updated successfully", user.to_dict())


@router.delete("/users/{user_id}")
async def delete_user(user_id: UUID, principal: DeleteUser) -> dict[str, Any]:
    await admin_service.delete_user(principal, user_id)
    return ok("User deleted successfully")
