"""Team endpoints (/api/v1/teams).

All routes are tenant-scoped.  Route dependencies check the role
permission; the per-team guards run in ``team_service`` once the team is
loaded.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Request, status
from pydantic import BaseModel, Field

from app.api.dependencies import Tenant, tenant_permission
from app.api.ratelimit import require_rate_limit
from app.api.responses import ok
from app.core.roles import Permission as P
from app.models.principal import TenantContext
from app.repos.query import ListQuery
from app.services import team_service

router = APIRouter(
    prefix="/api/v1/teams",
    tags=["teams"],
    dependencies=[Depends(require_rate_limit())],
)

CanCreate = Annotated[TenantContext, Depends(tenant_permission(P.ORG_CREATE_TEAM))]
CanView = Annotated[TenantContext, Depends(tenant_permission(P.ORG_VIEW_TEAMS))]
CanDelete = Annotated[TenantContext, Depends(tenant_permission(P.ORG_DELETE_TEAM))]
CanReorder = Annotated[TenantContext, Depends(tenant_permission(P.ORG_UPDATE_TEAM))]


class TeamIn(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    managerId: UUID | None = None


class TeamUpdateIn(BaseModel):
    name: str | None = None
    description: str | None = None


class BulkDeleteIn(BaseModel):
    ids: list[UUID]


class ApprovalIn(BaseModel):
    field: Literal["manager_approved", "director_approved"]
    value: int


class TeamOrder(BaseModel):
    id: UUID
    order: int = Field(ge=0)


class MemberIn(BaseModel):
    userId: UUID
    role: str = "member"


class MemberRoleIn(BaseModel):
    role: str


class ManagerIn(BaseModel):
    managerId: UUID


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_team(payload: TeamIn, ctx: CanCreate) -> dict[str, Any]:
    team = await team_service.create_team(
        ctx,
        name=payload.name,
        description=payload.description,
        manager_id=payload.managerId,
    )
    return ok("Team created successfully", team.to_dict())


@router.get("")
async def list_teams(request: Request, ctx: CanView) -> dict[str, Any]:
    query = ListQuery.from_params(dict(request.query_params))
    result = await team_service.list_teams(ctx, query)
    return ok("Teams retrieved successfully", result["items"], meta=result["meta"])


@router.delete("")
async def delete_teams(
    payload: Annotated[BulkDeleteIn, Body()], ctx: CanDelete
) -> dict[str, Any]:
    deleted = await team_service.delete_teams(ctx, payload.ids)
    return ok(
        f"{len(deleted)} team(s) deleted successfully",
        {"deletedIds": [str(i) for i in deleted], "deletedCount": len(deleted)},
    )


@router.post("/order")
async def reorder_teams(payload: list[TeamOrder], ctx: CanReorder) -> dict[str, Any]:
    updated = await team_service.reorder_teams(ctx, {o.id: o.order for o in payload})
    return ok("Team order updated successfully", {"updatedCount": updated})


@router.get("/{team_id}")
async def get_team(team_id: UUID, ctx: Tenant) -> dict[str, Any]:
    team = await team_service.get_team(ctx, team_id)
    return ok("Team retrieved successfully", team.to_dict())


@router.put("/{team_id}")
async def update_team(team_id: UUID, payload: TeamUpdateIn, ctx: Tenant) -> dict[str, Any]:
    team = await team_service.update_team(
        ctx, team_id, name=payload.name, description=payload.description
    )
    return ok("Team updated successfully", team.to_dict())


@router.delete("/{team_id}")
async def delete_team(team_id: UUID, ctx: CanDelete) -> dict[str, Any]:
    await team_service.delete_team(ctx, team_id)
    return ok("Team deleted successfully")


@router.patch("/{team_id}/status")
async def set_status(team_id: UUID, payload: ApprovalIn, ctx: Tenant) -> dict[str, Any]:
    team = await team_service.set_approval(ctx, team_id, payload.field, payload.value)
    return ok("Team status updated successfully", team.to_dict())


# --- Members and manager ---------------------------------------------------


@router.post("/{team_id}/members", status_code=status.HTTP_201_CREATED)
async def add_member(team_id: UUID, payload: MemberIn, ctx: Tenant) -> dict[str, Any]:
    team = await team_service.add_member(ctx, team_id, payload.userId, payload.role)
    return ok("Member added successfully", team.to_dict())


@router.patch("/{team_id}/members/{user_id}")
async def update_member_role(
    team_id: UUID, user_id: UUID, payload: MemberRoleIn, ctx: Tenant
) -> dict[str, Any]:
    team = await team_service.update_member_role(ctx, team_id, user_id, payload.role)
    return ok("Member role updated successfully", team.to_dict())


@router.delete("/{team_id}/members/{user_id}")
async def remove_member(team_id: UUID, user_id: UUID, ctx: Tenant) -> dict[str, Any]:
    team = await team_service.remove_member(ctx, team_id, user_id)
    return ok("Member removed successfully", team.to_dict())


@router.put("/{team_id}/manager")
async def assign_manager(team_id: UUID, payload: ManagerIn, ctx: Tenant) -> dict[str, Any]:
    team = await team_service.assign_manager(ctx, team_id, payload.managerId)
    return ok("Manager assigned successfully", team.to_dict())
