"""Organization analytics (/api/v1/analytics).

Needs ``org:view_analytics`` and a plan with the ``analytics`` feature.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from app.api.dependencies import tenant_permission
from app.api.ratelimit import require_rate_limit
from app.api.responses import ok
from app.core.roles import Permission as P
from app.models.principal import TenantContext
from app.services import analytics_service

router = APIRouter(
    prefix="/api/v1/analytics",
    tags=["analytics"],
    dependencies=[Depends(require_rate_limit())],
)

Analyst = Annotated[TenantContext, Depends(tenant_permission(P.ORG_VIEW_ANALYTICS))]


@router.get("/summary")
async def summary(ctx: Analyst) -> dict[str, Any]:
    return ok("Analytics summary retrieved successfully", await analytics_service.get_summary(ctx))


@router.get("/teams")
async def team_distribution(ctx: Analyst) -> dict[str, Any]:
    return ok(
        "Team distribution retrieved successfully",
        await analytics_service.get_distribution(ctx),
    )


@router.get("/approvals")
async def approval_rates(ctx: Analyst) -> dict[str, Any]:
    return ok(
        "Approval rates retrieved successfully",
        await analytics_service.get_approval_rates(ctx),
    )
