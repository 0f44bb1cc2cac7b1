"""The caller's in-app notifications (/api/v1/notifications)."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends

from app.api.dependencies import CurrentPrincipal
from app.api.ratelimit import require_rate_limit
from app.api.responses import ok
from app.services import notification_service

router = APIRouter(
    prefix="/api/v1/notifications",
    tags=["notifications"],
    dependencies=[Depends(require_rate_limit())],
)


@router.get("")
async def list_notifications(principal: CurrentPrincipal, unread: bool = False) -> dict[str, Any]:
    found = await notification_service.list_notifications(
        principal.user_id, unread_only=unread
    )
    return ok("Notifications retrieved successfully", [n.to_dict() for n in found])


@router.get("/unread-count")
async def unread_count(principal: CurrentPrincipal) -> dict[str, Any]:
    count = await notification_service.unread_count(principal.user_id)
    return ok("Unread count retrieved successfully", {"count": count})


@router.patch("/read-all")
async def mark_all_read(principal: CurrentPrincipal) -> dict[str, Any]:
    await notification_service.mark_all_read(principal.user_id)
    return ok("All notifications marked as read")


@router.patch("/{notification_id}/read")
async def mark_read(notification_id: UUID, principal: CurrentPrincipal) -> dict[str, Any]:
    n = await notification_service.mark_read(principal.user_id, notification_id)
    return ok("Notification marked as read", n.to_dict())


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: UUID, principal: CurrentPrincipal
) -> dict[str, Any]:
    await notification_service.delete_notification(principal.user_id, notification_id)
    return ok("Notification deleted successfully")
