"""In-app notifications for the signed-in user.

Every read and write is scoped to the caller: another user's
notification id behaves exactly like an unknown one.
"""

from __future__ import annotations

import logging
from uuid import UUID

from app.core.errors import NotFound
from app.models.notification import Notification, NotificationKind
from app.repos.notification_repo import notification_repo

logger = logging.getLogger(__name__)

LIST_LIMIT = 50
NOTIFICATION_NOT_FOUND = "Notification not found"


async def notify(
    user_id: UUID,
    title: str,
    message: str,
    *,
    kind: NotificationKind = NotificationKind.INFO,
    link: str | None = None,
) -> None:
    """Store a notification for *user_id*.  Never raises."""
    try:
        await notification_repo.add(
            Notification.new(user_id=user_id, title=title, message=message, kind=kind, link=link)
        )
    except Exception:
        logger.exception("Failed to store notification for user %s", user_id)


async def list_notifications(user_id: UUID, *, unread_only: bool = False) -> list[Notification]:
    return await notification_repo.list_for_user(
        user_id, unread_only=unread_only, limit=LIST_LIMIT
    )


async def unread_count(user_id: UUID) -> int:
    return await notification_repo.count_unread(user_id)


async def mark_read(user_id: UUID, notification_id: UUID) -> Notification:
    updated = await notification_repo.mark_read(notification_id, user_id)
    if updated is None:
        raise NotFound(NOTIFICATION_NOT_FOUND)
    return updated


async def mark_all_read(user_id: UUID) -> int:
    count = await notification_repo.mark_all_read(user_id)
    logger.debug("Marked %d notifications read for user %s", count, user_id)
    return count


async def delete_notification(user_id: UUID, notification_id: UUID) -> None:
    if not await notification_repo.delete(notification_id, user_id):
        raise NotFound(NOTIFICATION_NOT_FOUND)
