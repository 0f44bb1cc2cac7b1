from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.db.engine import async_session_factory
from app.models.notification import Notification
from app.repos.pg_notification_repo import PgNotificationRepo


class NotificationRepo(Protocol):
    async def add(self, notification: Notification) -> None: ...
    async def list_for_user(
        self, user_id: UUID, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]: ...
    async def count_unread(self, user_id: UUID) -> int: ...
    async def mark_read(self, notification_id: UUID, user_id: UUID) -> Notification | None: ...
    async def mark_all_read(self, user_id: UUID) -> int: ...
    async def delete(self, notification_id: UUID, user_id: UUID) -> bool: ...


class InMemoryNotificationRepo:
    """Every lookup is keyed by owner as well as id."""

    def __init__(self) -> None:
        self._by_id: dict[UUID, Notification] = {}

    async def add(self, notification: Notification) -> None:
        self._by_id[notification.id] = notification

    async def list_for_user(
        self, user_id: UUID, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        found = [
            n
            for n in self._by_id.values()
            if n.user_id == user_id and not (unread_only and n.is_read)
        ]
        found.sort(key=lambda n: n.created_at, reverse=True)
        return found[:limit]

    async def count_unread(self, user_id: UUID) -> int:
        return sum(1 for n in self._by_id.values() if n.user_id == user_id and not n.is_read)

    async def mark_read(self, notification_id: UUID, user_id: UUID) -> Notification | None:
        n = self._by_id.get(notification_id)
        if n is None or n.user_id != user_id:
            return None
        updated = replace(n, is_read=True)
        self._by_id[notification_id] = updated
        return updated

    async def mark_all_read(self, user_id: UUID) -> int:
        unread = [n for n in self._by_id.values() if n.user_id == user_id and not n.is_read]
        for n in unread:
            self._by_id[n.id] = replace(n, is_read=True)
        return len(unread)

    async def delete(self, notification_id: UUID, user_id: UUID) -> bool:
        n = self._by_id.get(notification_id)
        if n is None or n.user_id != user_id:
            return False
        del self._by_id[notification_id]
        return True


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if async_session_factory is not None:
    notification_repo: NotificationRepo = PgNotificationRepo(async_session_factory)
else:
    notification_repo = InMemoryNotificationRepo()
