"""PostgreSQL implementation of NotificationRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.engine import session_scope
from app.db.tables import NotificationRow
from app.models.notification import Notification, NotificationKind


class PgNotificationRepo:
    """Satisfies the NotificationRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def add(self, notification: Notification) -> None:
        async with session_scope(self._sessions) as session:
            session.add(_notification_to_row(notification))

    async def list_for_user(
        self, user_id: UUID, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        stmt = select(NotificationRow).where(NotificationRow.user_id == user_id)
        if unread_only:
            stmt = stmt.where(NotificationRow.is_read.is_(False))
        stmt = stmt.order_by(NotificationRow.created_at.desc()).limit(limit)
        async with session_scope(self._sessions) as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_notification(r) for r in rows]

    async def count_unread(self, user_id: UUID) -> int:
        stmt = select(func.count()).where(
            NotificationRow.user_id == user_id, NotificationRow.is_read.is_(False)
        )
        async with session_scope(self._sessions) as session:
            return int((await session.execute(stmt)).scalar_one())

    async def mark_read(self, notification_id: UUID, user_id: UUID) -> Notification | None:
        stmt = (
            update(NotificationRow)
            .where(NotificationRow.id == notification_id, NotificationRow.user_id == user_id)
            .values(is_read=True)
            .returning(NotificationRow)
        )
        async with session_scope(self._sessions) as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_notification(row) if row is not None else None

    async def mark_all_read(self, user_id: UUID) -> int:
        stmt = (
            update(NotificationRow)
            .where(NotificationRow.user_id == user_id, NotificationRow.is_read.is_(False))
            .values(is_read=True)
        )
        async with session_scope(self._sessions) as session:
            return (await session.execute(stmt)).rowcount

    async def delete(self, notification_id: UUID, user_id: UUID) -> bool:
        stmt = (
            delete(NotificationRow)
            .where(NotificationRow.id == notification_id, NotificationRow.user_id == user_id)
            .returning(NotificationRow.id)
        )
        async with session_scope(self._sessions) as session:
            return (await session.execute(stmt)).scalar_one_or_none() is not None


def _notification_to_row(n: Notification) -> NotificationRow:
    return NotificationRow(
        id=n.id,
        user_id=n.user_id,
        title=n.title,
        message=n.message,
        kind=n.kind.value,
        is_read=n.is_read,
        link=n.link,
        created_at=n.created_at,
    )


def _row_to_notification(row: NotificationRow) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        message=row.message,
        kind=NotificationKind(row.kind),
        is_read=row.is_read,
        link=row.link,
        created_at=row.created_at,
    )
