from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4


class NotificationKind(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Notification:
    """An in-app message addressed to one user."""

    id: UUID
    user_id: UUID
    title: str
    message: str
    kind: NotificationKind = NotificationKind.INFO
    is_read: bool = False
    link: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def new(
        *,
        user_id: UUID,
        title: str,
        message: str,
        kind: NotificationKind = NotificationKind.INFO,
        link: str | None = None,
    ) -> Notification:
        return Notification(
            id=uuid4(),
            user_id=user_id,
            title=title,
            message=message,
            kind=kind,
            link=link,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "title": self.title,
            "message": self.message,
            "type": self.kind.value,
            "is_read": self.is_read,
            "link": self.link,
            "created_at": self.created_at.isoformat(),
        }
