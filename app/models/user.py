from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from app.core.roles import Role


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True, slots=True)
class User:
    id: UUID
    email: str
    password_hash: str
    name: str = ""
    role: Role = Role.ORG_MEMBER
    organization_id: UUID | None = None
    is_active: bool = True
    managed_team_ids: tuple[UUID, ...] = ()  # immutable
    must_change_password: bool = False
    last_login_at: datetime | None = None
    password_reset_token_hash: str | None = None
    password_reset_expires: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def new(
        *,
        email: str,
        password_hash: str,
        name: str = "",
        role: Role = Role.ORG_MEMBER,
        organization_id: UUID | None = None,
        is_active: bool = True,
        must_change_password: bool = False,
    ) -> User:
        return User(
            id=uuid4(),
            email=normalize_email(email),
            password_hash=password_hash,
            name=name.strip(),
            role=role,
            organization_id=organization_id,
            is_active=is_active,
            must_change_password=must_change_password,
        )

    def to_dict(self) -> dict[str, Any]:
        """Public form; password and reset-token fields are never included."""
        return {
            "id": str(self.id),
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "organization_id": str(self.organization_id) if self.organization_id else None,
            "is_active": self.is_active,
            "managed_team_ids": [str(t) for t in self.managed_team_ids],
            "must_change_password": self.must_change_password,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat(),
        }
