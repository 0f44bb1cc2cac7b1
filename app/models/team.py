from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any
from uuid import UUID, uuid4


class Approval(IntEnum):
    PENDING = 0
    APPROVED = 1
    REJECTED = 2


APPROVAL_FIELDS = ("manager_approved", "director_approved")

# List query whitelist.
SEARCHABLE_FIELDS = ("name", "description")
FILTERABLE_FIELDS = ("name", "manager_id", *APPROVAL_FIELDS, "order")
SORTABLE_FIELDS = ("name", "order", "created_at", "updated_at")


@dataclass(frozen=True, slots=True)
class TeamMember:
    user_id: UUID
    role: str = "member"  # member|lead
    joined_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class Team:
    id: UUID
    organization_id: UUID
    name: str
    description: str = ""
    manager_id: UUID | None = None
    members: tuple[TeamMember, ...] = ()  # immutable
    manager_approved: Approval = Approval.PENDING
    director_approved: Approval = Approval.PENDING
    order: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def new(
        *,
        organization_id: UUID,
        name: str,
        description: str = "",
        manager_id: UUID | None = None,
        order: int = 0,
    ) -> Team:
        return Team(
            id=uuid4(),
            organization_id=organization_id,
            name=name.strip(),
            description=description,
            manager_id=manager_id,
            order=order,
        )

    def has_member(self, user_id: UUID) -> bool:
        return any(m.user_id == user_id for m in self.members)

    def with_member(self, member: TeamMember) -> Team:
        if self.has_member(member.user_id):
            return self
        return replace(self, members=(*self.members, member), updated_at=_now())

    def without_member(self, user_id: UUID) -> Team:
        kept = tuple(m for m in self.members if m.user_id != user_id)
        return replace(self, members=kept, updated_at=_now())

    @property
    def approval_state(self) -> str:
        if self.manager_approved is Approval.REJECTED or (
            self.director_approved is Approval.REJECTED
        ):
            return "Rejected"
        if self.manager_approved is Approval.APPROVED and (
            self.director_approved is Approval.APPROVED
        ):
            return "Approved"
        return "Pending"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "organization_id": str(self.organization_id),
            "name": self.name,
            "description": self.description,
            "manager_id": str(self.manager_id) if self.manager_id else None,
            "members": [
                {
                    "user_id": str(m.user_id),
                    "role": m.role,
                    "joined_at": m.joined_at.isoformat(),
                }
                for m in self.members
            ],
            "manager_approved": int(self.manager_approved),
            "director_approved": int(self.director_approved),
            "order": self.order,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def _now() -> datetime:
    return datetime.now(UTC)
