from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from uuid import UUID, uuid4

from app.core.roles import Role

INVITATION_TTL_DAYS = 7


class InvitationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass(frozen=True, slots=True)
class Invitation:
    id: UUID
    organization_id: UUID
    invited_by: UUID
    email: str
    token: str
    expires_at: datetime
    role: Role = Role.ORG_MEMBER
    team_id: UUID | None = None
    status: InvitationStatus = InvitationStatus.PENDING
    accepted_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def new(
        *,
        organization_id: UUID,
        invited_by: UUID,
        email: str,
        role: Role = Role.ORG_MEMBER,
        team_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Invitation:
        now = now or datetime.now(UTC)
        return Invitation(
            id=uuid4(),
            organization_id=organization_id,
            invited_by=invited_by,
            email=email.strip().lower(),
            token=secrets.token_hex(32),
            expires_at=now + timedelta(days=INVITATION_TTL_DAYS),
            role=role,
            team_id=team_id,
            created_at=now,
        )

    def is_usable(self, now: datetime | None = None) -> bool:
        """Pending AND not yet expired. Status alone is never trusted."""
        now = now or datetime.now(UTC)
        return self.status is InvitationStatus.PENDING and self.expires_at > now

    def effective_status(self, now: datetime | None = None) -> InvitationStatus:
        now = now or datetime.now(UTC)
        if self.status is InvitationStatus.PENDING and self.expires_at <= now:
            return InvitationStatus.EXPIRED
        return self.status
