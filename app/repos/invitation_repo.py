from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from app.db.engine import async_session_factory
from app.models.invitation import Invitation, InvitationStatus
from app.repos.pg_invitation_repo import PgInvitationRepo


class InvitationRepo(Protocol):
    async def add(self, invitation: Invitation) -> None: ...
    async def get_by_id(self, invitation_id: UUID) -> Invitation | None: ...
    async def get_by_token(self, token: str) -> Invitation | None: ...
    async def update(self, invitation_id: UUID, **changes: Any) -> Invitation | None: ...
    async def list_by_organization(
        self, organization_id: UUID, status: InvitationStatus | None = None
    ) -> list[Invitation]: ...
    async def find_active(
        self, organization_id: UUID, email: str, now: datetime
    ) -> Invitation | None: ...
    async def mark_accepted(self, invitation_id: UUID, now: datetime) -> bool: ...


class InMemoryInvitationRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Invitation] = {}

    async def add(self, invitation: Invitation) -> None:
        if any(i.token == invitation.token for i in self._by_id.values()):
            raise ValueError("token already exists")
        self._by_id[invitation.id] = invitation

    async def get_by_id(self, invitation_id: UUID) -> Invitation | None:
        return self._by_id.get(invitation_id)

    async def get_by_token(self, token: str) -> Invitation | None:
        return next((i for i in self._by_id.values() if i.token == token), None)

    async def update(self, invitation_id: UUID, **changes: Any) -> Invitation | None:
        existing = self._by_id.get(invitation_id)
        if existing is None:
            return None
        updated = replace(existing, **changes)
        self._by_id[invitation_id] = updated
        return updated

    async def list_by_organization(
        self, organization_id: UUID, status: InvitationStatus | None = None
    ) -> list[Invitation]:
        found = [
            i
            for i in self._by_id.values()
            if i.organization_id == organization_id
            and (status is None or i.status is status)
        ]
        return sorted(found, key=lambda i: i.created_at, reverse=True)

    async def find_active(
        self, organization_id: UUID, email: str, now: datetime
    ) -> Invitation | None:
        return next(
            (
                i
                for i in self._by_id.values()
                if i.organization_id == organization_id
                and i.email == email
                and i.is_usable(now)
            ),
            None,
        )

    async def mark_accepted(self, invitation_id: UUID, now: datetime) -> bool:
        """Consume a usable invitation exactly once."""
        inv = self._by_id.get(invitation_id)
        if inv is None or not inv.is_usable(now):
            return False
        self._by_id[invitation_id] = replace(
            inv, status=InvitationStatus.ACCEPTED, accepted_at=now
        )
        return True


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if async_session_factory is not None:
    invitation_repo: InvitationRepo = PgInvitationRepo(async_session_factory)
else:
    invitation_repo = InMemoryInvitationRepo()
