"""PostgreSQL implementation of InvitationRepo."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.roles import Role
from app.db.engine import session_scope
from app.db.tables import InvitationRow
from app.models.invitation import Invitation, InvitationStatus


class PgInvitationRepo:
    """Satisfies the InvitationRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def add(self, invitation: Invitation) -> None:
        async with session_scope(self._sessions) as session:
            session.add(_invitation_to_row(invitation))
            try:
                await session.flush()
            except IntegrityError:
                raise ValueError("token already exists") from None

    async def get_by_id(self, invitation_id: UUID) -> Invitation | None:
        return await self._one(
            select(InvitationRow).where(InvitationRow.id == invitation_id)
        )

    async def get_by_token(self, token: str) -> Invitation | None:
        return await self._one(select(InvitationRow).where(InvitationRow.token == token))

    async def update(self, invitation_id: UUID, **changes: Any) -> Invitation | None:
        values = {
            k: (v.value if isinstance(v, Enum) else v) for k, v in changes.items()
        }
        stmt = (
            update(InvitationRow)
            .where(InvitationRow.id == invitation_id)
            .values(**values)
            .returning(InvitationRow)
        )
        async with session_scope(self._sessions) as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_invitation(row) if row is not None else None

    async def list_by_organization(
        self, organization_id: UUID, status: InvitationStatus | None = None
    ) -> list[Invitation]:
        stmt = select(InvitationRow).where(
            InvitationRow.organization_id == organization_id
        )
        if status is not None:
            stmt = stmt.where(InvitationRow.status == status.value)
        stmt = stmt.order_by(InvitationRow.created_at.desc())
        async with session_scope(self._sessions) as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_invitation(r) for r in rows]

    async def find_active(
        self, organization_id: UUID, email: str, now: datetime
    ) -> Invitation | None:
        stmt = select(InvitationRow).where(
            InvitationRow.organization_id == organization_id,
            InvitationRow.email == email,
            InvitationRow.status == InvitationStatus.PENDING.value,
            InvitationRow.expires_at > now,
        )
        return await self._one(stmt.limit(1))

    async def mark_accepted(self, invitation_id: UUID, now: datetime) -> bool:
        stmt = (
            update(InvitationRow)
            .where(
                InvitationRow.id == invitation_id,
                InvitationRow.status == InvitationStatus.PENDING.value,
                InvitationRow.expires_at > now,
            )
            .values(status=InvitationStatus.ACCEPTED.value, accepted_at=now)
            .returning(InvitationRow.id)
        )
        async with session_scope(self._sessions) as session:
            return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def _one(self, stmt) -> Invitation | None:
        async with session_scope(self._sessions) as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_invitation(row) if row is not None else None


def _invitation_to_row(inv: Invitation) -> InvitationRow:
    return InvitationRow(
        id=inv.id,
        organization_id=inv.organization_id,
        team_id=inv.team_id,
        invited_by=inv.invited_by,
        email=inv.email,
        role=inv.role.value,
        token=inv.token,
        status=inv.status.value,
        expires_at=inv.expires_at,
        accepted_at=inv.accepted_at,
        created_at=inv.created_at,
    )


def _row_to_invitation(row: InvitationRow) -> Invitation:
    return Invitation(
        id=row.id,
        organization_id=row.organization_id,
        invited_by=row.invited_by,
        email=row.email,
        token=row.token,
        expires_at=row.expires_at,
        role=Role(row.role),
        team_id=row.team_id,
        status=InvitationStatus(row.status),
        accepted_at=row.accepted_at,
        created_at=row.created_at,
    )
