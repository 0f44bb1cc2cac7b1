"""PostgreSQL implementation of UserRepo."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.roles import Role
from app.db.engine import session_scope
from app.db.tables import UserRow
from app.models.user import User, normalize_email


class PgUserRepo:
    """Satisfies the UserRepo Protocol using PostgreSQL via SQLAlchemy.

    Each call is its own unit of work (see session_scope).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get_by_id(self, user_id: UUID) -> User | None:
        return await self._one(select(UserRow).where(UserRow.id == user_id))

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(UserRow).where(UserRow.email == normalize_email(email))
        return await self._one(stmt)

    async def get_by_reset_token_hash(self, token_hash: str) -> User | None:
        stmt = select(UserRow).where(UserRow.password_reset_token_hash == token_hash)
        return await self._one(stmt)

    async def add(self, user: User) -> None:
        async with session_scope(self._sessions) as session:
            session.add(_user_to_row(user))
            try:
                await session.flush()
            except IntegrityError:
                raise ValueError("email already exists") from None

    async def update(self, user_id: UUID, **changes: Any) -> User | None:
        values = _changes_to_columns(changes)
        async with session_scope(self._sessions) as session:
            stmt = (
                update(UserRow)
                .where(UserRow.id == user_id)
                .values(**values)
                .returning(UserRow)
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_user(row) if row is not None else None

    async def delete(self, user_id: UUID) -> bool:
        async with session_scope(self._sessions) as session:
            result = await session.execute(delete(UserRow).where(UserRow.id == user_id))
            return result.rowcount > 0

    async def list_by_organization(self, organization_id: UUID) -> list[User]:
        stmt = select(UserRow).where(UserRow.organization_id == organization_id)
        return await self._many(stmt)

    async def list_all(self) -> list[User]:
        return await self._many(select(UserRow).order_by(UserRow.created_at))

    async def _one(self, stmt) -> User | None:
        async with session_scope(self._sessions) as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_user(row) if row is not None else None

    async def _many(self, stmt) -> list[User]:
        async with session_scope(self._sessions) as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_user(r) for r in rows]


def _changes_to_columns(changes: dict[str, Any]) -> dict[str, Any]:
    values = dict(changes)
    if "role" in values:
        values["role"] = Role(values["role"]).value
    if "managed_team_ids" in values:
        values["managed_team_ids"] = list(values["managed_team_ids"])
    return values


def _user_to_row(user: User) -> UserRow:
    return UserRow(
        id=user.id,
        email=user.email,
        password_hash=user.password_hash,
        name=user.name,
        role=user.role.value,
        organization_id=user.organization_id,
        is_active=user.is_active,
        managed_team_ids=list(user.managed_team_ids),
        must_change_password=user.must_change_password,
        last_login_at=user.last_login_at,
        password_reset_token_hash=user.password_reset_token_hash,
        password_reset_expires=user.password_reset_expires,
        created_at=user.created_at,
    )


def _row_to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name or "",
        role=Role(row.role),
        organization_id=row.organization_id,
        is_active=row.is_active,
        managed_team_ids=tuple(row.managed_team_ids or ()),
        must_change_password=row.must_change_password,
        last_login_at=row.last_login_at,
        password_reset_token_hash=row.password_reset_token_hash,
        password_reset_expires=row.password_reset_expires,
        created_at=row.created_at,
    )
