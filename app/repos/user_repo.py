from __future__ import annotations

from dataclasses import replace
from typing import Any, Protocol
from uuid import UUID

from app.db.engine import async_session_factory
from app.models.user import User, normalize_email
from app.repos.pg_user_repo import PgUserRepo


class UserRepo(Protocol):
    async def get_by_id(self, user_id: UUID) -> User | None: ...
    async def get_by_email(self, email: str) -> User | None: ...
    async def get_by_reset_token_hash(self, token_hash: str) -> User | None: ...
    async def add(self, user: User) -> None: ...
    async def update(self, user_id: UUID, **changes: Any) -> User | None: ...
    async def delete(self, user_id: UUID) -> bool: ...
    async def list_by_organization(self, organization_id: UUID) -> list[User]: ...
    async def list_all(self) -> list[User]: ...


class InMemoryUserRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, User] = {}

    async def get_by_id(self, user_id: UUID) -> User | None:
        return self._by_id.get(user_id)

    async def get_by_email(self, email: str) -> User | None:
        wanted = normalize_email(email)
        return next((u for u in self._by_id.values() if u.email == wanted), None)

    async def get_by_reset_token_hash(self, token_hash: str) -> User | None:
        return next(
            (
                u
                for u in self._by_id.values()
                if u.password_reset_token_hash == token_hash
            ),
            None,
        )

    async def add(self, user: User) -> None:
        if any(u.email == user.email for u in self._by_id.values()):
            raise ValueError("email already exists")
        self._by_id[user.id] = user

    async def update(self, user_id: UUID, **changes: Any) -> User | None:
        existing = self._by_id.get(user_id)
        if existing is None:
            return None
        updated = replace(existing, **changes)
        self._by_id[user_id] = updated
        return updated

    async def delete(self, user_id: UUID) -> bool:
        return self._by_id.pop(user_id, None) is not None

    async def list_by_organization(self, organization_id: UUID) -> list[User]:
        return [u for u in self._by_id.values() if u.organization_id == organization_id]

    async def list_all(self) -> list[User]:
        return list(self._by_id.values())


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if async_session_factory is not None:
    user_repo: UserRepo = PgUserRepo(async_session_factory)
else:
    user_repo = InMemoryUserRepo()
