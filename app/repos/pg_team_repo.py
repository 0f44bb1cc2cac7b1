"""PostgreSQL implementation of TeamRepo."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from uuid import UUID

from sqlalchemy import String, cast, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.engine import session_scope
from app.db.tables import TeamRow
from app.models.team import (
    FILTERABLE_FIELDS,
    SEARCHABLE_FIELDS,
    SORTABLE_FIELDS,
    Approval,
    Team,
    TeamMember,
)
from app.repos.query import ListQuery, Page


class PgTeamRepo:
    """Satisfies the TeamRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get_by_id(self, team_id: UUID) -> Team | None:
        async with session_scope(self._sessions) as session:
            row = await session.get(TeamRow, team_id)
            return _row_to_team(row) if row is not None else None

    async def add(self, team: Team) -> None:
        async with session_scope(self._sessions) as session:
            session.add(TeamRow(**_team_values(team)))

    async def save(self, team: Team) -> None:
        values = _team_values(team)
        stmt = insert(TeamRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[TeamRow.id],
            set_={k: v for k, v in values.items() if k != "id"},
        )
        async with session_scope(self._sessions) as session:
            await session.execute(stmt)

    async def delete(self, team_id: UUID) -> bool:
        async with session_scope(self._sessions) as session:
            result = await session.execute(delete(TeamRow).where(TeamRow.id == team_id))
            return result.rowcount > 0

    async def delete_many(
        self, organization_id: UUID, team_ids: Iterable[UUID]
    ) -> list[UUID]:
        ids = list(team_ids)
        if not ids:
            return []
        stmt = (
            delete(TeamRow)
            .where(TeamRow.organization_id == organization_id, TeamRow.id.in_(ids))
            .returning(TeamRow.id)
        )
        async with session_scope(self._sessions) as session:
            return list((await session.execute(stmt)).scalars().all())

    async def list_by_organization(self, organization_id: UUID) -> list[Team]:
        stmt = (
            select(TeamRow)
            .where(TeamRow.organization_id == organization_id)
            .order_by(TeamRow.order, TeamRow.created_at)
        )
        async with session_scope(self._sessions) as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_team(r) for r in rows]

    async def query(self, organization_id: UUID, query: ListQuery) -> Page[Team]:
        conditions = [TeamRow.organization_id == organization_id]

        if query.search_term:
            pattern = f"%{_escape_like(query.search_term)}%"
            conditions.append(
                or_(
                    *(
                        getattr(TeamRow, f).ilike(pattern, escape="\\")
                        for f in SEARCHABLE_FIELDS
                    )
                )
            )
        for key, value in query.filters:
            if key in FILTERABLE_FIELDS:
                conditions.append(cast(getattr(TeamRow, key), String) == value)

        order_by = []
        for spec in query.sort:
            key = spec.lstrip("-")
            if key not in SORTABLE_FIELDS:
                continue
            column = getattr(TeamRow, key)
            order_by.append(column.desc() if spec.startswith("-") else column.asc())

        count_stmt = select(func.count()).select_from(TeamRow).where(*conditions)
        page_stmt = (
            select(TeamRow)
            .where(*conditions)
            .order_by(*order_by)
            .offset(query.offset)
            .limit(query.limit)
        )
        async with session_scope(self._sessions) as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(page_stmt)).scalars().all()
            items = [_row_to_team(r) for r in rows]
        return Page(items=items, total=total, page=query.page, limit=query.limit)

    async def next_order(self, organization_id: UUID) -> int:
        stmt = select(func.coalesce(func.max(TeamRow.order), 0)).where(
            TeamRow.organization_id == organization_id
        )
        async with session_scope(self._sessions) as session:
            return (await session.execute(stmt)).scalar_one() + 1

    async def set_orders(
        self, organization_id: UUID, orders: Mapping[UUID, int]
    ) -> int:
        changed = 0
        async with session_scope(self._sessions) as session:
            for team_id, order in orders.items():
                result = await session.execute(
                    update(TeamRow)
                    .where(
                        TeamRow.id == team_id,
                        TeamRow.organization_id == organization_id,
                    )
                    .values(order=order)
                )
                changed += result.rowcount
        return changed


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _team_values(team: Team) -> dict:
    return {
        "id": team.id,
        "organization_id": team.organization_id,
        "name": team.name,
        "description": team.description,
        "manager_id": team.manager_id,
        "members": [
            {
                "user_id": str(m.user_id),
                "role": m.role,
                "joined_at": m.joined_at.isoformat(),
            }
            for m in team.members
        ],
        "manager_approved": int(team.manager_approved),
        "director_approved": int(team.director_approved),
        "order": team.order,
        "created_at": team.created_at,
        "updated_at": team.updated_at,
    }


def _row_to_team(row: TeamRow) -> Team:
    return Team(
        id=row.id,
        organization_id=row.organization_id,
        name=row.name,
        description=row.description or "",
        manager_id=row.manager_id,
        members=tuple(
            TeamMember(
                user_id=UUID(m["user_id"]),
                role=m.get("role", "member"),
                joined_at=datetime.fromisoformat(m["joined_at"]),
            )
            for m in row.members or ()
        ),
        manager_approved=Approval(row.manager_approved),
        director_approved=Approval(row.director_approved),
        order=row.order,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
