from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.db.engine import async_session_factory
from app.models.team import FILTERABLE_FIELDS, SEARCHABLE_FIELDS, SORTABLE_FIELDS, Team
from app.repos.pg_team_repo import PgTeamRepo
from app.repos.query import ListQuery, Page, apply_in_memory


class TeamRepo(Protocol):
    async def get_by_id(self, team_id: UUID) -> Team | None: ...
    async def add(self, team: Team) -> None: ...
    async def save(self, team: Team) -> None: ...
    async def delete(self, team_id: UUID) -> bool: ...
    async def delete_many(self, organization_id: UUID, team_ids: Iterable[UUID]) -> list[UUID]: ...
    async def list_by_organization(self, organization_id: UUID) -> list[Team]: ...
    async def query(self, organization_id: UUID, query: ListQuery) -> Page[Team]: ...
    async def next_order(self, organization_id: UUID) -> int: ...
    async def set_orders(self, organization_id: UUID, orders: Mapping[UUID, int]) -> int: ...


class InMemoryTeamRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Team] = {}

    async def get_by_id(self, team_id: UUID) -> Team | None:
        return self._by_id.get(team_id)

    async def add(self, team: Team) -> None:
        if team.id in self._by_id:
            raise ValueError("team already exists")
        self._by_id[team.id] = team

    async def save(self, team: Team) -> None:
        self._by_id[team.id] = team

    async def delete(self, team_id: UUID) -> bool:
        return self._by_id.pop(team_id, None) is not None

    async def delete_many(
        self, organization_id: UUID, team_ids: Iterable[UUID]
    ) -> list[UUID]:
        deleted = []
        for team_id in team_ids:
            team = self._by_id.get(team_id)
            if team is not None and team.organization_id == organization_id:
                del self._by_id[team_id]
                deleted.append(team_id)
        return deleted

    async def list_by_organization(self, organization_id: UUID) -> list[Team]:
        teams = [t for t in self._by_id.values() if t.organization_id == organization_id]
        return sorted(teams, key=lambda t: (t.order, t.created_at))

    async def query(self, organization_id: UUID, query: ListQuery) -> Page[Team]:
        teams = await self.list_by_organization(organization_id)
        rows = [t.to_dict() for t in teams]
        page_rows, total = apply_in_memory(
            rows,
            query,
            searchable=SEARCHABLE_FIELDS,
            filterable=FILTERABLE_FIELDS,
            sortable=SORTABLE_FIELDS,
        )
        items = [self._by_id[UUID(r["id"])] for r in page_rows]
        return Page(items=items, total=total, page=query.page, limit=query.limit)

    async def next_order(self, organization_id: UUID) -> int:
        orders = [
            t.order for t in self._by_id.values() if t.organization_id == organization_id
        ]
        return max(orders, default=0) + 1

    async def set_orders(
        self, organization_id: UUID, orders: Mapping[UUID, int]
    ) -> int:
        changed = 0
        for team_id, order in orders.items():
            team = self._by_id.get(team_id)
            if team is None or team.organization_id != organization_id:
                continue
            self._by_id[team_id] = replace(team, order=order)
            changed += 1
        return changed


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if async_session_factory is not None:
    team_repo: TeamRepo = PgTeamRepo(async_session_factory)
else:
    team_repo = InMemoryTeamRepo()
