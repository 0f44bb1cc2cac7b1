from __future__ import annotations

from dataclasses import replace
from typing import Any, Literal, Protocol
from uuid import UUID

from app.db.engine import async_session_factory
from app.models.organization import Organization, SubscriptionStatus
from app.repos.pg_org_repo import PgOrgRepo

UsageKind = Literal["users", "teams"]


class OrgRepo(Protocol):
    async def get_by_id(self, org_id: UUID) -> Organization | None: ...
    async def get_by_slug(self, slug: str) -> Organization | None: ...
    async def get_by_stripe_customer(self, customer_id: str) -> Organization | None: ...
    async def get_by_setup_token_hash(self, token_hash: str) -> Organization | None: ...
    async def add(self, org: Organization) -> None: ...
    async def update(self, org_id: UUID, **changes: Any) -> Organization | None: ...
    async def delete(self, org_id: UUID) -> bool: ...
    async def list_all(self) -> list[Organization]: ...
    async def list_trialing(self) -> list[Organization]: ...
    async def try_increment_usage(
        self, org_id: UUID, kind: UsageKind, count: int = 1
    ) -> bool: ...
    async def decrement_usage(
        self, org_id: UUID, kind: UsageKind, count: int = 1
    ) -> None: ...
    async def transition_status(
        self,
        org_id: UUID,
        *,
        expected: SubscriptionStatus,
        new: SubscriptionStatus,
    ) -> bool: ...


class InMemoryOrgRepo:
    """Dict-backed OrgRepo.

    The conditional writes (usage reservation, status transition) read and
    write with no ``await`` in between, so they are atomic on the event loop.
    """

    def __init__(self) -> None:
        self._by_id: dict[UUID, Organization] = {}

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        return self._by_id.get(org_id)

    async def get_by_slug(self, slug: str) -> Organization | None:
        return next((o for o in self._by_id.values() if o.slug == slug), None)

    async def get_by_stripe_customer(self, customer_id: str) -> Organization | None:
        return next(
            (o for o in self._by_id.values() if o.stripe_customer_id == customer_id),
            None,
        )

    async def get_by_setup_token_hash(self, token_hash: str) -> Organization | None:
        return next(
            (o for o in self._by_id.values() if o.setup_token_hash == token_hash),
            None,
        )

    async def add(self, org: Organization) -> None:
        if any(o.slug == org.slug for o in self._by_id.values()):
            raise ValueError("slug already exists")
        self._by_id[org.id] = org

    async def update(self, org_id: UUID, **changes: Any) -> Organization | None:
        existing = self._by_id.get(org_id)
        if existing is None:
            return None
        updated = replace(existing, **changes)
        self._by_id[org_id] = updated
        return updated

    async def delete(self, org_id: UUID) -> bool:
        return self._by_id.pop(org_id, None) is not None

    async def list_all(self) -> list[Organization]:
        return sorted(self._by_id.values(), key=lambda o: o.created_at)

    async def list_trialing(self) -> list[Organization]:
        return [
            o
            for o in self._by_id.values()
            if o.subscription_status is SubscriptionStatus.TRIALING
        ]

    async def try_increment_usage(
        self, org_id: UUID, kind: UsageKind, count: int = 1
    ) -> bool:
        org = self._by_id.get(org_id)
        if org is None:
            return False
        current = getattr(org.usage, kind)
        limit = org.limits.max_users if kind == "users" else org.limits.max_teams
        if current + count > limit:
            return False
        usage = replace(org.usage, **{kind: current + count})
        self._by_id[org_id] = replace(org, usage=usage)
        return True

    async def decrement_usage(
        self, org_id: UUID, kind: UsageKind, count: int = 1
    ) -> None:
        org = self._by_id.get(org_id)
        if org is None:
            return
        current = getattr(org.usage, kind)
        usage = replace(org.usage, **{kind: max(0, current - count)})
        self._by_id[org_id] = replace(org, usage=usage)

    async def transition_status(
        self,
        org_id: UUID,
        *,
        expected: SubscriptionStatus,
        new: SubscriptionStatus,
    ) -> bool:
        org = self._by_id.get(org_id)
        if org is None or org.subscription_status is not expected:
            return False
        self._by_id[org_id] = replace(org, subscription_status=new)
        return True


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if async_session_factory is not None:
    org_repo: OrgRepo = PgOrgRepo(async_session_factory)
else:
    org_repo = InMemoryOrgRepo()

