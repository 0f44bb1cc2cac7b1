"""PostgreSQL implementation of OrgRepo."""

from __future__ import annotations

from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.engine import session_scope
from app.db.tables import OrganizationRow
from app.models.organization import (
    PLAN_LIMITS,
    BillingCycle,
    Organization,
    OrgStatus,
    Plan,
    SubscriptionStatus,
    Usage,
)


class PgOrgRepo:
    """Satisfies the OrgRepo Protocol using PostgreSQL via SQLAlchemy.

    Usage reservation and status transitions are single conditional
    UPDATE statements, so concurrent callers cannot both succeed past a
    limit or both transition the same organization.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get_by_id(self, org_id: UUID) -> Organization | None:
        return await self._one(select(OrganizationRow).where(OrganizationRow.id == org_id))

    async def get_by_slug(self, slug: str) -> Organization | None:
        return await self._one(select(OrganizationRow).where(OrganizationRow.slug == slug))

    async def get_by_stripe_customer(self, customer_id: str) -> Organization | None:
        stmt = select(OrganizationRow).where(
            OrganizationRow.stripe_customer_id == customer_id
        )
        return await self._one(stmt)

    async def get_by_setup_token_hash(self, token_hash: str) -> Organization | None:
        stmt = select(OrganizationRow).where(
            OrganizationRow.setup_token_hash == token_hash
        )
        return await self._one(stmt)

    async def add(self, org: Organization) -> None:
        async with session_scope(self._sessions) as session:
            session.add(_org_to_row(org))
            try:
                await session.flush()
            except IntegrityError:
                raise ValueError("slug already exists") from None

    async def update(self, org_id: UUID, **changes: Any) -> Organization | None:
        values = _changes_to_columns(changes)
        async with session_scope(self._sessions) as session:
            stmt = (
                update(OrganizationRow)
                .where(OrganizationRow.id == org_id)
                .values(**values)
                .returning(OrganizationRow)
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_org(row) if row is not None else None

    async def delete(self, org_id: UUID) -> bool:
        async with session_scope(self._sessions) as session:
            result = await session.execute(
                delete(OrganizationRow).where(OrganizationRow.id == org_id)
            )
            return result.rowcount > 0

    async def list_all(self) -> list[Organization]:
        return await self._many(select(OrganizationRow).order_by(OrganizationRow.created_at))

    async def list_trialing(self) -> list[Organization]:
        stmt = select(OrganizationRow).where(
            OrganizationRow.subscription_status == SubscriptionStatus.TRIALING.value
        )
        return await self._many(stmt)

    async def try_increment_usage(self, org_id: UUID, kind: str, count: int = 1) -> bool:
        used, limit = _usage_columns(kind)
        stmt = (
            update(OrganizationRow)
            .where(OrganizationRow.id == org_id, used + count <= limit)
            .values({used: used + count})
            .returning(OrganizationRow.id)
        )
        async with session_scope(self._sessions) as session:
            return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def decrement_usage(self, org_id: UUID, kind: str, count: int = 1) -> None:
        used, _ = _usage_columns(kind)
        stmt = (
            update(OrganizationRow)
            .where(OrganizationRow.id == org_id)
            .values({used: func.greatest(used - count, 0)})
        )
        async with session_scope(self._sessions) as session:
            await session.execute(stmt)

    async def transition_status(
        self,
        org_id: UUID,
        *,
        expected: SubscriptionStatus,
        new: SubscriptionStatus,
    ) -> bool:
        stmt = (
            update(OrganizationRow)
            .where(
                OrganizationRow.id == org_id,
                OrganizationRow.subscription_status == expected.value,
            )
            .values(subscription_status=new.value)
            .returning(OrganizationRow.id)
        )
        async with session_scope(self._sessions) as session:
            return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def _one(self, stmt) -> Organization | None:
        async with session_scope(self._sessions) as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_org(row) if row is not None else None

    async def _many(self, stmt) -> list[Organization]:
        async with session_scope(self._sessions) as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_org(r) for r in rows]


def _usage_columns(kind: str):
    if kind == "users":
        return OrganizationRow.usage_users, OrganizationRow.max_users
    if kind == "teams":
        return OrganizationRow.usage_teams, OrganizationRow.max_teams
    raise ValueError(f"unknown usage kind: {kind}")


def _changes_to_columns(changes: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, value in changes.items():
        if key == "usage":
            values["usage_users"] = value.users
            values["usage_teams"] = value.teams
        elif isinstance(value, Enum):
            values[key] = value.value
        else:
            values[key] = value
    if "plan" in changes:
        limits = PLAN_LIMITS[Plan(changes["plan"])]
        values["max_users"] = limits.max_users
        values["max_teams"] = limits.max_teams
    return values


def _org_to_row(org: Organization) -> OrganizationRow:
    return OrganizationRow(
        id=org.id,
        name=org.name,
        slug=org.slug,
        owner_id=org.owner_id,
        plan=org.plan.value,
        subscription_status=org.subscription_status.value,
        trial_ends_at=org.trial_ends_at,
        usage_users=org.usage.users,
        usage_teams=org.usage.teams,
        max_users=org.limits.max_users,
        max_teams=org.limits.max_teams,
        status=org.status.value,
        is_active=org.is_active,
        billing_cycle=org.billing_cycle.value,
        stripe_customer_id=org.stripe_customer_id,
        stripe_subscription_id=org.stripe_subscription_id,
        stripe_price_id=org.stripe_price_id,
        current_period_end=org.current_period_end,
        cancel_at_period_end=org.cancel_at_period_end,
        setup_token_hash=org.setup_token_hash,
        created_at=org.created_at,
    )


def _row_to_org(row: OrganizationRow) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        slug=row.slug,
        owner_id=row.owner_id,
        plan=Plan(row.plan),
        subscription_status=SubscriptionStatus(row.subscription_status),
        trial_ends_at=row.trial_ends_at,
        usage=Usage(users=row.usage_users, teams=row.usage_teams),
        status=OrgStatus(row.status),
        is_active=row.is_active,
        billing_cycle=BillingCycle(row.billing_cycle),
        stripe_customer_id=row.stripe_customer_id,
        stripe_subscription_id=row.stripe_subscription_id,
        stripe_price_id=row.stripe_price_id,
        current_period_end=row.current_period_end,
        cancel_at_period_end=row.cancel_at_period_end,
        setup_token_hash=row.setup_token_hash,
        created_at=row.created_at,
    )
