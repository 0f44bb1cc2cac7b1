"""Async SQLAlchemy engine and session factory.

With DATABASE_URL set (postgresql+asyncpg://...), this module exposes an
engine, a session factory and ``session_scope()``, and the repository
singletons switch to their Postgres implementations. Without it, every
export is None and the in-memory repositories are used.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all table models."""


if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )
    async_session_factory: async_sessionmaker[AsyncSession] | None = (
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    )
else:
    engine = None
    async_session_factory = None


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """One unit of work: commit on success, roll back on any exception."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def lifespan_db() -> AsyncIterator[None]:
    """Startup/shutdown hook for the database engine."""
    if engine is None:
        logger.info("No DATABASE_URL configured, using in-memory repositories")
        yield
        return

    # Registers the table classes on Base.metadata.
    import app.db.tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(
        "Database ready: %s", engine.url.render_as_string(hide_password=True)
    )
    yield
    await engine.dispose()
    logger.info("Database engine disposed")
