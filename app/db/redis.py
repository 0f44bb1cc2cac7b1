"""Redis connection management.

Mirrors engine.py: with REDIS_URL set, a shared async connection pool
backs the cache, the token blacklist, the task queue and the trial-sweep
lock. Without it ``redis_pool`` is None and each of those falls back to
a per-process in-memory implementation.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis() -> AsyncIterator[None]:
    """Verify connectivity on startup and close the pool on shutdown.

    An unreachable Redis is logged, not fatal: the service keeps serving
    and cache reads degrade to misses.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured, Redis features use in-memory fallbacks")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected")
    except RedisError:
        logger.exception("Redis connection failed on startup")

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
