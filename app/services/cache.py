"""Read-through cache for organization, team-list and analytics reads.

KEYS AND LIFETIMES
-------------------
  organization:{org_id}             600s   single organization document
  teams:{org_id}:{query}            300s   one page of a team list query
  analytics:{org_id}:{report}       300s   analytics aggregates

Every entry carries a TTL, and every write path also deletes the keys it
makes stale.  The TTL bounds how long a missed invalidation can serve
stale data; the explicit delete keeps the common case fresh.

FAILURE POLICY
---------------
The cache is never a source of truth.  ``get_json``/``set_json``/
``invalidate`` log and count backend errors and carry on: a failed read
is a miss, a failed write or delete is ignored until the TTL expires.
Callers never see a cache exception.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Protocol, runtime_checkable

from redis.exceptions import RedisError

from app.core.metrics import CACHE_OPERATIONS
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)

ORGANIZATION_TTL = 600
TEAMS_TTL = 300
ANALYTICS_TTL = 300


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a TTL (time to live)."""
        ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching a glob pattern (e.g., 'teams:<org>:*')."""
        ...


class InMemoryCacheService:
    """Per-process cache used when REDIS_URL is unset.

    Expiry is checked lazily on read.  The autouse fixture in conftest.py
    clears the store between tests.
    """

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.monotonic():
            del self._store[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = (value, time.monotonic() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> None:
        prefix = pattern.rstrip("*")
        for k in [k for k in self._store if k.startswith(prefix)]:
            del self._store[k]

    def clear(self) -> None:
        self._store.clear()


class RedisCacheService:
    """Redis-backed cache, shared across all API instances."""

    # Keeps cache keys apart from the blacklist, task queues and locks.
    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN, not KEYS: KEYS blocks the server for the whole keyspace.
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{self._PREFIX}{pattern}", count=100
            )
            if keys:
                await self._redis.delete(*keys)
            if cursor == 0:
                break


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()


# ---------------------------------------------------------------------------
# Failure-tolerant helpers used by the services
# ---------------------------------------------------------------------------


async def get_json(key: str) -> Any | None:
    try:
        raw = await cache_service.get(key)
    except RedisError:
        logger.warning("Cache read failed for %s", key, exc_info=True)
        CACHE_OPERATIONS.labels(operation="error").inc()
        return None
    if raw is None:
        CACHE_OPERATIONS.labels(operation="miss").inc()
        return None
    CACHE_OPERATIONS.labels(operation="hit").inc()
    return json.loads(raw)


async def set_json(key: str, value: Any, ttl_seconds: int) -> None:
    try:
        await cache_service.set(key, json.dumps(value, default=str), ttl_seconds)
    except RedisError:
        logger.warning("Cache write failed for %s", key, exc_info=True)
        CACHE_OPERATIONS.labels(operation="error").inc()


async def invalidate(*keys: str, patterns: tuple[str, ...] = ()) -> None:
    try:
        for key in keys:
            await cache_service.delete(key)
        for pattern in patterns:
            await cache_service.delete_pattern(pattern)
    except RedisError:
        logger.warning("Cache invalidation failed for %s %s", keys, patterns, exc_info=True)
        CACHE_OPERATIONS.labels(operation="error").inc()
        return
    CACHE_OPERATIONS.labels(operation="invalidate").inc()


def organization_key(org_id: object) -> str:
    return f"organization:{org_id}"


def teams_pattern(org_id: object) -> str:
    return f"teams:{org_id}:*"


def analytics_pattern(org_id: object) -> str:
    return f"analytics:{org_id}:*"
