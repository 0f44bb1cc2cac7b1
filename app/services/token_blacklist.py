"""Revocation list for access and refresh tokens.

Logout and refresh-token rotation add the token's ``jti`` here; identity
resolution rejects any token whose jti is listed.  Entries live only as
long as the token would have, so the list cleans itself up.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable

from app.core.metrics import TOKEN_BLACKLIST_CHECKS
from app.db.redis import redis_pool


@runtime_checkable
class TokenBlacklist(Protocol):
    async def revoke(self, jti: str, expires_at: float) -> None:
        """Add a token's JTI to the blacklist until it would have expired."""
        ...

    async def is_revoked(self, jti: str) -> bool: ...


class InMemoryTokenBlacklist:
    """Per-process blacklist used when REDIS_URL is unset."""

    def __init__(self) -> None:
        # jti -> expiry timestamp (Unix seconds)
        self._revoked: dict[str, float] = {}

    async def revoke(self, jti: str, expires_at: float) -> None:
        self._revoked[jti] = expires_at

    async def is_revoked(self, jti: str) -> bool:
        exp = self._revoked.get(jti)
        if exp is not None and exp < time.time():
            del self._revoked[jti]
            exp = None
        revoked = exp is not None
        TOKEN_BLACKLIST_CHECKS.labels(result="revoked" if revoked else "valid").inc()
        return revoked

    def clear(self) -> None:
        self._revoked.clear()


class RedisTokenBlacklist:
    _PREFIX = "blacklist:jti:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def revoke(self, jti: str, expires_at: float) -> None:
        ttl_seconds = int(expires_at - time.time())
        if ttl_seconds <= 0:
            return  # already expired
        # SETEX: value and TTL in one command, so no key is left without expiry.
        await self._redis.setex(f"{self._PREFIX}{jti}", ttl_seconds, "1")

    async def is_revoked(self, jti: str) -> bool:
        revoked = bool(await self._redis.exists(f"{self._PREFIX}{jti}"))
        TOKEN_BLACKLIST_CHECKS.labels(result="revoked" if revoked else "valid").inc()
        return revoked


# ---------------------------------------------------------------------------
# Module-level singleton, Redis-backed when configured
# ---------------------------------------------------------------------------

if redis_pool is not None:
    token_blacklist: TokenBlacklist = RedisTokenBlacklist(redis_pool)
else:
    token_blacklist = InMemoryTokenBlacklist()
