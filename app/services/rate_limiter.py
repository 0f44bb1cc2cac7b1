"""Token-bucket rate limiting.

Each client owns a bucket of ``capacity`` tokens that refills at
``refill_rate`` tokens per second; a request spends one token.  With the
defaults (100 per 15 minutes) a client can burst 100 requests and then
sustains one request every nine seconds.

Buckets are stored as ``(tokens, last_refill)``.  The Redis variant runs
the refill-and-spend step as one Lua script so concurrent API instances
share a bucket without racing on it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from app.core.config import SETTINGS


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    retry_after: float  # seconds until the next token; 0 when allowed


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    capacity: int
    refill_rate: float  # tokens per second

    @staticmethod
    def per_window(max_requests: int, window_ms: int) -> RateLimitConfig:
        return RateLimitConfig(
            capacity=max_requests, refill_rate=max_requests / (window_ms / 1000)
        )


def default_config() -> RateLimitConfig:
    return RateLimitConfig.per_window(
        SETTINGS.rate_limit_max_requests, SETTINGS.rate_limit_window_ms
    )


@runtime_checkable
class RateLimiter(Protocol):
    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult: ...
    async def reset(self, key: str) -> None: ...


class InMemoryRateLimiter:
    """Per-process buckets; each API instance counts separately."""

    def __init__(self) -> None:
        self._buckets: dict[str, tuple[float, float]] = {}

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = time.monotonic()
        tokens, last_refill = self._buckets.get(key, (float(config.capacity), now))
        tokens = min(config.capacity, tokens + (now - last_refill) * config.refill_rate)

        if tokens >= 1:
            tokens -= 1
            self._buckets[key] = (tokens, now)
            return RateLimitResult(True, int(tokens), config.capacity, 0)

        self._buckets[key] = (tokens, now)
        return RateLimitResult(
            False, 0, config.capacity, (1 - tokens) / config.refill_rate
        )

    async def reset(self, key: str) -> None:
        self._buckets.pop(key, None)

    def clear(self) -> None:
        self._buckets.clear()


class RedisRateLimiter:
    """Buckets shared by every API instance."""

    # KEYS[1] bucket; ARGV capacity, refill_rate, now
    # -> {allowed, remaining, retry_after_ms}
    _LUA_SCRIPT = """
    local capacity = tonumber(ARGV[1])
    local refill_rate = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local ttl = math.ceil(capacity / refill_rate) + 60

    local bucket = redis.call('HMGET', KEYS[1], 'tokens', 'last_refill')
    local tokens = tonumber(bucket[1]) or capacity
    local last_refill = tonumber(bucket[2]) or now
    tokens = math.min(capacity, tokens + (now - last_refill) * refill_rate)

    local allowed = 0
    local retry_after_ms = 0
    if tokens >= 1 then
        tokens = tokens - 1
        allowed = 1
    else
        retry_after_ms = math.ceil((1 - tokens) / refill_rate * 1000)
    end
    redis.call('HSET', KEYS[1], 'tokens', tokens, 'last_refill', now)
    redis.call('EXPIRE', KEYS[1], ttl)
    return {allowed, math.floor(tokens), retry_after_ms}
    """

    _PREFIX = "ratelimit:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client
        self._script = redis_client.register_script(self._LUA_SCRIPT)

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        allowed, remaining, retry_after_ms = await self._script(
            keys=[f"{self._PREFIX}{key}"],
            args=[config.capacity, config.refill_rate, time.time()],
        )
        return RateLimitResult(
            allowed=bool(allowed),
            remaining=int(remaining),
            limit=config.capacity,
            retry_after=retry_after_ms / 1000,
        )

    async def reset(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")
