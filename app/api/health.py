"""Liveness and readiness checks.

  /health  "is the process alive?"  Always 200; ``status`` says whether a
           backing service is impaired.
  /ready   "can this instance take traffic?"  503 when the database is
           configured but unreachable.  Redis is not critical: every
           Redis-backed component has an in-memory fallback or degrades
           to a cache miss.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.db.engine import engine
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except RedisError:
        logger.warning("Health check: Redis unreachable")
        return "degraded"
    return "ok"


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.warning("Health check: database unreachable")
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    checks = {"database": await _check_database(), "redis": await _check_redis()}
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> JSONResponse:
    database = await _check_database()
    if database == "degraded":
        return JSONResponse({"ready": False, "database": database}, status_code=503)
    return JSONResponse({"ready": True, "database": database})
