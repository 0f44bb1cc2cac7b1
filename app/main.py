from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.admin import router as admin_router
from app.api.analytics import router as analytics_router
from app.api.auth import router as auth_router
from app.api.billing import router as billing_router
from app.api.health import router as health_router
from app.api.invitations import router as invitations_router
from app.api.metrics_endpoint import router as metrics_router
from app.api.notifications import router as notifications_router
from app.api.orgs import router as orgs_router
from app.api.teams import router as teams_router
from app.core.config import SETTINGS
from app.core.errors import register_exception_handlers
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.db.redis import lifespan_redis
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Teardown runs in reverse order: Redis closes before the database.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="teamspace-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[SETTINGS.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs first: RequestContext (outermost) -> Metrics -> CORS -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(orgs_router)
app.include_router(admin_router)
app.include_router(teams_router)
app.include_router(invitations_router)
app.include_router(analytics_router)
app.include_router(billing_router)
app.include_router(notifications_router)

logger.info(
    "teamspace-service started  env=%s log_level=%s port=%d docs=%s billing=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
    "on" if SETTINGS.stripe_enabled else "off",
)
