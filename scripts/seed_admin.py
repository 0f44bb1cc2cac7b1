"""Create the first platform SuperAdmin.

Run with:
    SEED_ADMIN_EMAIL=admin@example.com SEED_ADMIN_PASSWORD=... \
        python scripts/seed_admin.py

Does nothing when a SuperAdmin already exists.  Needs DATABASE_URL to
seed anything lasting; without it the in-memory store is used and the
admin is gone when the script exits.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.services.admin_service import seed_super_admin

logger = logging.getLogger("seed_admin")


async def main() -> int:
    email = os.getenv("SEED_ADMIN_EMAIL", "").strip()
    password = os.getenv("SEED_ADMIN_PASSWORD", "")
    if not email or len(password) < 6:
        logger.error("SEED_ADMIN_EMAIL and SEED_ADMIN_PASSWORD (6+ chars) must be set")
        return 1

    async with lifespan_db():
        admin = await seed_super_admin(
            email=email,
            password=password,
            name=os.getenv("SEED_ADMIN_NAME", "Super Admin"),
        )
    if admin is not None:
        logger.info("Seeded SuperAdmin id=%s", admin.id)
    return 0


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    sys.exit(asyncio.run(main()))
