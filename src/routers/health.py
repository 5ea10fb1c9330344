"""Health check endpoint, public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.config import get_settings
from src.services.supabase import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("forela.health")


@router.get("/health")
async def health_check() -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight DB connectivity check when a database is
    configured.
    """
    settings = get_settings()
    if not settings.supabase_db_url:
        database = "in-memory"
        db_ok = True
    else:
        db_ok = False
        try:
            pool = get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            db_ok = True
        except Exception as exc:
            logger.warning("Health check DB probe failed: %s", exc)
        database = "connected" if db_ok else "unreachable"

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": database,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
