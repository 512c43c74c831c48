"""Health check endpoints.

Provides:
- Basic liveness probe (/health/)
- Dependency check (/health/health): database, Celery broker and job queue backlog
"""

import time
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.config import get_settings
from app.dependencies import get_db, get_engine
from workflow.engine import AutomationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("/", response_model=dict[str, Any])
async def root() -> dict[str, Any]:
    """
    Get API root information and version.
    Used as a simple liveness probe.
    """
    settings = get_settings()
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
        "started_at": _start_datetime,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
    }


@router.get("/health", response_model=dict[str, Any])
async def health_check(
    db: AsyncSession = Depends(get_db),
    engine: AutomationEngine = Depends(get_engine),
) -> dict[str, Any]:
    """
    Health check with dependency verification.
    Pings the database and the Celery broker and reports the job queue
    backlog. Returns 503 if the database is down; a broker outage only
    degrades the result.
    """
    checks: dict[str, Any] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "database": "unavailable"},
        )

    try:
        r = aioredis.from_url(get_settings().REDIS_URL, socket_connect_timeout=2, socket_timeout=2)
        try:
            checks["redis"] = "ok" if await r.ping() else "degraded"
        finally:
            await r.aclose()
    except Exception as e:
        logger.warning("Redis health check failed: %s", e)
        checks["redis"] = "unavailable"

    checks["jobs"] = await engine.get_job_stats()
    overall = "healthy" if checks["redis"] == "ok" else "degraded"
    return {"status": overall, **checks}
