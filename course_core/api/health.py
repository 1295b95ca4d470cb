"""Health and readiness endpoints.

  /health  liveness: the process answers.  Reports per-dependency status
           but stays 200 when degraded; a restart would not fix Redis.
  /ready   readiness: 503 when the database is configured but
           unreachable, since no ledger operation can succeed without it.
           Redis is optional (cache and queue fall back) and not checked.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from course_core.db.engine import engine
from course_core.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_ok() -> bool:
    if engine is None:
        return True
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        return False
    return True


@router.get("/health")
async def health() -> dict:
    checks: dict[str, str] = {}
    overall = "ok"

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            logger.exception("Redis health check failed")
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    if engine is None:
        checks["database"] = "not_configured"
    elif await _database_ok():
        checks["database"] = "ok"
    else:
        checks["database"] = "degraded"
        overall = "degraded"

    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    if not await _database_ok():
        return Response(status_code=503)
    return Response(status_code=200)
