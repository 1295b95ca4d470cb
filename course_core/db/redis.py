"""Redis connection management.

Mirrors engine.py: when REDIS_URL is configured a shared connection
pool is created at import time; when it is unset (local dev, tests)
redis_pool is None and every consumer falls back to its in-memory
implementation.

Two things live in Redis:

  cache:progress:{tenant}:{user}:{course}   read-through progress cache
  tasks:achievement_check                   background task list

Both are disposable.  Losing Redis costs cache hits and pending
achievement checks, never ledger state; the progress store is the
source of truth.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from course_core.core.config import SETTINGS

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
async def lifespan_redis():
    """Startup/shutdown hook for Redis, called from the app lifespan."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, cache and task queue are in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        # Keep serving: a cache miss falls through to the store, and a
        # failed enqueue is already a logged side-effect failure.
        logger.exception("Redis connection failed on startup")
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
