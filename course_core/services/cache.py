"""Read-through cache for progress reads.

    GET  → cache hit  → return
         → cache miss → ledger → populate cache (TTL) → return
    POST → ledger write → delete the cached entry

Two invalidation mechanisms cover each other:

  1. TTL: every entry expires on its own, so a missed delete heals
     within minutes.
  2. Explicit delete after every ledger write for the same key, so the
     common case is fresh immediately.  The delete is best effort: a
     failure is logged and counted and the TTL covers it.

The cache never holds the only copy of anything; the progress store is
the source of truth and the ledger never reads through here.  Values
are the JSON documents produced by models.documents.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from course_core.core.metrics import CACHE_OPERATIONS
from course_core.db.redis import redis_pool

logger = logging.getLogger(__name__)

# Long enough to absorb a learner refreshing their dashboard, short enough
# that a missed invalidation resolves quickly.
PROGRESS_CACHE_TTL = 300


def progress_cache_key(tenant_id: str, user_id: str, course_id: str) -> str:
    return f"progress:{tenant_id}:{user_id}:{course_id}"


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryCacheService:
    """In-memory cache for tests; TTLs are accepted and ignored."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)


class RedisCacheService:
    """Redis-backed cache shared by every API instance."""

    # Keeps cache entries apart from the task queue lists.
    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")


async def read_through(
    cache: CacheService,
    key: str,
    load: Callable[[], Awaitable[dict]],
    ttl_seconds: int = PROGRESS_CACHE_TTL,
) -> dict:
    """Return the cached JSON document for `key`, loading it on a miss.

    A cache that cannot be reached is treated as a miss: the read goes to
    the store and the failure is logged and counted as an "error".
    """
    try:
        cached = await cache.get(key)
    except Exception:
        CACHE_OPERATIONS.labels(operation="error").inc()
        logger.warning("Cache read failed for %s, reading the store", key, exc_info=True)
        return await load()

    if cached is not None:
        CACHE_OPERATIONS.labels(operation="hit").inc()
        return json.loads(cached)

    CACHE_OPERATIONS.labels(operation="miss").inc()
    document = await load()
    try:
        await cache.set(key, json.dumps(document), ttl_seconds)
    except Exception:
        CACHE_OPERATIONS.labels(operation="error").inc()
        logger.warning("Cache write failed for %s", key, exc_info=True)
    return document


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
