"""
Redis caching service for lesson listings.

CACHING STRATEGY
================

What we cache:
  - Lesson listing responses (paginated, JSON-serialized)
  - Cache key pattern: "lessons:list:page={page}&size={size}&upcoming={upcoming}&teacher={id}"

Invalidation strategy:
  - Any booking, cancellation, swap, lesson change or template application
    deletes all lesson list keys (seat counts and schedules changed)
  - TTL-based expiry as safety net (REDIS_CACHE_TTL)

  All lesson list keys start with "lessons:list:" so we can SCAN and delete them.

Why NOT cache individual lessons:
  - The booking path reads seat counts under a row lock, never from cache
  - A stale single-lesson read would show seats that are already gone

Cache failures are logged and counted; a cache miss falls through to the
database, so the API keeps working without Redis.
"""

import json
from typing import Optional

import redis.asyncio as redis

from tutorbook.core.config import get_settings
from tutorbook.core.logging import get_logger
from tutorbook.core.metrics import record_cache_operation, redis_connection_errors
from tutorbook.infrastructure.redis_client import get_redis

logger = get_logger(__name__)
settings = get_settings()

LESSON_LIST_PREFIX = "lessons:list:"


def _make_lesson_list_key(
    page: int, page_size: int, upcoming_only: bool, teacher_id: Optional[int]
) -> str:
    return (
        f"{LESSON_LIST_PREFIX}page={page}&size={page_size}"
        f"&upcoming={upcoming_only}&teacher={teacher_id or 'all'}"
    )


async def get_cached_lessons(
    page: int, page_size: int, upcoming_only: bool, teacher_id: Optional[int] = None
) -> Optional[dict]:
    """Retrieve cached lesson list response."""
    client = await get_redis()
    if not client:
        return None

    key = _make_lesson_list_key(page, page_size, upcoming_only, teacher_id)
    try:
        data = await client.get(key)
    except redis.RedisError as e:
        redis_connection_errors.inc()
        logger.error("cache_get_error", key=key, error=str(e))
        return None

    record_cache_operation("get", hit=data is not None)
    if data:
        logger.debug("cache_hit", key=key)
        return json.loads(data)
    logger.debug("cache_miss", key=key)
    return None


async def set_cached_lessons(
    page: int,
    page_size: int,
    upcoming_only: bool,
    teacher_id: Optional[int],
    data: dict,
) -> None:
    """Cache lesson list response with TTL."""
    client = await get_redis()
    if not client:
        return

    key = _make_lesson_list_key(page, page_size, upcoming_only, teacher_id)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except redis.RedisError as e:
        redis_connection_errors.inc()
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_lesson_cache() -> None:
    """
    Invalidate all cached lesson listings.
    Uses SCAN to find and delete all keys matching the prefix.
    """
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{LESSON_LIST_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except redis.RedisError as e:
        redis_connection_errors.inc()
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}

    hits = info.get("keyspace_hits", 0)
    misses = info.get("keyspace_misses", 0)
    return {
        "status": "connected",
        "hits": hits,
        "misses": misses,
        "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
    }
