"""Redis caching utilities for resolved permission matrices.

Matrices are cached under a key that embeds the employee's write
generation (EmployeePermissionState.version):

    perm:matrix:{employee_id}:v{version}

The generation is bumped in the same transaction as every grant write,
so once a mutation commits no reader can build the old key again.  Old
generations are still deleted eagerly by `invalidate_employee()`.

Redis is an accelerator only: every failure is logged and the caller
falls back to resolving from the database.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from app.config import settings

logger = logging.getLogger(__name__)

MATRIX_PREFIX = "perm:matrix"

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def matrix_cache_key(employee_id: str, version: int) -> str:
    return f"{MATRIX_PREFIX}:{employee_id}:v{version}"


async def get_cached(key: str) -> str | None:
    """Return the cached document for `key`, or None on miss / Redis failure."""
    if not settings.permission_cache_enabled:
        return None
    try:
        redis_client = await get_redis()
        value = await redis_client.get(key)
    except redis.RedisError as e:
        logger.warning(f"Redis error (falling back to uncached): {e}")
        return None

    if value is None:
        logger.debug(f"Cache MISS: {key}")
    else:
        logger.debug(f"Cache HIT: {key}")
    return value


async def set_cached(key: str, value: str, ttl: int | None = None) -> None:
    """Store a serialized document with a TTL; failures are logged only."""
    if not settings.permission_cache_enabled:
        return
    try:
        redis_client = await get_redis()
        await redis_client.setex(key, ttl or settings.permission_cache_ttl, value)
    except redis.RedisError as e:
        logger.warning(f"Failed to cache {key}: {e}")


async def invalidate_cache(pattern: str) -> int:
    """Delete every key matching a Redis glob pattern.

    Example:
        await invalidate_cache("perm:matrix:emp-1:*")
    """
    if not settings.permission_cache_enabled:
        return 0
    try:
        redis_client = await get_redis()
        keys = []
        async for key in redis_client.scan_iter(match=pattern):
            keys.append(key)

        if keys:
            await redis_client.delete(*keys)
            logger.info(f"Invalidated {len(keys)} cache keys matching {pattern}")
        return len(keys)
    except redis.RedisError as e:
        logger.warning(f"Failed to invalidate cache: {e}")
        return 0


async def invalidate_employee(*employee_ids: str) -> None:
    """Drop every cached matrix generation of the given employees."""
    for employee_id in employee_ids:
        await invalidate_cache(f"{MATRIX_PREFIX}:{employee_id}:*")
