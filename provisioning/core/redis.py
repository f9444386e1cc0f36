"""Redis connection management."""

from __future__ import annotations

import redis.asyncio as redis

_redis_pool: redis.Redis | None = None


async def get_redis(redis_url: str) -> redis.Redis:
    """Get or create the Redis connection."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(
            redis_url,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.close()
        _redis_pool = None
