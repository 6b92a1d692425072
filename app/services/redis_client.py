"""
Redis connection manager.

Provides an async Redis client singleton shared by the assignment queue, the
status store and the worker. Startup degrades gracefully when Redis is
unreachable: bulk assignment endpoints answer 503 and the worker stays off.
"""

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.utils.logger import logger

_redis_client: Optional[aioredis.Redis] = None


def create_redis(url: str, socket_timeout: Optional[float] = None) -> aioredis.Redis:
    """Build a client; `socket_timeout` must exceed any BRPOP timeout used on it."""
    return aioredis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=socket_timeout,
        retry_on_timeout=True,
    )


async def init_redis() -> None:
    """Connect to Redis. Safe to call always."""
    global _redis_client
    from app.config import get_settings

    url = get_settings().redis_url
    try:
        client = create_redis(url)
        await client.ping()
        _redis_client = client
        logger.info("[redis] Connected successfully")
    except (RedisError, OSError) as exc:
        logger.warning(f"[redis] Connection failed ({exc}), bulk assignment disabled")
        _redis_client = None


async def close_redis() -> None:
    """Gracefully close the Redis connection pool."""
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("[redis] Connection closed")
        except RedisError as exc:
            logger.debug(f"[redis] Close failed: {exc}")
        _redis_client = None


def get_redis() -> Optional[aioredis.Redis]:
    """Return the Redis client or None if unavailable."""
    return _redis_client


async def is_redis_healthy() -> bool:
    """Quick health probe; returns False rather than raising."""
    if _redis_client is None:
        return False
    try:
        return await _redis_client.ping()
    except (RedisError, OSError):
        return False
