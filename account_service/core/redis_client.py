"""
Redis client infrastructure layer.

Async Redis client singleton used to publish account events.
Infrastructure-only module - no business logic.

Behavior:
- Client is created lazily on first use if REDIS_URL is configured
- None is returned when Redis is not configured (local dev)
"""
import logging
from typing import Optional

import redis.asyncio as redis

import config

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


async def get_redis_client() -> Optional[redis.Redis]:
    """
    Get or create the Redis client singleton.

    Returns:
        Redis client if REDIS_URL is configured, None otherwise.
    """
    global _redis_client

    if not config.REDIS_URL:
        return None

    if _redis_client is None:
        _redis_client = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        logger.info("Redis client created")
    return _redis_client


async def check_redis_health() -> bool:
    """
    PING Redis.

    Returns:
        True if Redis answered, False if not configured or unreachable.
    """
    client = await get_redis_client()
    if client is None:
        return False

    try:
        return bool(await client.ping())
    except redis.RedisError as e:
        logger.warning(f"REDIS_CONNECTION_FAILED error={type(e).__name__}: {str(e)[:100]}")
        return False


async def close_redis_client():
    """Close the Redis connection pool. Called on shutdown."""
    global _redis_client

    if _redis_client is not None:
        try:
            await _redis_client.aclose()
            logger.info("Redis client closed")
        finally:
            _redis_client = None
