"""
Redis Cache Service
===================

Redis caching layer with connection management, cache operations,
and key builders.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio import Redis

from nutrilytics.config import settings

logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """
    Initialize Redis connection pool and pre-warm a connection.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
            socket_keepalive=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        await _redis_client.ping()
        logger.info("Redis connection established")

    return _redis_client


async def get_redis() -> Redis:
    """Get Redis client, initializing if necessary."""
    if _redis_client is None:
        return await init_redis()

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")


class CacheManager:
    """
    Redis cache manager with common operations.

    Key naming convention:
        cache:{module}:{resource}:{identifier}

    TTL Guidelines:
        - Premium status: 1 hour freshness, kept for a day as a fallback
        - Webhook event ids: 7 days
    """

    # Default TTLs in seconds
    TTL_SHORT = 300  # 5 minutes
    TTL_HOUR = 3600  # 1 hour
    TTL_DAY = 86400  # 24 hours
    TTL_WEEK = 604800  # 7 days

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value if exists, None otherwise (including on Redis errors)
        """
        try:
            client = await get_redis()
            value = await client.get(key)

            if value is None:
                return None

            return json.loads(value)
        except Exception as e:
            logger.warning("Cache get error for key %s: %s", key, e)
            return None

    @staticmethod
    async def set(
        key: str,
        value: Any,
        ttl: int = TTL_SHORT,
    ) -> bool:
        """
        Set value in cache with TTL.

        Returns:
            True if successful, False otherwise
        """
        try:
            client = await get_redis()
            serialized = json.dumps(value, default=str)
            await client.setex(key, ttl, serialized)
            return True
        except Exception as e:
            logger.warning("Cache set error for key %s: %s", key, e)
            return False

    @staticmethod
    async def exists(key: str) -> bool:
        """Check if key exists in cache."""
        try:
            client = await get_redis()
            return await client.exists(key) > 0
        except Exception as e:
            logger.warning("Cache exists error for key %s: %s", key, e)
            return False


# =============================================================================
# Cache Key Builders
# =============================================================================

class CacheKeys:
    """Cache key builders for consistent naming."""

    @staticmethod
    def premium_status(user_id: str) -> str:
        """Local status cache entry: ``{is_premium, cached_at}``."""
        return f"cache:subscription:premium:{user_id}"

    @staticmethod
    def webhook_event(event_id: str) -> str:
        """Processed RevenueCat event id marker."""
        return f"webhook:revenuecat:{event_id}"

