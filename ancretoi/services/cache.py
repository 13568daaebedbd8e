"""
Redis Cache Service
===================

Redis caching layer for application data with connection management,
cache operations, and invalidation utilities.

Admin mutations call the ``CacheInvalidator`` hooks so list and detail
entries are refreshed on the next read.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio import Redis

from ancretoi.config import settings

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
        client = redis.from_url(
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
        # Force a real connection so the first request skips the handshake.
        await client.ping()
        _redis_client = client
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
        cache:{module}:{resource}:{identifier}:{optional_params}

    TTL Guidelines:
        - User auth lookup: 5 minutes (300s)
        - Public blog list / post: 5 minutes (300s)
        - Published programs catalogue: 15 minutes (900s)
    """

    # Default TTLs in seconds
    TTL_SHORT = 300  # 5 minutes
    TTL_MEDIUM = 900  # 15 minutes
    TTL_LONG = 1800  # 30 minutes
    TTL_HOUR = 3600  # 1 hour

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value if exists and valid, None otherwise
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

        Args:
            key: Cache key
            value: Value to cache (will be JSON serialized)
            ttl: Time to live in seconds (default 5 minutes)

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
    async def delete(key: str) -> bool:
        """
        Delete key from cache.

        Returns:
            True if key was deleted, False otherwise
        """
        try:
            client = await get_redis()
            result = await client.delete(key)
            return result > 0
        except Exception as e:
            logger.warning("Cache delete error for key %s: %s", key, e)
            return False

    @staticmethod
    async def delete_pattern(pattern: str) -> int:
        """
        Delete all keys matching a pattern.

        Args:
            pattern: Pattern with wildcards (e.g., "cache:blog:*")

        Returns:
            Number of keys deleted
        """
        try:
            client = await get_redis()
            keys = []

            async for key in client.scan_iter(match=pattern):
                keys.append(key)

            if keys:
                return await client.delete(*keys)
            return 0
        except Exception as e:
            logger.warning("Cache delete pattern error for %s: %s", pattern, e)
            return 0


# =============================================================================
# Cache Key Builders
# =============================================================================

class CacheKeys:
    """Cache key builders for consistent naming."""

    @staticmethod
    def user_auth(user_id: str) -> str:
        """Cached user auth lookup (see dependencies)."""
        return f"cache:user:auth:{user_id}"

    @staticmethod
    def blog_list(filters: str = "") -> str:
        """Public blog listing for one filter combination."""
        return f"cache:blog:list:{filters}"

    @staticmethod
    def blog_post(slug: str) -> str:
        """Public blog post detail."""
        return f"cache:blog:post:{slug}"

    @staticmethod
    def blog_categories() -> str:
        """Category list with post counts."""
        return "cache:blog:categories"

    @staticmethod
    def programs_published() -> str:
        """Published programs catalogue."""
        return "cache:programs:published"

    @staticmethod
    def program(slug: str) -> str:
        """Single program detail."""
        return f"cache:programs:detail:{slug}"


# =============================================================================
# Cache Invalidation Helpers
# =============================================================================

class CacheInvalidator:
    """Helpers for invalidating related cache entries."""

    @staticmethod
    async def on_user_change(user_id: str) -> None:
        """Invalidate caches when a user account changes."""
        await CacheManager.delete(CacheKeys.user_auth(user_id))

    @staticmethod
    async def on_post_change(slug: Optional[str] = None) -> None:
        """Invalidate blog caches when a post is created, edited or deleted."""
        await CacheManager.delete_pattern("cache:blog:list:*")
        await CacheManager.delete(CacheKeys.blog_categories())
        if slug:
            await CacheManager.delete(CacheKeys.blog_post(slug))

    @staticmethod
    async def on_category_change() -> None:
        """Invalidate caches when a category changes."""
        await CacheManager.delete(CacheKeys.blog_categories())
        await CacheManager.delete_pattern("cache:blog:list:*")

    @staticmethod
    async def on_program_change(slug: Optional[str] = None) -> None:
        """Invalidate caches when a program changes."""
        await CacheManager.delete(CacheKeys.programs_published())
        if slug:
            await CacheManager.delete(CacheKeys.program(slug))
