# backend/core/cache.py

"""
Cache backends for analytics results.

Values are JSON strings. The in-memory backend serves single-process
deployments and tests; the Redis backend is used when REDIS_URL is set so
several workers share the same results.
"""

from typing import Optional
from datetime import datetime, timedelta
import logging

from redis import asyncio as aioredis

from core.config import get_settings

logger = logging.getLogger(__name__)


class CacheService:
    """Simple in-memory cache implementation"""

    def __init__(self):
        self._cache = {}
        self._expiry = {}

    async def get(self, key: str) -> Optional[str]:
        """Get value from cache"""
        if key in self._cache:
            if key in self._expiry:
                if datetime.utcnow() > self._expiry[key]:
                    # Expired, remove it
                    del self._cache[key]
                    del self._expiry[key]
                    return None
            return self._cache[key]
        return None

    async def set(self, key: str, value: str, ttl: int = 300) -> None:
        """Set value in cache with TTL in seconds"""
        self._cache[key] = value
        self._expiry[key] = datetime.utcnow() + timedelta(seconds=ttl)
        logger.debug(f"Cached key: {key} with TTL: {ttl}s")

    async def delete(self, key: str) -> None:
        """Delete key from cache"""
        self._cache.pop(key, None)
        self._expiry.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a prefix pattern ending in '*'"""
        if pattern.endswith("*"):
            prefix = pattern[:-1]
            keys_to_delete = [k for k in self._cache.keys() if k.startswith(prefix)]
        else:
            keys_to_delete = [k for k in self._cache.keys() if k == pattern]

        for key in keys_to_delete:
            await self.delete(key)

        logger.debug(f"Deleted {len(keys_to_delete)} keys matching pattern: {pattern}")
        return len(keys_to_delete)

    def clear(self) -> None:
        """Clear entire cache"""
        self._cache.clear()
        self._expiry.clear()


class RedisCacheService:
    """Redis-backed cache with the same interface as CacheService"""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._redis: Optional[aioredis.Redis] = None

    def get_redis(self) -> aioredis.Redis:
        """Get or create Redis connection"""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.redis_url, encoding="utf-8", decode_responses=True
            )
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        return await self.get_redis().get(key)

    async def set(self, key: str, value: str, ttl: int = 300) -> None:
        await self.get_redis().setex(key, ttl, value)
        logger.debug(f"Cached key in Redis: {key} with TTL: {ttl}s")

    async def delete(self, key: str) -> None:
        await self.get_redis().delete(key)

    async def delete_pattern(self, pattern: str) -> int:
        redis = self.get_redis()
        count = 0
        async for key in redis.scan_iter(match=pattern):
            await redis.delete(key)
            count += 1
        logger.debug(f"Deleted {count} Redis keys matching pattern: {pattern}")
        return count

    async def close(self) -> None:
        """Close Redis connection"""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_cache_service():
    """Pick the cache backend from settings"""
    settings = get_settings()
    if settings.redis_enabled:
        logger.info("Using Redis cache backend")
        return RedisCacheService(settings.redis_url)
    return CacheService()


# Global cache instance
cache_service = create_cache_service()
