"""Cache management module."""
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from geosearch.config import settings
from geosearch.logger import logger


class CacheManager:
    """A class to manage the Redis cache."""
    def __init__(self, redis_url: str = settings.REDIS_URL):
        """Initialize the CacheManager."""
        self.redis_url = redis_url
        self.redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        """Get a value from the cache. A Redis failure counts as a miss."""
        try:
            return await self.redis.get(key)
        except RedisError as e:
            logger.warning("Cache read failed for {key}: {error}", key=key, error=e)
            return None

    async def set(self, key: str, value: str, expire: int = settings.CACHE_TTL_SECONDS):
        """Set a value in the cache."""
        try:
            await self.redis.set(key, value, ex=expire)
        except RedisError as e:
            logger.warning("Cache write failed for {key}: {error}", key=key, error=e)

    async def close(self):
        """Close the Redis connection."""
        await self.redis.aclose()

cache_manager = CacheManager()
