"""
Redis caching layer for Relationship Service
"""
import redis.asyncio as redis
from typing import Any, List, Optional
import json
import logging

from .config import settings

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis cache for relationship queries and account stats"""

    def __init__(self):
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        if not settings.REDIS_ENABLED:
            logger.info("Redis caching is disabled")
            return

        try:
            self.redis = await redis.from_url(
                f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}",
                password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                encoding="utf-8",
                decode_responses=True,
            )
            # Test connection
            await self.redis.ping()
            logger.info("Connected to Redis successfully")
        except Exception as e:
            logger.warning(f"Failed to connect to Redis: {e}. Continuing without cache.")
            self.redis = None

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.close()
            logger.info("Disconnected from Redis")

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        if not self.redis:
            return None

        try:
            value = await self.redis.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            logger.error(f"Error getting cache key {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 300):
        """Set value in cache with TTL"""
        if not self.redis:
            return

        try:
            await self.redis.setex(key, ttl, json.dumps(value))
        except Exception as e:
            logger.error(f"Error setting cache key {key}: {e}")

    # Relationship-specific cache methods
    #
    # Entries are tagged with the invalidation generation of the accounts they
    # describe, read before the store. A read that raced a write stores an
    # entry with the old generation, which later lookups ignore.
    def _relationship_key(self, account_id: str, other_account_id: str) -> str:
        """Generate cache key for a relationship query"""
        return f"relationship:pair:{account_id}:{other_account_id}"

    def _stats_key(self, account_id: str) -> str:
        """Generate cache key for account stats"""
        return f"relationship:stats:{account_id}"

    def _generation_key(self, account_id: str) -> str:
        return f"relationship:gen:{account_id}"

    async def generation(self, *account_ids: str) -> Optional[List[int]]:
        """Get the invalidation counters of the accounts, None without Redis"""
        if not self.redis:
            return None

        try:
            values = await self.redis.mget([self._generation_key(i) for i in account_ids])
            return [int(v or 0) for v in values]
        except Exception as e:
            logger.error(f"Error reading cache generation for {account_ids}: {e}")
            return None

    async def _get_current(self, key: str, generation: Optional[List[int]]) -> Optional[dict]:
        if generation is None:
            return None
        entry = await self.get(key)
        if not entry or entry.get("generation") != generation:
            return None
        return entry.get("value")

    async def _set_current(self, key: str, value: dict, generation: Optional[List[int]], ttl: int):
        if generation is None:
            return
        await self.set(key, {"generation": generation, "value": value}, ttl)

    async def get_relationship(
        self, account_id: str, other_account_id: str, generation: Optional[List[int]]
    ) -> Optional[dict]:
        """Get cached relationship"""
        return await self._get_current(self._relationship_key(account_id, other_account_id), generation)

    async def set_relationship(
        self,
        account_id: str,
        other_account_id: str,
        relationship: dict,
        generation: Optional[List[int]],
    ):
        """Cache relationship"""
        await self._set_current(
            self._relationship_key(account_id, other_account_id),
            relationship,
            generation,
            settings.CACHE_TTL_RELATIONSHIP,
        )

    async def get_stats(self, account_id: str, generation: Optional[List[int]]) -> Optional[dict]:
        """Get cached account stats"""
        return await self._get_current(self._stats_key(account_id), generation)

    async def set_stats(self, account_id: str, stats: dict, generation: Optional[List[int]]):
        """Cache account stats"""
        await self._set_current(self._stats_key(account_id), stats, generation, settings.CACHE_TTL_STATS)

    async def invalidate_pair(self, account_id: str, other_account_id: str):
        """Invalidate everything a mutation between two accounts can change"""
        if not self.redis:
            return

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(self._generation_key(account_id))
                pipe.incr(self._generation_key(other_account_id))
                pipe.delete(
                    self._relationship_key(account_id, other_account_id),
                    self._relationship_key(other_account_id, account_id),
                    self._stats_key(account_id),
                    self._stats_key(other_account_id),
                )
                await pipe.execute()
        except Exception as e:
            logger.error(f"Error invalidating cache for {account_id} and {other_account_id}: {e}")


# Global cache instance
cache = RedisCache()


async def get_cache() -> RedisCache:
    """Dependency for getting cache instance"""
    return cache
