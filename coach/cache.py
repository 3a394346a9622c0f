"""
Redis-backed cache for the coach.
Used to avoid re-reading today's recommendation more than once an hour.
A missing or unreachable Redis disables caching; it never fails a request.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis

from coach.settings import RECOMMENDATION_TTL

logger = logging.getLogger(__name__)

AI_ADVICE_PREFIX = "ai_advice"


def todays_advice_key(user_id: str, date: str) -> str:
    return f"{AI_ADVICE_PREFIX}:{user_id}:{date}"


class RedisCache:
    """JSON values with a TTL, stored in Redis."""

    def __init__(self, client: Optional[redis.Redis] = None, ttl_seconds: int = RECOMMENDATION_TTL):
        """Initialize cache.

        Args:
            client: Async Redis client, or None to run with caching disabled
            ttl_seconds: Time-to-live for cache entries (default: 1 hour)
        """
        self.client = client
        self.ttl = ttl_seconds

    @classmethod
    def from_url(cls, url: Optional[str], ttl_seconds: int = RECOMMENDATION_TTL) -> "RedisCache":
        if not url:
            logger.info("✗ REDIS_URL not set (caching disabled)")
            return cls(None, ttl_seconds)
        return cls(redis.from_url(url, decode_responses=True), ttl_seconds)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def get(self, key: str) -> Optional[Any]:
        """Cached value, or None if missing, expired or Redis is down."""
        if not self.enabled:
            return None
        try:
            value = await self.client.get(key)
            if value and isinstance(value, str):
                return json.loads(value)
            return None
        except (redis.RedisError, ValueError) as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None):
        """Store a JSON-serializable value."""
        if not self.enabled:
            return
        try:
            await self.client.setex(key, ttl or self.ttl, json.dumps(value, default=str))
        except (redis.RedisError, TypeError) as e:
            logger.warning(f"Cache set failed for {key}: {e}")

    async def delete(self, key: str):
        if not self.enabled:
            return
        try:
            await self.client.delete(key)
        except redis.RedisError as e:
            logger.warning(f"Cache delete failed for {key}: {e}")

    async def ping(self) -> bool:
        if not self.enabled:
            return False
        return bool(await self.client.ping())

    async def close(self):
        if self.enabled:
            await self.client.aclose()
