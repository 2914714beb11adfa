"""
Redis caching utilities for slow external lookups (geocoding)
Caching is optional: without REDIS_URL, or with Redis down, every lookup misses
"""
import json
import logging
from typing import Any, Optional

import redis

from .config import REDIS_URL

logger = logging.getLogger(__name__)


def get_redis_client(redis_url: Optional[str] = REDIS_URL) -> Optional[redis.Redis]:
    """Create a Redis client from a URL, or None when no URL is configured"""
    if not redis_url:
        return None

    client = redis.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
    )
    client.ping()
    logger.info("✅ Redis cache connected")
    return client


class Cache:
    """Redis cache wrapper with automatic serialization"""

    def __init__(self, client: Optional[redis.Redis] = None, redis_url: Optional[str] = REDIS_URL):
        self.redis_client = client
        self.redis_url = redis_url
        self._unavailable = False

    def _get_client(self):
        """Lazy load Redis client"""
        if self.redis_client is None and not self._unavailable:
            try:
                self.redis_client = get_redis_client(self.redis_url)
            except redis.RedisError as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                self._unavailable = True
                return None
            if self.redis_client is None:
                self._unavailable = True
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
            if value:
                logger.debug(f"✅ Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"❌ Cache MISS: {key}")
            return None
        except redis.RedisError as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set value in cache with TTL (default 1 hour)"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.setex(key, ttl, json.dumps(value))
            logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
            return True
        except redis.RedisError as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        """Delete value from cache"""
        client = self._get_client()
        if not client:
            return False

        try:
            client.delete(key)
            logger.debug(f"✅ Cache DELETE: {key}")
            return True
        except redis.RedisError as e:
            logger.error(f"❌ Cache delete error for {key}: {e}")
            return False
