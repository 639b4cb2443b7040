"""Redis caching layer with same interface as memory cache."""

import logging
from typing import Optional

import redis.asyncio as redis_async

from models.geo import GeoLocation

logger = logging.getLogger(__name__)

GEO_KEY_PREFIX = "geo:"


class RedisGeoCacheManager:
    """Redis-backed cache with same interface as GeoCacheManager."""

    def __init__(self, ttl: int = 3600):
        self._redis = None
        self._connected = False
        self.ttl = ttl

    async def connect(self, redis_url: str) -> bool:
        """Connect to Redis. Returns True if successful."""
        try:
            self._redis = redis_async.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            # Test connection
            await self._redis.ping()
            self._connected = True
            logger.info("Connected to Redis cache")
            return True
        except Exception as e:
            logger.warning(f"Failed to connect to Redis: {e}")
            self._connected = False
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    async def get_location(self, ip: str) -> Optional[GeoLocation]:
        """Get a cached location for an IP."""
        if not self._connected:
            return None
        try:
            data = await self._redis.get(f"{GEO_KEY_PREFIX}{ip}")
            if not data:
                return None
            return GeoLocation.from_json(data)
        except Exception as e:
            logger.warning(f"Redis get_location error: {e}")
            return None

    async def set_location(self, ip: str, location: GeoLocation) -> None:
        """Cache a location for an IP."""
        if not self._connected:
            return
        try:
            await self._redis.setex(f"{GEO_KEY_PREFIX}{ip}", self.ttl, location.to_json())
        except Exception as e:
            logger.warning(f"Redis set_location error: {e}")

    async def get_stats(self) -> dict:
        """Get cache statistics for monitoring."""
        if not self._connected:
            return {"connected": False}
        try:
            info = await self._redis.info("keyspace")
            db_info = info.get("db0", {})
            return {
                "connected": True,
                "keys": db_info.get("keys", 0) if isinstance(db_info, dict) else 0,
            }
        except Exception as e:
            logger.warning(f"Redis get_stats error: {e}")
            return {"connected": False, "error": str(e)}
