"""Cache package for geolocation lookups."""

import logging
from typing import Optional, Union

from cache.memory_cache import GeoCacheManager
from cache.redis_cache import RedisGeoCacheManager

logger = logging.getLogger(__name__)

# Cache manager instance - will be set at startup
_cache_manager: Union[GeoCacheManager, RedisGeoCacheManager, None] = None


async def init_cache(redis_url: Optional[str] = None, ttl: int = 3600) -> Union[GeoCacheManager, RedisGeoCacheManager]:
    """Initialize cache manager.

    If a Redis URL is given, attempts a Redis connection.
    Falls back to in-memory cache if Redis is unavailable.
    """
    global _cache_manager

    if redis_url:
        redis_cache = RedisGeoCacheManager(ttl=ttl)
        if await redis_cache.connect(redis_url):
            _cache_manager = redis_cache
            logger.info("Using Redis cache backend")
            return redis_cache
        logger.warning("Redis connection failed, falling back to memory cache")

    _cache_manager = GeoCacheManager(ttl=ttl)
    logger.info("Using in-memory cache backend")
    return _cache_manager


async def close_cache() -> None:
    """Close cache connections."""
    global _cache_manager
    if isinstance(_cache_manager, RedisGeoCacheManager):
        await _cache_manager.close()
    _cache_manager = None


def get_cache() -> Union[GeoCacheManager, RedisGeoCacheManager, None]:
    """Get the active cache manager, or None before ``init_cache``."""
    return _cache_manager


def get_cache_backend_name() -> str:
    """Get the name of the active cache backend."""
    if isinstance(_cache_manager, RedisGeoCacheManager) and _cache_manager.is_connected():
        return "redis"
    return "memory"


__all__ = [
    "GeoCacheManager",
    "RedisGeoCacheManager",
    "init_cache",
    "close_cache",
    "get_cache",
    "get_cache_backend_name",
]
