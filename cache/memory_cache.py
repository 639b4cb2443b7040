"""In-memory caching layer using cachetools TTLCache."""

import asyncio
from typing import Dict, Optional

from cachetools import TTLCache

from models.geo import GeoLocation


class GeoCacheManager:
    """Caches successful geolocation lookups per IP address."""

    def __init__(self, maxsize: int = 5000, ttl: int = 3600):
        self._geo_cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._geo_lock = asyncio.Lock()

    async def get_location(self, ip: str) -> Optional[GeoLocation]:
        """Get a cached location for an IP."""
        async with self._geo_lock:
            return self._geo_cache.get(ip)

    async def set_location(self, ip: str, location: GeoLocation) -> None:
        """Cache a location for an IP."""
        async with self._geo_lock:
            self._geo_cache[ip] = location

    def get_stats(self) -> Dict[str, Dict[str, int]]:
        """Get cache statistics for monitoring."""
        return {
            "geo": {
                "size": len(self._geo_cache),
                "maxsize": self._geo_cache.maxsize,
            },
        }

