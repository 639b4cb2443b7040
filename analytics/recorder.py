"""Visit recording: one VisitRecord per page view, appended to the visit log."""

import asyncio
import logging
from typing import Optional, Set, Union
from urllib.parse import urlparse

from cache import GeoCacheManager, RedisGeoCacheManager
from clients.geolocation import GeoLocationClient, is_public_ip
from db.visit_log import VisitLog
from models.geo import GeoLocation
from models.visit import DIRECT_REFERRER, PageView, VisitRecord
from utils.user_agent import classify_user_agent

logger = logging.getLogger(__name__)


def resolve_path(path: Optional[str], url: Optional[str]) -> str:
    """The route that was viewed: explicit path, else the URL's path, else ``/``."""
    if path:
        return path
    if url:
        parsed = urlparse(url).path
        if parsed:
            return parsed
    return "/"


class VisitRecorder:
    """Builds and appends visit records.

    Recording is fire-and-forget: ``record`` never raises, and a failed
    geolocation lookup only means the record has no location fields.
    """

    def __init__(
        self,
        log: VisitLog,
        geolocator: Optional[GeoLocationClient] = None,
        cache: Union[GeoCacheManager, RedisGeoCacheManager, None] = None,
    ):
        self.log = log
        self.geolocator = geolocator
        self.cache = cache
        self._pending: Set[asyncio.Task] = set()

    async def locate(self, ip: Optional[str]) -> Optional[GeoLocation]:
        """Best-effort location for an IP, served from cache when possible."""
        if self.geolocator is None or not is_public_ip(ip):
            return None

        if self.cache is not None:
            cached = await self.cache.get_location(ip)
            if cached is not None:
                return cached

        # requests is blocking; keep it off the event loop
        location = await asyncio.to_thread(self.geolocator.lookup, ip)
        if location is not None and self.cache is not None:
            await self.cache.set_location(ip, location)
        return location

    def build_record(self, view: PageView, location: Optional[GeoLocation] = None) -> VisitRecord:
        ua = classify_user_agent(view.user_agent)
        geo_fields = location.to_record_fields() if location else {}
        # the request's own address wins over whatever the lookup echoed back
        geo_fields.pop("ip", None)
        return VisitRecord(
            path=resolve_path(view.path, view.url),
            device=ua.device,
            browser=ua.browser,
            os=ua.os,
            ip=view.ip or None,
            referrer=view.referrer or DIRECT_REFERRER,
            connection_type=view.connection_type or None,
            screen_width=view.screen_width,
            screen_height=view.screen_height,
            load_time=view.load_time,
            **geo_fields,
        )

    async def record(self, view: PageView) -> bool:
        """Record one page view. Returns whether the append succeeded."""
        try:
            try:
                location = await self.locate(view.ip)
            except Exception as e:
                logger.warning(f"Geolocation failed for {view.ip}, recording without location: {e}")
                location = None

            record = self.build_record(view, location)
            if not await self.log.append(record):
                logger.warning(f"Visit to {record.path} was dropped")
                return False
            return True
        except Exception as e:
            logger.error(f"Failed to record visit: {e}")
            return False

    def record_in_background(self, view: PageView) -> asyncio.Task:
        """Schedule ``record`` without waiting for it."""
        task = asyncio.create_task(self.record(view))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for background recordings still in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
