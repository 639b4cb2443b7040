"""IP geolocation client (ipapi.co compatible)."""

import ipaddress
import logging
from typing import Optional

import requests

from clients.base import BaseClient
from models.geo import GeoLocation

logger = logging.getLogger(__name__)


def is_public_ip(ip: Optional[str]) -> bool:
    """True for routable addresses worth looking up."""
    if not ip:
        return False
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (addr.is_private or addr.is_loopback or addr.is_link_local
                or addr.is_reserved or addr.is_multicast or addr.is_unspecified)


class GeoLocationClient(BaseClient):
    """Best-effort IP to location lookup.

    ``lookup`` returns ``None`` on any failure; it never raises for network
    or response errors and never retries.
    """

    DEFAULT_URL = "https://ipapi.co/{ip}/json/"
    # each lookup holds a worker thread until it returns
    REQUEST_TIMEOUT = 5.0

    def __init__(self, url_template: str = DEFAULT_URL, session: Optional[requests.Session] = None):
        super().__init__(session=session)
        self.url_template = url_template

    def lookup(self, ip: Optional[str]) -> Optional[GeoLocation]:
        """Look up an IP address. Private and malformed addresses are skipped."""
        if not is_public_ip(ip):
            return None

        try:
            response = self.get(self.url_template.format(ip=ip))
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Geolocation lookup failed for {ip}: {e}")
            return None

        # ipapi reports quota and reserved-range errors with a 200 status
        if not isinstance(data, dict) or data.get("error"):
            reason = data.get("reason") if isinstance(data, dict) else data
            logger.warning(f"Geolocation lookup rejected for {ip}: {reason}")
            return None

        return GeoLocation(
            ip=data.get("ip") or ip,
            city=data.get("city") or None,
            region=data.get("region") or None,
            country=data.get("country_name") or None,
            country_code=data.get("country_code") or data.get("country") or None,
        )
