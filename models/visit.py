"""Visit record model for the page-view log."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


DIRECT_REFERRER = "Direct"


class DeviceType(str, Enum):
    MOBILE = "Mobile"
    DESKTOP = "Desktop"
    TABLET = "Tablet"


def _str_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _number_or_none(value: Any) -> Optional[float]:
    # bool is an int subclass; a stray True is not a measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _int_or_none(value: Any) -> Optional[int]:
    number = _number_or_none(value)
    return int(number) if number is not None else None


@dataclass(frozen=True)
class VisitRecord:
    """One logged page view.

    Everything except ``path`` and ``timestamp`` is optional. Absent values
    stay ``None``; they are never filled with a placeholder.
    """
    path: Optional[str]
    timestamp: Optional[datetime] = None  # assigned by the log on append
    device: Optional[DeviceType] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    ip: Optional[str] = None
    referrer: Optional[str] = None
    connection_type: Optional[str] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    load_time: Optional[float] = None
    id: Optional[str] = None

    @property
    def screen_resolution(self) -> Optional[str]:
        """``"{width}x{height}"`` when both dimensions were reported."""
        if self.screen_width is None or self.screen_height is None:
            return None
        return f"{self.screen_width}x{self.screen_height}"

    def to_document(self) -> Dict[str, Any]:
        """Convert to a MongoDB document, omitting absent fields."""
        doc = {
            "path": self.path,
            "timestamp": self.timestamp,
            "device": self.device.value if self.device else None,
            "browser": self.browser,
            "os": self.os,
            "country": self.country,
            "countryCode": self.country_code,
            "city": self.city,
            "region": self.region,
            "ip": self.ip,
            "referrer": self.referrer,
            "connectionType": self.connection_type,
            "screenWidth": self.screen_width,
            "screenHeight": self.screen_height,
            "loadTime": self.load_time,
        }
        return {k: v for k, v in doc.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe representation for the display layer."""
        data = self.to_document()
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp.isoformat()
        if self.id is not None:
            data["id"] = self.id
        return data

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "VisitRecord":
        """Create from a stored document.

        Malformed fields are read as absent so one bad document can't break
        an aggregation pass.
        """
        device = doc.get("device")
        try:
            device = DeviceType(device) if device is not None else None
        except ValueError:
            device = None

        timestamp = doc.get("timestamp")
        if not isinstance(timestamp, datetime):
            timestamp = None

        doc_id = doc.get("_id")
        return cls(
            path=_str_or_none(doc.get("path")),
            timestamp=timestamp,
            device=device,
            browser=_str_or_none(doc.get("browser")),
            os=_str_or_none(doc.get("os")),
            country=_str_or_none(doc.get("country")),
            country_code=_str_or_none(doc.get("countryCode")),
            city=_str_or_none(doc.get("city")),
            region=_str_or_none(doc.get("region")),
            ip=_str_or_none(doc.get("ip")),
            referrer=_str_or_none(doc.get("referrer")),
            connection_type=_str_or_none(doc.get("connectionType")),
            screen_width=_int_or_none(doc.get("screenWidth")),
            screen_height=_int_or_none(doc.get("screenHeight")),
            load_time=_number_or_none(doc.get("loadTime")),
            id=str(doc_id) if doc_id is not None else None,
        )


@dataclass
class PageView:
    """Client-reported context for one page view, before classification."""
    path: Optional[str] = None
    url: Optional[str] = None
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    connection_type: Optional[str] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    load_time: Optional[float] = None
