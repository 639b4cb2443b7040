"""Analytics models: time windows, aggregation profiles and snapshots."""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from models.visit import VisitRecord

# Ranked (value, count) pairs, highest count first
Ranking = Tuple[Tuple[str, int], ...]


class TimeWindow(str, Enum):
    """Lower bound on visit timestamps for a dashboard view."""
    LAST_HOUR = "1h"
    LAST_DAY = "24h"
    LAST_WEEK = "7d"
    LAST_MONTH = "30d"
    ALL_TIME = "all"

    @property
    def delta(self) -> Optional[timedelta]:
        return {
            TimeWindow.LAST_HOUR: timedelta(hours=1),
            TimeWindow.LAST_DAY: timedelta(hours=24),
            TimeWindow.LAST_WEEK: timedelta(days=7),
            TimeWindow.LAST_MONTH: timedelta(days=30),
        }.get(self)


@dataclass(frozen=True)
class AggregationProfile:
    """Fixed caps for one dashboard variant.

    A cap of ``None`` leaves the breakdown untruncated.
    """
    name: str
    recent_limit: int
    max_records: int
    pages_limit: Optional[int]
    countries_limit: Optional[int]
    cities_limit: Optional[int]
    browsers_limit: Optional[int] = 6
    os_limit: Optional[int] = 8
    connections_limit: Optional[int] = 5
    screens_limit: Optional[int] = 5
    devices_limit: Optional[int] = None


RICH_PROFILE = AggregationProfile(
    name="rich",
    recent_limit=15,
    max_records=500,
    pages_limit=10,
    countries_limit=10,
    cities_limit=10,
)

SIMPLE_PROFILE = AggregationProfile(
    name="simple",
    recent_limit=10,
    max_records=100,
    pages_limit=5,
    countries_limit=5,
    cities_limit=5,
)

PROFILES: Dict[str, AggregationProfile] = {
    RICH_PROFILE.name: RICH_PROFILE,
    SIMPLE_PROFILE.name: SIMPLE_PROFILE,
}


def get_profile(name: str) -> AggregationProfile:
    """Look up a profile by name."""
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(f"Unknown aggregation profile: {name!r}") from None


@dataclass(frozen=True)
class AggregateSnapshot:
    """Derived statistics for one slice of the visit log."""
    total_visits: int
    unique_visitors: int
    recent_visits: Tuple[VisitRecord, ...]
    device_data: Ranking
    browser_data: Ranking
    os_data: Ranking
    connection_data: Ranking
    screen_resolutions: Ranking
    top_pages: Ranking
    top_countries: Ranking
    top_cities: Ranking
    avg_load_time: int
    bounce_rate: float
    returning_visitors: float

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the display layer. Rankings keep their order."""
        def ranking(pairs: Ranking):
            return [[value, count] for value, count in pairs]

        return {
            "totalVisits": self.total_visits,
            "uniqueVisitors": self.unique_visitors,
            "recentVisits": [v.to_dict() for v in self.recent_visits],
            "deviceData": ranking(self.device_data),
            "browserData": ranking(self.browser_data),
            "osData": ranking(self.os_data),
            "connectionData": ranking(self.connection_data),
            "screenResolutions": ranking(self.screen_resolutions),
            "topPages": ranking(self.top_pages),
            "topCountries": ranking(self.top_countries),
            "topCities": ranking(self.top_cities),
            "avgLoadTime": self.avg_load_time,
            "bounceRate": self.bounce_rate,
            "returningVisitors": self.returning_visitors,
        }
