"""Snapshot computation over a slice of the visit log.

``compute_snapshot`` is a pure function of its input: the same slice always
produces an equal snapshot. All breakdowns skip records where the field is
absent rather than counting them under a placeholder.
"""

import math
from collections import Counter
from typing import Dict, Optional, Sequence

from models.analytics import AggregateSnapshot, AggregationProfile, Ranking, RICH_PROFILE
from models.visit import DIRECT_REFERRER, VisitRecord

BREAKDOWN_FIELDS = ("device", "browser", "os", "connection", "screen", "page", "country", "city")


def rank(counts: Counter, limit: Optional[int] = None) -> Ranking:
    """Order counted values by count, highest first.

    Ties keep the order in which each value was first counted.
    """
    # Counter preserves insertion order and sorted() is stable
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    if limit is not None:
        ranked = ranked[:limit]
    return tuple(ranked)


def percentage(part: int, total: int) -> float:
    """``part / total`` as a percentage, one decimal place, halves rounded up."""
    if total == 0:
        return 0.0
    return math.floor(part * 1000 / total + 0.5) / 10


def _field_values(visit: VisitRecord) -> Dict[str, Optional[str]]:
    return {
        "device": visit.device.value if visit.device else None,
        "browser": visit.browser,
        "os": visit.os,
        "connection": visit.connection_type,
        "screen": visit.screen_resolution,
        "page": visit.path,
        "country": visit.country,
        "city": visit.city,
    }


def compute_snapshot(visits: Sequence[VisitRecord],
                     profile: AggregationProfile = RICH_PROFILE) -> AggregateSnapshot:
    """Compute every dashboard statistic for one slice (newest first).

    Bounce and returning-visitor rates are slice-local heuristics: the first
    record always counts as a bounce, as does every record with a "Direct"
    referrer, and a visit is "returning" when its IP already appeared earlier
    in the slice.
    """
    visits = list(visits)
    total = len(visits)

    counters = {name: Counter() for name in BREAKDOWN_FIELDS}
    seen_ips = set()
    returning = 0
    bounces = 0
    load_time_sum = 0.0
    load_time_count = 0

    for index, visit in enumerate(visits):
        for name, value in _field_values(visit).items():
            if value is not None:
                counters[name][value] += 1

        if visit.ip:
            if visit.ip in seen_ips:
                returning += 1
            else:
                seen_ips.add(visit.ip)

        if index == 0 or visit.referrer == DIRECT_REFERRER:
            bounces += 1

        if visit.load_time is not None:
            load_time_sum += visit.load_time
            load_time_count += 1

    avg_load_time = 0
    if load_time_count:
        # half up, not banker's rounding
        avg_load_time = int(math.floor(load_time_sum / load_time_count + 0.5))

    return AggregateSnapshot(
        total_visits=total,
        unique_visitors=len(seen_ips),
        recent_visits=tuple(visits[:profile.recent_limit]),
        device_data=rank(counters["device"], profile.devices_limit),
        browser_data=rank(counters["browser"], profile.browsers_limit),
        os_data=rank(counters["os"], profile.os_limit),
        connection_data=rank(counters["connection"], profile.connections_limit),
        screen_resolutions=rank(counters["screen"], profile.screens_limit),
        top_pages=rank(counters["page"], profile.pages_limit),
        top_countries=rank(counters["country"], profile.countries_limit),
        top_cities=rank(counters["city"], profile.cities_limit),
        avg_load_time=avg_load_time,
        bounce_rate=percentage(bounces, total),
        returning_visitors=percentage(returning, total),
    )
