#!/usr/bin/env python3
"""
Champions Analytics - print visit statistics from the visit log.

Usage:
    python main.py                      # Snapshot for the last 24 hours
    python main.py --window 7d          # Last 7 days
    python main.py --profile simple     # Smaller dashboard caps
    python main.py --watch              # Keep printing on every new visit
    python main.py --json               # Machine-readable output
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from config import settings
from analytics.view import AggregationView, ViewConfig, ViewState, ViewUpdate
from db.mongodb import get_database, close_connection
from db.visit_repository import MongoVisitLog
from models.analytics import PROFILES, TimeWindow, get_profile


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def format_ranking(title: str, pairs) -> str:
    if not pairs:
        return f"{title}: -"
    items = ", ".join(f"{value} ({count})" for value, count in pairs)
    return f"{title}: {items}"


def format_update(update: ViewUpdate) -> str:
    """Render a view update as a plain-text report."""
    header = f"--- Visits ({update.config.window.value}, max {update.config.max_records}) ---"
    if update.state is ViewState.UNAVAILABLE:
        return f"{header}\nAnalytics unavailable: {update.error}"
    snapshot = update.snapshot
    if snapshot is None:
        return f"{header}\nLoading..."

    lines = [
        header,
        f"Total visits: {snapshot.total_visits}",
        f"Unique visitors: {snapshot.unique_visitors}",
        f"Bounce rate: {snapshot.bounce_rate}%",
        f"Returning visitors: {snapshot.returning_visitors}%",
        f"Avg load time: {snapshot.avg_load_time} ms",
        format_ranking("Devices", snapshot.device_data),
        format_ranking("Browsers", snapshot.browser_data),
        format_ranking("OS", snapshot.os_data),
        format_ranking("Connections", snapshot.connection_data),
        format_ranking("Screens", snapshot.screen_resolutions),
        format_ranking("Top pages", snapshot.top_pages),
        format_ranking("Top countries", snapshot.top_countries),
        format_ranking("Top cities", snapshot.top_cities),
        "",
        "Recent visits:",
    ]
    for visit in snapshot.recent_visits:
        when = visit.timestamp.strftime("%Y-%m-%d %H:%M") if visit.timestamp else "?"
        place = ", ".join(p for p in (visit.city, visit.country) if p) or "Unknown"
        device = visit.device.value if visit.device else "?"
        lines.append(f"  {when}  {visit.path}  {place}  {device}/{visit.browser or '?'}")
    return "\n".join(lines)


def emit(update: ViewUpdate, as_json: bool):
    if as_json:
        print(json.dumps(update.to_dict()), flush=True)
    else:
        print(format_update(update), flush=True)


async def run(window: TimeWindow, profile_name: str, limit: Optional[int], watch: bool, as_json: bool) -> int:
    db = await get_database(settings.mongodb_uri, settings.mongodb_db)
    if db is None:
        print("Error: MongoDB is not configured or unreachable (set MONGODB_URI)")
        return 1

    profile = get_profile(profile_name)
    config = ViewConfig(window=window, max_records=limit or profile.max_records)
    try:
        async with AggregationView(MongoVisitLog(db), config, profile) as view:
            if not watch:
                update = await view.wait_ready()
                emit(update, as_json)
                return 0 if update.state is ViewState.LIVE else 1

            async for update in view.updates():
                emit(update, as_json)
                if update.state is ViewState.UNAVAILABLE:
                    return 1
        return 0
    finally:
        await close_connection()


def main():
    parser = argparse.ArgumentParser(
        description="Show visit analytics for the Ethiopian Olympic Champions site"
    )
    parser.add_argument(
        "--window",
        choices=[w.value for w in TimeWindow],
        default=TimeWindow.LAST_DAY.value,
        help="Time window (default: %(default)s)",
    )
    parser.add_argument(
        "--profile",
        choices=sorted(PROFILES),
        default=settings.analytics_profile,
        help="Aggregation profile (default: %(default)s)",
    )
    parser.add_argument(
        "--limit",
        type=positive_int,
        help="Maximum number of visits in the slice (default: profile cap)",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Print a new report on every change",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print JSON instead of text",
    )

    args = parser.parse_args()
    logging.basicConfig(level=logging.WARNING)

    try:
        code = asyncio.run(run(TimeWindow(args.window), args.profile, args.limit, args.watch, args.json))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
