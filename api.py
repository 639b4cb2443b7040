#!/usr/bin/env python3
"""
Champions Analytics API - visit tracking and live analytics for the admin dashboard.

Run with: uvicorn api:app --reload
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, HTTPException, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from config import settings
from analytics.recorder import VisitRecorder
from analytics.view import AggregationView, ViewConfig, ViewState
from cache import init_cache, close_cache, get_cache, get_cache_backend_name
from clients.geolocation import GeoLocationClient
from db.mongodb import get_database, close_connection, init_indexes, check_connection
from db.visit_log import MemoryVisitLog, VisitLog
from db.visit_repository import MongoVisitLog
from models.analytics import PROFILES, TimeWindow, get_profile
from models.visit import PageView

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Admin configuration
ADMIN_ACCESS_KEY = settings.admin_access_key
admin_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)

PROFILE = get_profile(settings.analytics_profile)
MAX_RECORDS_LIMIT = 1000
SNAPSHOT_TIMEOUT_SECONDS = 10.0

# Global instances (set during startup)
visit_log: Optional[VisitLog] = None
recorder: Optional[VisitRecorder] = None


def verify_admin_key(request: Request, header_key: Optional[str] = None) -> bool:
    """Verify admin access key from header, query param or cookie."""
    key = header_key or request.query_params.get("key") or request.cookies.get("admin_key")
    return key == ADMIN_ACCESS_KEY and ADMIN_ACCESS_KEY != ""


def require_admin(request: Request, header_key: Optional[str] = Depends(admin_header)) -> None:
    if not verify_admin_key(request, header_key):
        raise HTTPException(status_code=403, detail="Admin access required")


def get_client_ip(request: Request) -> Optional[str]:
    """Client address, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def view_config(window: TimeWindow, limit: Optional[int]) -> ViewConfig:
    max_records = limit or settings.analytics_max_records or PROFILE.max_records
    return ViewConfig(window=window, max_records=max_records)


def get_visit_log() -> VisitLog:
    if visit_log is None:
        raise HTTPException(status_code=503, detail="Visit log not initialized")
    return visit_log


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect to MongoDB and the geolocation cache on startup."""
    global visit_log, recorder
    db = await get_database(settings.mongodb_uri, settings.mongodb_db)
    if db is not None:
        await init_indexes(db)
        visit_log = MongoVisitLog(db)
        logger.info("MongoDB visit log initialized")
    else:
        visit_log = MemoryVisitLog()
        logger.warning("Running without MongoDB - visits are kept in memory only")

    cache = await init_cache(settings.redis_url, ttl=settings.geo_cache_ttl_seconds)
    geolocator = GeoLocationClient(settings.geolocation_url)
    recorder = VisitRecorder(visit_log, geolocator, cache)
    yield
    await recorder.drain()
    geolocator.close()
    await close_cache()
    await close_connection()
    recorder = None
    visit_log = None


app = FastAPI(
    title="Champions Analytics API",
    description="Visit tracking and live analytics for the Ethiopian Olympic Champions site",
    version="1.0.0",
    lifespan=lifespan,
)

# Enable CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class VisitPayload(BaseModel):
    path: Optional[str] = None
    url: Optional[str] = None
    referrer: Optional[str] = None
    userAgent: Optional[str] = None
    connectionType: Optional[str] = None
    screenWidth: Optional[int] = Field(None, ge=0)
    screenHeight: Optional[int] = Field(None, ge=0)
    loadTime: Optional[float] = Field(None, ge=0)


# ========== TRACKING ==========

@app.post("/api/visits", status_code=202)
async def track_visit(request: Request, payload: VisitPayload):
    """Record a page view. Returns immediately; the write happens in the background."""
    if recorder is None:
        # never fail the visitor's page over analytics
        logger.warning("Visit received before recorder was initialized")
        return {"ok": False}

    view = PageView(
        path=payload.path,
        url=payload.url,
        referrer=payload.referrer,
        user_agent=payload.userAgent or request.headers.get("User-Agent"),
        ip=get_client_ip(request),
        connection_type=payload.connectionType,
        screen_width=payload.screenWidth,
        screen_height=payload.screenHeight,
        load_time=payload.loadTime,
    )
    recorder.record_in_background(view)
    return {"ok": True}


# ========== ANALYTICS (ADMIN) ==========

@app.get("/api/analytics", dependencies=[Depends(require_admin)])
async def get_analytics(
    window: TimeWindow = Query(TimeWindow.LAST_DAY, description="Time window"),
    limit: Optional[int] = Query(None, ge=1, le=MAX_RECORDS_LIMIT, description="Max visits in the slice"),
):
    """Current snapshot for a time window."""
    async with AggregationView(get_visit_log(), view_config(window, limit), PROFILE) as view:
        try:
            update = await view.wait_ready(timeout=SNAPSHOT_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            raise HTTPException(status_code=503, detail="Analytics are still loading")

    if update.state is ViewState.UNAVAILABLE:
        raise HTTPException(status_code=503, detail="Analytics are unavailable")
    return update.to_dict()


@app.get("/api/analytics/stream", dependencies=[Depends(require_admin)])
async def stream_analytics(
    request: Request,
    window: TimeWindow = Query(TimeWindow.LAST_DAY, description="Time window"),
    limit: Optional[int] = Query(None, ge=1, le=MAX_RECORDS_LIMIT, description="Max visits in the slice"),
):
    """Server-Sent Events: one event per snapshot or state change."""
    view = AggregationView(get_visit_log(), view_config(window, limit), PROFILE)

    async def events():
        try:
            view.start()
            async for update in view.updates():
                if await request.is_disconnected():
                    break
                yield f"data: {json.dumps(update.to_dict())}\n\n"
        finally:
            view.dispose()

    return StreamingResponse(events(), media_type="text/event-stream")


@app.get("/api/analytics/windows")
async def list_windows():
    """Supported time windows and aggregation profiles."""
    return {
        "windows": [w.value for w in TimeWindow],
        "default": TimeWindow.LAST_DAY.value,
        "profile": PROFILE.name,
        "profiles": sorted(PROFILES),
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    mongodb_connected = await check_connection() if isinstance(visit_log, MongoVisitLog) else False

    cache_mgr = get_cache()
    cache_stats = cache_mgr.get_stats() if cache_mgr is not None else None
    if asyncio.iscoroutine(cache_stats):
        cache_stats = await cache_stats

    return {
        "status": "healthy",
        "visit_log": visit_log.name if visit_log is not None else None,
        "mongodb_connected": mongodb_connected,
        "cache_backend": get_cache_backend_name(),
        "cache_stats": cache_stats,
        "profile": PROFILE.name,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
