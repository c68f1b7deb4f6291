"""media-federation: range-aware caching and federation of camera media queries.

This is the application entry point.  It wires the camera store, the
backend transport, the caches, the FederationEngine and the REST
endpoints together.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from media_federation.api.queries import create_query_router
from media_federation.cache.request_cache import RequestCache
from media_federation.cache.segments import RecordingSegmentsCache
from media_federation.cameras.store import CameraConfigStore
from media_federation.config import settings
from media_federation.engine.federation import CacheLifetimes, FederationEngine
from media_federation.transport.requests import WebSocketTransport

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

# ── State ────────────────────────────────────────────────────────────────────

store = CameraConfigStore(settings.cameras)
transport = WebSocketTransport(settings.ws_url, settings.access_token)
segments_cache = RecordingSegmentsCache()
request_cache = RequestCache()

engine = FederationEngine(
    transport,
    segments_cache=segments_cache,
    request_cache=request_cache,
    lifetimes=CacheLifetimes(
        event=timedelta(seconds=settings.event_cache_max_age_seconds),
        recording_summary=timedelta(seconds=settings.recording_summary_cache_max_age_seconds),
        media_metadata=timedelta(seconds=settings.media_metadata_cache_max_age_seconds),
    ),
    timezone=settings.timezone,
    event_limit_default=settings.event_limit_default,
    gc_cooldown=settings.gc_cooldown_seconds,
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    await transport.close()


# ── App ──────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.app_name,
    description="Range-aware caching and multi-instance federation of camera media queries",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(create_query_router(engine, store))


# ── Health ───────────────────────────────────────────────────────────────────

@app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "cameras": len(store),
        "cached_results": len(request_cache),
        "cached_segments": segments_cache.get_size(),
        "cached_segment_cameras": len(segments_cache.get_camera_ids()),
    }
