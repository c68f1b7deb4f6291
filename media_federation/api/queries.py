"""REST endpoints exposing the FederationEngine to the view layer.

Paths:
    POST /api/events
    POST /api/recordings
    POST /api/recording-segments
    POST /api/media-metadata
    POST /api/seek
    POST /api/retain

Each query endpoint accepts the logical query as its body and an optional
``use_cache`` query parameter.  Results come back as a list of
``{"query": ..., "result": ...}`` pairs; ``null`` means no sub-query ran.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from media_federation.cameras.store import CameraConfigStore
from media_federation.domain.media import ViewMedia
from media_federation.domain.queries import (
    EventQuery,
    MediaMetadataQuery,
    RecordingQuery,
    RecordingSegmentsQuery,
)
from media_federation.engine.federation import FederationEngine
from media_federation.transport.errors import RetainError, TransportError

logger = logging.getLogger(__name__)


class SeekRequest(BaseModel):
    media: ViewMedia
    target: datetime
    use_cache: bool = True


class RetainRequest(BaseModel):
    camera_id: str
    event_id: str
    retain: bool


def _pairs(results: dict | None) -> list[dict[str, Any]] | None:
    if results is None:
        return None
    return [
        {"query": query.model_dump(mode="json"), "result": result.model_dump(mode="json")}
        for query, result in results.items()
    ]


def create_query_router(engine: FederationEngine, store: CameraConfigStore) -> APIRouter:
    """Factory that wires the query endpoints to an engine and camera store."""

    router = APIRouter(prefix="/api", tags=["queries"])

    async def _run(operation, query, use_cache: bool) -> list[dict[str, Any]] | None:
        try:
            return _pairs(await operation(store, query, use_cache=use_cache))
        except TransportError as exc:
            logger.error("Backend request failed: %s", exc)
            raise HTTPException(status_code=504, detail=str(exc)) from exc

    @router.post("/events")
    async def events(query: EventQuery, use_cache: bool = True) -> Any:
        return await _run(engine.get_events, query, use_cache)

    @router.post("/recordings")
    async def recordings(query: RecordingQuery, use_cache: bool = True) -> Any:
        return await _run(engine.get_recordings, query, use_cache)

    @router.post("/recording-segments")
    async def recording_segments(query: RecordingSegmentsQuery, use_cache: bool = True) -> Any:
        return await _run(engine.get_recording_segments, query, use_cache)

    @router.post("/media-metadata")
    async def media_metadata(query: MediaMetadataQuery, use_cache: bool = True) -> Any:
        return await _run(engine.get_media_metadata, query, use_cache)

    @router.post("/seek")
    async def seek(request: SeekRequest) -> dict[str, Any]:
        try:
            seconds = await engine.get_media_seek_time(
                store, request.media, request.target, use_cache=request.use_cache
            )
        except TransportError as exc:
            raise HTTPException(status_code=504, detail=str(exc)) from exc
        return {"seek_seconds": seconds}

    @router.post("/retain")
    async def retain(request: RetainRequest) -> dict[str, Any]:
        try:
            await engine.retain(store, request.camera_id, request.event_id, request.retain)
        except RetainError as exc:
            logger.warning("Retain refused: %s (response=%s)", exc, exc.response)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except TransportError as exc:
            raise HTTPException(status_code=504, detail=str(exc)) from exc
        return {"status": "ok", "event_id": request.event_id, "retain": request.retain}

    return router
