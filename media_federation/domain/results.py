"""Query results: a tagged union narrowed by predicate helpers.

Every result carries the engine it came from, a ``type`` tag, the
payload, an expiry instant and a ``cached`` flag.  Consumers never use
isinstance on these; they narrow with the ``is_*_results`` predicates.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from media_federation.domain.backend import BackendEvent, RecordingSegment
from media_federation.domain.enums import Engine, QueryResultsType


class Recording(BaseModel):
    """One hour of recorded footage for one camera.

    The backend only records occupancy per hour, so a Recording always
    spans exactly one clock hour in the requested timezone.
    """

    camera_id: str
    start_time: datetime
    end_time: datetime
    events: int = Field(0, ge=0, description="Events observed within the hour")

    model_config = {"frozen": True}


class MediaMetadata(BaseModel):
    """Distinct filter values known to exist across the queried cameras."""

    what: Optional[frozenset[str]] = None
    where: Optional[frozenset[str]] = None
    days: Optional[frozenset[str]] = None
    tags: Optional[frozenset[str]] = None

    model_config = {"frozen": True}


class _BaseResults(BaseModel):
    engine: Engine = Engine.FRIGATE
    expiry: Optional[datetime] = None
    cached: bool = False

    model_config = {"frozen": True}

    def as_cached(self):
        """Copy of this result flagged as served from cache."""
        return self.model_copy(update={"cached": True})


class EventQueryResults(_BaseResults):
    type: Literal["event"] = QueryResultsType.EVENT.value
    instance_id: str
    events: list[BackendEvent] = Field(default_factory=list)


class RecordingQueryResults(_BaseResults):
    type: Literal["recording"] = QueryResultsType.RECORDING.value
    instance_id: str
    recordings: list[Recording] = Field(default_factory=list)


class RecordingSegmentsQueryResults(_BaseResults):
    type: Literal["recording-segments"] = QueryResultsType.RECORDING_SEGMENTS.value
    instance_id: str
    segments: list[RecordingSegment] = Field(default_factory=list)


class MediaMetadataQueryResults(_BaseResults):
    type: Literal["media-metadata"] = QueryResultsType.MEDIA_METADATA.value
    metadata: MediaMetadata = Field(default_factory=MediaMetadata)


QueryResults = Union[
    EventQueryResults,
    RecordingQueryResults,
    RecordingSegmentsQueryResults,
    MediaMetadataQueryResults,
]


def is_event_results(results: QueryResults) -> bool:
    return results.engine == Engine.FRIGATE and results.type == QueryResultsType.EVENT


def is_recording_results(results: QueryResults) -> bool:
    return results.engine == Engine.FRIGATE and results.type == QueryResultsType.RECORDING


def is_recording_segments_results(results: QueryResults) -> bool:
    return (
        results.engine == Engine.FRIGATE
        and results.type == QueryResultsType.RECORDING_SEGMENTS
    )


def is_media_metadata_results(results: QueryResults) -> bool:
    return (
        results.engine == Engine.FRIGATE
        and results.type == QueryResultsType.MEDIA_METADATA
    )
