"""Logical queries issued by the view layer.

Queries are immutable value objects: two queries with the same content are
equal, hash equally, and map onto the same cache key regardless of the
order in which their set-valued fields were built.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Iterable, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, Field, model_validator

from media_federation.domain.enums import QueryType


def _ensure_utc(v: datetime) -> datetime:
    # Naive datetimes from the UI are treated as UTC; aware ones are
    # converted so the same instant always serialises to the same key.
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


Instant = Annotated[datetime, AfterValidator(_ensure_utc)]


class _BaseQuery(BaseModel):
    camera_ids: frozenset[str] = Field(..., description="Target camera identifiers")

    model_config = {"frozen": True}

    def for_cameras(self, camera_ids: Iterable[str]):
        """Return a copy of this query narrowed to *camera_ids*."""
        return self.model_copy(update={"camera_ids": frozenset(camera_ids)})

    def canonical_key(self) -> str:
        """Stable serialisation used as a content-addressed cache key.

        Fields left unset are omitted and set-valued fields are sorted, so
        logically identical queries always produce the same key.
        """
        data: dict[str, Any] = self.model_dump(mode="json", exclude_none=True)
        for name, value in data.items():
            if isinstance(value, list):
                data[name] = sorted(value)
        return json.dumps(data, sort_keys=True, separators=(",", ":"))


class _TimeBoundedQuery(_BaseQuery):
    @model_validator(mode="after")
    def _ordered_bounds(self):
        start = getattr(self, "start", None)
        end = getattr(self, "end", None)
        if start is not None and end is not None and start > end:
            raise ValueError("start must not be after end")
        return self


class EventQuery(_TimeBoundedQuery):
    type: Literal["event"] = QueryType.EVENT.value
    start: Optional[Instant] = None
    end: Optional[Instant] = None
    limit: Optional[int] = Field(default=None, gt=0)
    what: Optional[frozenset[str]] = Field(default=None, description="Labels")
    where: Optional[frozenset[str]] = Field(default=None, description="Zones")
    tags: Optional[frozenset[str]] = Field(default=None, description="Sub labels")
    has_clip: Optional[bool] = None
    has_snapshot: Optional[bool] = None
    favorite: Optional[bool] = None


class RecordingQuery(_TimeBoundedQuery):
    type: Literal["recording"] = QueryType.RECORDING.value
    start: Optional[Instant] = None
    end: Optional[Instant] = None
    limit: Optional[int] = Field(default=None, gt=0)


class RecordingSegmentsQuery(_TimeBoundedQuery):
    type: Literal["recording-segments"] = QueryType.RECORDING_SEGMENTS.value
    start: Instant
    end: Instant


class MediaMetadataQuery(_BaseQuery):
    type: Literal["media-metadata"] = QueryType.MEDIA_METADATA.value


DataQuery = Annotated[
    Union[EventQuery, RecordingQuery, RecordingSegmentsQuery, MediaMetadataQuery],
    Field(discriminator="type"),
]
