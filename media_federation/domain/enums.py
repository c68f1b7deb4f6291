"""Controlled enumerations for the media-federation domain.

Every categorical field in the domain references an enum defined here.
Free-form strings are not used as discriminators.
"""

from __future__ import annotations

from enum import Enum


class QueryType(str, Enum):
    """The kind of logical query a caller may issue."""

    EVENT = "event"
    RECORDING = "recording"
    RECORDING_SEGMENTS = "recording-segments"
    MEDIA_METADATA = "media-metadata"


class QueryResultsType(str, Enum):
    """Tag carried by every query result so consumers can narrow it."""

    EVENT = "event"
    RECORDING = "recording"
    RECORDING_SEGMENTS = "recording-segments"
    MEDIA_METADATA = "media-metadata"


class Engine(str, Enum):
    """The backend family a result originated from."""

    FRIGATE = "frigate"


class MediaType(str, Enum):
    """Concrete view-level media kinds."""

    CLIP = "clip"
    SNAPSHOT = "snapshot"
    RECORDING = "recording"
