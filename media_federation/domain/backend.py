"""Wire schemas for payloads returned by a backend instance.

These models validate at the transport boundary so the engine never has
to re-check field shapes.  Unknown fields are ignored because the backend
adds fields between releases.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class BackendEvent(BaseModel):
    """A single detection event as reported by the backend."""

    id: str = Field(..., min_length=1)
    camera: str = Field(..., description="Backend-native camera name")
    label: str
    sub_label: Optional[str] = Field(
        default=None,
        description="Comma-separated sub labels, e.g. recognised faces",
    )
    start_time: float = Field(..., description="Epoch seconds")
    end_time: Optional[float] = Field(
        default=None, description="Epoch seconds, absent while in progress"
    )
    top_score: Optional[float] = None
    zones: list[str] = Field(default_factory=list)
    has_clip: bool = False
    has_snapshot: bool = False
    retain_indefinitely: bool = False
    false_positive: Optional[bool] = None

    model_config = {"frozen": True, "extra": "ignore"}


class RecordingSegment(BaseModel):
    """A small time-bounded piece of recorded video."""

    id: str = Field(..., min_length=1)
    start_time: float = Field(..., description="Epoch seconds")
    end_time: float = Field(..., description="Epoch seconds")

    model_config = {"frozen": True, "extra": "ignore"}


class RecordingSummaryHour(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    events: int = Field(0, ge=0)
    duration: Optional[int] = None

    model_config = {"frozen": True, "extra": "ignore"}


class RecordingSummaryDay(BaseModel):
    """Per-day occupancy, relative to the timezone the caller requested."""

    day: date
    events: int = Field(0, ge=0)
    hours: list[RecordingSummaryHour] = Field(default_factory=list)

    model_config = {"frozen": True, "extra": "ignore"}


class EventSummaryEntry(BaseModel):
    """One row of the per-instance event summary."""

    camera: str
    day: str = Field(..., description="Calendar day, YYYY-MM-DD")
    label: str
    sub_label: Optional[str] = None
    zones: list[str] = Field(default_factory=list)
    count: int = Field(0, ge=0)

    model_config = {"frozen": True, "extra": "ignore"}


class RetainResult(BaseModel):
    success: bool
    message: Optional[str] = None

    model_config = {"frozen": True, "extra": "ignore"}


RecordingSummary = list[RecordingSummaryDay]
EventSummary = list[EventSummaryEntry]
