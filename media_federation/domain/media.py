"""View-level media objects projected from query results."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from media_federation.domain.backend import BackendEvent
from media_federation.domain.enums import MediaType
from media_federation.domain.results import Recording
from media_federation.foundation.clock import from_unix


class ViewMedia(BaseModel):
    """Something the view layer can display for one camera."""

    media_type: MediaType
    camera_id: str
    instance_id: str
    media_id: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    title: str = ""
    favorite: bool = False
    tags: list[str] = Field(default_factory=list)

    def set_favorite(self, favorite: bool) -> None:
        self.favorite = favorite


def event_media(
    media_type: MediaType,
    camera_id: str,
    instance_id: str,
    event: BackendEvent,
    tags: Optional[list[str]] = None,
) -> ViewMedia:
    """Build clip or snapshot media for a backend event."""
    return ViewMedia(
        media_type=media_type,
        camera_id=camera_id,
        instance_id=instance_id,
        media_id=event.id,
        start_time=from_unix(event.start_time),
        end_time=from_unix(event.end_time) if event.end_time is not None else None,
        title=f"{event.label} {round((event.top_score or 0) * 100)}%",
        favorite=event.retain_indefinitely,
        tags=tags or [],
    )


def recording_media(
    camera_id: str,
    instance_id: str,
    recording: Recording,
    camera_title: str,
) -> ViewMedia:
    """Build hour-long recording media."""
    return ViewMedia(
        media_type=MediaType.RECORDING,
        camera_id=camera_id,
        instance_id=instance_id,
        media_id=f"{camera_id}-{recording.start_time.isoformat()}",
        start_time=recording.start_time,
        end_time=recording.end_time,
        title=f"{camera_title} {recording.start_time:%Y-%m-%d %H:%M}",
    )


def is_event_media(media: ViewMedia) -> bool:
    return media.media_type in (MediaType.CLIP, MediaType.SNAPSHOT)


def is_recording_media(media: ViewMedia) -> bool:
    return media.media_type == MediaType.RECORDING


def is_clip(media: ViewMedia) -> bool:
    return media.media_type == MediaType.CLIP


class CameraEndpoint(BaseModel):
    endpoint: str
    sign: bool = False

    model_config = {"frozen": True}


class MediaCapabilities(BaseModel):
    can_favorite: bool = False
    can_download: bool = False

    model_config = {"frozen": True}
