"""Camera configuration and the read-only store the engine consults.

A camera is identified by a caller-chosen ``id``.  The backend knows it
by ``(instance_id, camera_name)``; many cameras may share one instance.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

BIRDSEYE_CAMERA_NAME = "birdseye"


class CameraConfig(BaseModel):
    """Static configuration for one camera."""

    id: str = Field(..., min_length=1)
    title: Optional[str] = None
    instance_id: str = Field(..., min_length=1, description="Backend instance (client) id")
    camera_name: Optional[str] = Field(
        default=None, description="Backend-native camera name"
    )
    zones: Optional[list[str]] = Field(default=None, description="Default zone filter")
    labels: Optional[list[str]] = Field(default=None, description="Default label filter")

    model_config = {"frozen": True}

    @property
    def is_birdseye(self) -> bool:
        """Birdseye is a composite view, not a real camera with media."""
        return self.camera_name == BIRDSEYE_CAMERA_NAME

    @property
    def display_title(self) -> str:
        if self.title:
            return self.title
        if self.camera_name:
            return self.camera_name.replace("_", " ").title()
        return self.id


class CameraConfigStore:
    """Read-only lookup of camera configs by camera id."""

    def __init__(self, cameras: Iterable[CameraConfig] = ()) -> None:
        self._cameras: dict[str, CameraConfig] = {}
        for camera in cameras:
            if camera.id in self._cameras:
                raise ValueError(f"Duplicate camera id: {camera.id}")
            self._cameras[camera.id] = camera
        logger.info("Loaded %d camera config(s)", len(self._cameras))

    def get_camera_config(self, camera_id: str) -> CameraConfig | None:
        return self._cameras.get(camera_id)

    def get_camera_config_entries(self) -> Iterator[tuple[str, CameraConfig]]:
        return iter(self._cameras.items())

    def get_camera_configs(self, camera_ids: Iterable[str]) -> list[CameraConfig | None]:
        """Configs for *camera_ids* in the given order, ``None`` where unknown."""
        return [self._cameras.get(camera_id) for camera_id in camera_ids]

    @property
    def camera_ids(self) -> set[str]:
        return set(self._cameras)

    def __len__(self) -> int:
        return len(self._cameras)
