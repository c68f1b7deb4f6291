"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from media_federation.cameras.store import CameraConfig


class Settings(BaseSettings):
    app_name: str = "media-federation"
    log_level: str = "INFO"

    # Backend connection
    ws_url: str = "ws://localhost:8123/api/websocket"
    access_token: str = ""
    # Recording and event summaries are bucketed relative to this zone
    timezone: str = "UTC"

    # Cameras, e.g. MEDIAFED_CAMERAS='[{"id": "front", "instance_id": "frigate", "camera_name": "front_door"}]'
    cameras: list[CameraConfig] = []

    # Cache lifetimes
    event_cache_max_age_seconds: int = 60
    recording_summary_cache_max_age_seconds: int = 60
    media_metadata_cache_max_age_seconds: int = 60

    # Federation
    event_limit_default: int = 10000
    gc_cooldown_seconds: float = 60 * 60

    model_config = {"env_prefix": "MEDIAFED_"}


settings = Settings()
