"""Backend transport and typed request helpers.

The transport speaks the Home Assistant websocket API: one authenticated
connection, JSON messages tagged with an incrementing ``id``, responses
matched back to their request by that id.  Concurrent requests share the
connection; a single reader task dispatches responses.

Every payload is validated against a pydantic schema at this boundary.
Remote failures, connection failures and schema mismatches all surface as
TransportError and are never retried here.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Optional, Protocol, TypeVar

import websockets
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from media_federation.domain.backend import (
    BackendEvent,
    EventSummary,
    RecordingSegment,
    RecordingSummary,
    RetainResult,
)
from media_federation.transport.errors import RetainError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Transport(Protocol):
    """Anything that can perform a validated backend request."""

    async def request(self, message: dict[str, Any], schema: TypeAdapter[T]) -> T:
        ...


# ── Websocket transport ──────────────────────────────────────────────────────


class WebSocketTransport:
    """Home Assistant websocket client shared by all federated requests.

    Args:
        url: Websocket endpoint, e.g. ``ws://homeassistant.local:8123/api/websocket``.
        access_token: Long-lived access token used for the auth handshake.
    """

    def __init__(self, url: str, access_token: str) -> None:
        self._url = url
        self._access_token = access_token
        self._connection: Any = None
        self._reader: asyncio.Task | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._connect_lock = asyncio.Lock()

    async def request(self, message: dict[str, Any], schema: TypeAdapter[T]) -> T:
        connection = await self._ensure_connected()
        message_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future

        try:
            await connection.send(json.dumps({"id": message_id, **message}))
            response = await future
        except (ConnectionClosed, WebSocketException) as exc:
            raise TransportError(f"Connection failed: {exc}", message) from exc
        finally:
            self._pending.pop(message_id, None)

        if not response.get("success", False):
            error = response.get("error") or {}
            raise TransportError(
                f"Request '{message.get('type')}' failed: "
                f"{error.get('message', 'unknown error')}",
                message,
            )

        try:
            return schema.validate_python(response.get("result"))
        except ValidationError as exc:
            logger.warning("Invalid payload for '%s': %s", message.get("type"), exc)
            raise TransportError(
                f"Request '{message.get('type')}' returned an invalid payload", message
            ) from exc

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def _ensure_connected(self) -> Any:
        async with self._connect_lock:
            if self._connection is not None:
                return self._connection
            try:
                connection = await websockets.connect(self._url)
            except (OSError, WebSocketException) as exc:
                raise TransportError(f"Unable to connect to {self._url}: {exc}") from exc

            try:
                await self._authenticate(connection)
            except TransportError:
                await connection.close()
                raise
            except (ValueError, WebSocketException) as exc:
                await connection.close()
                raise TransportError(f"Handshake with {self._url} failed: {exc}") from exc

            self._connection = connection
            self._reader = asyncio.create_task(self._read_loop(connection))
            logger.info("Connected to %s", self._url)
            return connection

    async def _authenticate(self, connection: Any) -> None:
        greeting = json.loads(await connection.recv())
        if greeting.get("type") != "auth_required":
            raise TransportError(f"Unexpected greeting: {greeting.get('type')}")
        await connection.send(
            json.dumps({"type": "auth", "access_token": self._access_token})
        )
        reply = json.loads(await connection.recv())
        if reply.get("type") != "auth_ok":
            raise TransportError("Authentication rejected")

    async def _read_loop(self, connection: Any) -> None:
        try:
            async for raw in connection:
                data = json.loads(raw)
                future = self._pending.get(data.get("id"))
                if future is not None and not future.done():
                    future.set_result(data)
        except ConnectionClosed as exc:
            logger.warning("Connection to %s closed: %s", self._url, exc)
        except ValueError as exc:
            logger.error("Malformed frame from %s, dropping connection: %s", self._url, exc)
        finally:
            self._connection = None
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(TransportError("Connection lost"))
            await connection.close()


# ── Native query shapes ──────────────────────────────────────────────────────


class NativeEventQuery(BaseModel):
    instance_id: str
    cameras: list[str] = Field(default_factory=list)
    labels: Optional[list[str]] = None
    zones: Optional[list[str]] = None
    sub_labels: Optional[list[str]] = None
    after: Optional[int] = Field(default=None, description="Epoch seconds")
    before: Optional[int] = Field(default=None, description="Epoch seconds")
    limit: Optional[int] = None
    has_clip: Optional[bool] = None
    has_snapshot: Optional[bool] = None
    favorites: Optional[bool] = None

    model_config = {"frozen": True}


class NativeRecordingSegmentsQuery(BaseModel):
    instance_id: str
    camera: str
    after: int = Field(..., description="Epoch seconds")
    before: int = Field(..., description="Epoch seconds")

    model_config = {"frozen": True}


# ── Request helpers ──────────────────────────────────────────────────────────

_EVENTS = TypeAdapter(list[BackendEvent])
_EVENT_SUMMARY = TypeAdapter(EventSummary)
_RECORDING_SUMMARY = TypeAdapter(RecordingSummary)
_RECORDING_SEGMENTS = TypeAdapter(list[RecordingSegment])
_RETAIN_RESULT = TypeAdapter(RetainResult)


async def get_events(transport: Transport, params: NativeEventQuery) -> list[BackendEvent]:
    """Search events on one instance.  May raise TransportError."""
    return await transport.request(
        {"type": "frigate/events/get", **params.model_dump(exclude_none=True)},
        _EVENTS,
    )


async def get_event_summary(
    transport: Transport,
    instance_id: str,
    timezone: str,
) -> EventSummary:
    """Per-day label/zone summary for one instance, relative to *timezone*."""
    return await transport.request(
        {
            "type": "frigate/events/summary",
            "instance_id": instance_id,
            "timezone": timezone,
        },
        _EVENT_SUMMARY,
    )


async def get_recordings_summary(
    transport: Transport,
    instance_id: str,
    camera_name: str,
    timezone: str,
) -> RecordingSummary:
    """Day/hour recording occupancy for one camera.

    Days and hours are relative to *timezone*, so the caller must pass the
    zone it will interpret them in.
    """
    return await transport.request(
        {
            "type": "frigate/recordings/summary",
            "instance_id": instance_id,
            "camera": camera_name,
            "timezone": timezone,
        },
        _RECORDING_SUMMARY,
    )


async def get_recording_segments(
    transport: Transport,
    params: NativeRecordingSegmentsQuery,
) -> list[RecordingSegment]:
    return await transport.request(
        {"type": "frigate/recordings/get", **params.model_dump()},
        _RECORDING_SEGMENTS,
    )


async def retain_event(
    transport: Transport,
    instance_id: str,
    event_id: str,
    retain: bool,
) -> None:
    """Ask the backend to (un)retain an event.

    Raises:
        RetainError: If the backend reports the request as unsuccessful.
        TransportError: If the request itself fails.
    """
    request = {
        "type": "frigate/event/retain",
        "instance_id": instance_id,
        "event_id": event_id,
        "retain": retain,
    }
    response = await transport.request(request, _RETAIN_RESULT)
    if not response.success:
        raise RetainError(request, response)
