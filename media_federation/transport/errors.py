"""Errors raised at the transport boundary."""

from __future__ import annotations

from typing import Any


class TransportError(Exception):
    """A remote call failed or its payload did not match the expected schema."""

    def __init__(self, message: str, request: dict[str, Any] | None = None) -> None:
        self.request = request
        super().__init__(message)


class RetainError(Exception):
    """The backend explicitly refused to (un)retain an event."""

    def __init__(self, request: dict[str, Any], response: Any) -> None:
        self.request = request
        self.response = response
        super().__init__(
            f"Failed to {'retain' if request.get('retain') else 'unretain'} "
            f"event '{request.get('event_id')}'"
        )
