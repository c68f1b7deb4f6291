"""Timezone-aware clock utilities.

All instants in media-federation are UTC-aware datetimes.  This module is
the single source of "now" so tests can monkey-patch it trivially.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def from_unix(seconds: float) -> datetime:
    """Convert backend epoch seconds into a UTC-aware datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def to_unix(dt: datetime) -> int:
    """Convert a datetime into whole epoch seconds, as the backend expects."""
    return math.floor(dt.timestamp())
