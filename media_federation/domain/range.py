"""Interval types and the range algebra used by every coverage cache.

Intervals are closed ``[start, end]`` over a totally ordered scalar: either
UTC-aware datetimes or plain numbers (epoch seconds, playback offsets).
They are immutable; compression always produces new objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, Iterable, TypeVar, Union

T = TypeVar("T", datetime, float, int)


@dataclass(frozen=True)
class Interval(Generic[T]):
    """Closed interval ``[start, end]``."""

    start: T
    end: T

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"start ({self.start}) must be <= end ({self.end})")


@dataclass(frozen=True)
class ExpiringInterval(Interval[T]):
    """An interval that is void once the clock passes ``expires``."""

    expires: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires


DateRange = Interval[datetime]


def is_entirely_contained(bigger: Interval, smaller: Interval) -> bool:
    """True iff every point of *smaller* lies within *bigger*."""
    return smaller.start >= bigger.start and smaller.end <= bigger.end


def ranges_overlap(a: Interval, b: Interval) -> bool:
    """True if *a* and *b* share at least one point (touching counts)."""
    return (
        # a starts within b.
        (b.start <= a.start <= b.end)
        # a ends within b.
        or (b.start <= a.end <= b.end)
        # a encloses b.
        or (a.start <= b.start and a.end >= b.end)
    )


def _tolerance_for(value: object, tolerance_seconds: float) -> Union[timedelta, float]:
    if isinstance(value, datetime):
        return timedelta(seconds=tolerance_seconds)
    return tolerance_seconds


def compress_ranges(
    ranges: Iterable[Interval[T]],
    tolerance_seconds: float = 0,
) -> list[Interval[T]]:
    """Coalesce overlapping or touching intervals into a minimal sorted cover.

    Args:
        ranges: Intervals in any order.  They are not mutated.
        tolerance_seconds: Gaps of at most this many seconds are bridged,
            trading a little over-coverage for fewer stored intervals.

    Returns:
        Non-overlapping plain intervals sorted ascending by start.
    """
    compressed: list[Interval[T]] = []
    current_start: T | None = None
    current_end: T | None = None

    for rng in sorted(ranges, key=lambda r: r.start):
        if current_start is None:
            current_start, current_end = rng.start, rng.end
            continue

        if current_end + _tolerance_for(current_end, tolerance_seconds) >= rng.start:
            if rng.end > current_end:
                current_end = rng.end
        else:
            compressed.append(Interval(current_start, current_end))
            current_start, current_end = rng.start, rng.end

    if current_start is not None:
        compressed.append(Interval(current_start, current_end))
    return compressed
