"""Per-camera cache of recording segments.

Video seeking issues many small, overlapping segment queries.  This cache
remembers which windows were fetched per camera so a request that falls
inside an already-fetched window is answered without a backend call.

Eviction (expire_matches) removes segments but never shrinks coverage:
coverage means "this window was fetched", which stays true after the
segments themselves are garbage collected.  A window whose segments were
all evicted is therefore still reported as covered, with no segments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Callable, Iterable

from media_federation.cache.range_set import MemoryRangeSet
from media_federation.domain.backend import RecordingSegment
from media_federation.domain.range import DateRange, Interval, ranges_overlap
from media_federation.foundation.clock import from_unix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HourKey:
    """Identity of one clock hour of one camera's footage."""

    camera_id: str
    day: date
    hour: int

    @classmethod
    def for_instant(cls, camera_id: str, instant: datetime, tz: tzinfo) -> HourKey:
        local = instant.astimezone(tz)
        return cls(camera_id=camera_id, day=local.date(), hour=local.hour)


def _segment_range(segment: RecordingSegment) -> DateRange:
    return Interval(from_unix(segment.start_time), from_unix(segment.end_time))


class RecordingSegmentsCache:
    """Segments keyed by camera, with per-camera fetched-window coverage."""

    def __init__(self) -> None:
        self._segments: dict[str, dict[str, RecordingSegment]] = {}
        self._coverage: dict[str, MemoryRangeSet] = {}

    def get(self, camera_id: str, rng: DateRange) -> list[RecordingSegment] | None:
        """Cached segments overlapping *rng*, or None if *rng* was never fetched."""
        if not self.has_coverage(camera_id, rng):
            return None
        segments = [
            segment
            for segment in self._segments.get(camera_id, {}).values()
            if ranges_overlap(_segment_range(segment), rng)
        ]
        segments.sort(key=lambda s: s.start_time)
        return segments

    def add(
        self,
        camera_id: str,
        rng: DateRange,
        segments: Iterable[RecordingSegment],
    ) -> None:
        stored = self._segments.setdefault(camera_id, {})
        for segment in segments:
            stored[segment.id] = segment
        self._coverage.setdefault(camera_id, MemoryRangeSet()).add(rng)

    def get_camera_ids(self) -> set[str]:
        return set(self._segments)

    def has_coverage(self, camera_id: str, rng: DateRange) -> bool:
        coverage = self._coverage.get(camera_id)
        return coverage is not None and coverage.has_coverage(rng)

    def expire_matches(
        self,
        camera_id: str,
        predicate: Callable[[RecordingSegment], bool],
    ) -> int:
        """Drop every segment of *camera_id* matching *predicate*.

        Returns the number of segments removed.
        """
        stored = self._segments.get(camera_id)
        if not stored:
            return 0
        doomed = [seg_id for seg_id, segment in stored.items() if predicate(segment)]
        for seg_id in doomed:
            del stored[seg_id]
        if doomed:
            logger.debug("Expired %d segment(s) for camera %s", len(doomed), camera_id)
        return len(doomed)

    def get_size(self, camera_id: str | None = None) -> int:
        if camera_id is not None:
            return len(self._segments.get(camera_id, {}))
        return sum(len(stored) for stored in self._segments.values())

    def clear(self) -> None:
        self._segments.clear()
        self._coverage.clear()
