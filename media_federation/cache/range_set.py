"""Coverage caches: which time ranges have already been fully fetched.

Design notes:
    - A cached range only satisfies a request that lies entirely inside
      it.  Partial overlap is a miss for the whole request; there is no
      stitching of partially covered ranges.
    - MemoryRangeSet re-compresses on every add so its ranges stay sorted,
      disjoint and non-touching.  Adds are bounded by distinct fetches,
      not by reads, so the O(n log n) per add is acceptable.
    - ExpiringMemoryRangeSet never compresses.  Merging two ranges with
      different expiries would let one fragment inherit the wrong expiry.
"""

from __future__ import annotations

from typing import Iterable, Optional

from media_federation.domain.range import (
    ExpiringInterval,
    Interval,
    compress_ranges,
    is_entirely_contained,
)
from media_federation.foundation.clock import utc_now


class MemoryRangeSet:
    """In-memory set of covered ranges."""

    def __init__(self, ranges: Optional[Iterable[Interval]] = None) -> None:
        self._ranges: list[Interval] = compress_ranges(ranges or [])

    def has_coverage(self, rng: Interval) -> bool:
        return any(is_entirely_contained(cached, rng) for cached in self._ranges)

    def add(self, rng: Interval) -> None:
        self._ranges.append(rng)
        self._ranges = compress_ranges(self._ranges)

    def clear(self) -> None:
        self._ranges = []

    @property
    def ranges(self) -> list[Interval]:
        return list(self._ranges)

    def __len__(self) -> int:
        return len(self._ranges)


class ExpiringMemoryRangeSet:
    """In-memory set of covered ranges, each with its own expiry."""

    def __init__(self, ranges: Optional[Iterable[ExpiringInterval]] = None) -> None:
        self._ranges: list[ExpiringInterval] = list(ranges or [])

    def has_coverage(self, rng: Interval) -> bool:
        now = utc_now()
        return any(
            not cached.is_expired(now) and is_entirely_contained(cached, rng)
            for cached in self._ranges
        )

    def add(self, rng: ExpiringInterval) -> None:
        self._ranges.append(rng)
        self._expire_old_ranges()

    def clear(self) -> None:
        self._ranges = []

    @property
    def ranges(self) -> list[ExpiringInterval]:
        return list(self._ranges)

    def _expire_old_ranges(self) -> None:
        now = utc_now()
        self._ranges = [rng for rng in self._ranges if not rng.is_expired(now)]
