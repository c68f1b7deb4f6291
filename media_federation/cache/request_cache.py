"""Keyed result cache with per-entry expiry.

Keys are queries.  Entries are stored under the query's canonical key, so
two structurally equal queries built independently hit the same entry.
A miss is always ``None``; the cache never raises.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Generic, Protocol, TypeVar

from media_federation.foundation.clock import utc_now

logger = logging.getLogger(__name__)

V = TypeVar("V")


class CacheableQuery(Protocol):
    def canonical_key(self) -> str:
        ...


class _Entry(Generic[V]):
    __slots__ = ("value", "expires")

    def __init__(self, value: V, expires: datetime) -> None:
        self.value = value
        self.expires = expires


class RequestCache(Generic[V]):
    """Content-addressed cache of query results."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry[V]] = {}

    def get(self, query: CacheableQuery) -> V | None:
        key = query.canonical_key()
        entry = self._entries.get(key)
        if entry is None:
            return None
        if utc_now() >= entry.expires:
            del self._entries[key]
            return None
        return entry.value

    def has(self, query: CacheableQuery) -> bool:
        return self.get(query) is not None

    def set(self, query: CacheableQuery, value: V, expires: datetime) -> None:
        self._purge_expired()
        self._entries[query.canonical_key()] = _Entry(value, expires)

    def delete(self, query: CacheableQuery) -> None:
        self._entries.pop(query.canonical_key(), None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _purge_expired(self) -> None:
        now = utc_now()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %d expired request cache entr(ies)", len(expired))
