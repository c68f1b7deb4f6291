"""FederationEngine: fans logical queries out across backend instances.

Every query operation follows the same shape:
    1. Partition the requested cameras.  Event and metadata queries group
       by backend instance (one request covers many cameras); recording
       and segment queries go one camera at a time because the backend
       has no multi-camera form of those requests.
    2. Per branch, consult the matching cache and only call the backend
       on a miss.
    3. Await all branches together and merge into a dict keyed by the
       sub-query that produced each result.

Operations return None when no branch produced a result (empty camera
set, unconfigured cameras).  A failing branch fails the whole operation:
there is no per-branch partial success.

The engine holds no locks.  Branches run on one event loop and each only
touches its own cache key, so no read-then-write can interleave.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from media_federation.cache.request_cache import RequestCache
from media_federation.cache.segments import HourKey, RecordingSegmentsCache
from media_federation.cameras.store import CameraConfig, CameraConfigStore
from media_federation.domain.backend import BackendEvent, RecordingSegment, RecordingSummary
from media_federation.domain.enums import MediaType, QueryType
from media_federation.domain.media import (
    CameraEndpoint,
    MediaCapabilities,
    ViewMedia,
    event_media,
    is_clip,
    is_event_media,
    is_recording_media,
    recording_media,
)
from media_federation.domain.queries import (
    EventQuery,
    MediaMetadataQuery,
    RecordingQuery,
    RecordingSegmentsQuery,
)
from media_federation.domain.range import Interval
from media_federation.domain.results import (
    EventQueryResults,
    MediaMetadata,
    MediaMetadataQueryResults,
    QueryResults,
    Recording,
    RecordingQueryResults,
    RecordingSegmentsQueryResults,
    is_event_results,
    is_recording_results,
)
from media_federation.engine.throttle import TrailingThrottle, defer_to_loop
from media_federation.foundation.clock import from_unix, to_unix, utc_now
from media_federation.transport.requests import (
    NativeEventQuery,
    NativeRecordingSegmentsQuery,
    Transport,
    get_event_summary,
    get_events,
    get_recording_segments,
    get_recordings_summary,
    retain_event,
)

logger = logging.getLogger(__name__)

EVENT_LIMIT_DEFAULT = 10000


@dataclass(frozen=True)
class CacheLifetimes:
    """How long each kind of result may be served from cache."""

    event: timedelta = timedelta(seconds=60)
    recording_summary: timedelta = timedelta(seconds=60)
    media_metadata: timedelta = timedelta(seconds=60)


# ── Pure helpers ─────────────────────────────────────────────────────────────


def split_sub_labels(value: str) -> list[str]:
    """Split a backend sub label into its parts.

    The backend stores sub labels as one comma-separated string per event
    (e.g. two recognised faces), and matches searches against each part.
    """
    return [part.strip() for part in value.split(",")]


def resolve_event_media_type(query: EventQuery, event: BackendEvent) -> MediaType | None:
    """Pick clip or snapshot media for *event*, or None to drop it.

    With no explicit media request a clip is preferred over a snapshot.
    An explicit request is only honoured if the event offers that media.
    """
    if not query.has_clip and not query.has_snapshot and (event.has_clip or event.has_snapshot):
        return MediaType.CLIP if event.has_clip else MediaType.SNAPSHOT
    if query.has_snapshot and event.has_snapshot:
        return MediaType.SNAPSHOT
    if query.has_clip and event.has_clip:
        return MediaType.CLIP
    return None


def seek_time_in_segments(
    start_time: datetime,
    target_time: datetime,
    segments: list[RecordingSegment],
) -> float | None:
    """Seconds of footage between *start_time* and *target_time*.

    Args:
        start_time: Earliest time playback can seek from.
        target_time: Time to seek to.
        segments: Segments ordered oldest to youngest.  Gaps between
            segments contribute nothing.
    """
    if not segments:
        return None

    seek = timedelta()
    for segment in segments:
        segment_start = from_unix(segment.start_time)
        if segment_start > target_time:
            break
        segment_end = from_unix(segment.end_time)
        start = max(segment_start, start_time)
        end = min(segment_end, target_time)
        if end > start:
            seek += end - start
    return seek.total_seconds()


def expand_recording_summary(
    camera_id: str,
    summary: RecordingSummary,
    tz: ZoneInfo,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> list[Recording]:
    """Turn a day/hour occupancy summary into hour-long Recordings.

    Only hours lying entirely within ``[start, end]`` qualify.  The backend
    cannot limit or sort this request, so *limit* keeps the most recent
    recordings, newest first.
    """
    recordings: list[Recording] = []
    for day in summary:
        for hour in day.hours:
            hour_start = datetime.combine(day.day, time(hour=hour.hour), tzinfo=tz)
            hour_end = hour_start + timedelta(hours=1) - timedelta(microseconds=1)
            if (start is None or hour_start >= start) and (end is None or hour_end <= end):
                recordings.append(
                    Recording(
                        camera_id=camera_id,
                        start_time=hour_start,
                        end_time=hour_end,
                        events=hour.events,
                    )
                )

    if limit is not None:
        recordings.sort(key=lambda r: r.start_time, reverse=True)
        recordings = recordings[:limit]
    return recordings


# ── Engine ───────────────────────────────────────────────────────────────────


class FederationEngine:
    """Cache-aware federation of queries over one or more backend instances.

    Args:
        transport: Performs validated backend requests.
        segments_cache: Per-camera recording segment cache.
        request_cache: Keyed cache for event, recording and metadata results.
        lifetimes: Cache lifetime per result kind.
        timezone: Zone that recording and event summaries are bucketed in.
        event_limit_default: Event limit sent when a query names none.
        gc_cooldown: Minimum seconds between segment garbage collections.
    """

    def __init__(
        self,
        transport: Transport,
        segments_cache: RecordingSegmentsCache | None = None,
        request_cache: RequestCache | None = None,
        lifetimes: CacheLifetimes | None = None,
        timezone: str = "UTC",
        event_limit_default: int = EVENT_LIMIT_DEFAULT,
        gc_cooldown: float = 60 * 60,
    ) -> None:
        self._transport = transport
        self._segments_cache = (
            segments_cache if segments_cache is not None else RecordingSegmentsCache()
        )
        self._request_cache = request_cache if request_cache is not None else RequestCache()
        self._lifetimes = lifetimes or CacheLifetimes()
        self._timezone = timezone
        self._tz = ZoneInfo(timezone)
        self._event_limit_default = event_limit_default
        self._throttled_segment_gc = TrailingThrottle(
            self.garbage_collect_segments, gc_cooldown
        )

    @property
    def segments_cache(self) -> RecordingSegmentsCache:
        return self._segments_cache

    @property
    def request_cache(self) -> RequestCache:
        return self._request_cache

    # ── Default queries ──────────────────────────────────────────────────

    def generate_default_event_query(
        self,
        store: CameraConfigStore,
        camera_ids: Iterable[str],
        **overrides: Any,
    ) -> list[EventQuery] | None:
        """Event queries honouring each camera's default zones and labels.

        Cameras that all share the same defaults (including none) are
        batched into one query; otherwise each camera gets its own query.
        """
        camera_ids = list(camera_ids)
        configs = store.get_camera_configs(camera_ids)
        unique_zones = {tuple(c.zones) if c and c.zones is not None else None for c in configs}
        unique_labels = {tuple(c.labels) if c and c.labels is not None else None for c in configs}

        if len(unique_zones) == 1 and len(unique_labels) == 1:
            zones, labels = next(iter(unique_zones)), next(iter(unique_labels))
            return [
                EventQuery.model_validate(
                    {
                        "camera_ids": camera_ids,
                        **({"what": labels} if labels else {}),
                        **({"where": zones} if zones else {}),
                        **overrides,
                    }
                )
            ]

        output: list[EventQuery] = []
        for camera_id, config in zip(camera_ids, configs):
            if config is None:
                continue
            output.append(
                EventQuery.model_validate(
                    {
                        "camera_ids": [camera_id],
                        **({"what": config.labels} if config.labels else {}),
                        **({"where": config.zones} if config.zones else {}),
                        **overrides,
                    }
                )
            )
        return output or None

    def generate_default_recording_query(
        self,
        store: CameraConfigStore,
        camera_ids: Iterable[str],
        **overrides: Any,
    ) -> list[RecordingQuery]:
        return [RecordingQuery.model_validate({"camera_ids": list(camera_ids), **overrides})]

    def generate_default_recording_segments_query(
        self,
        store: CameraConfigStore,
        camera_ids: Iterable[str],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[RecordingSegmentsQuery] | None:
        if not start or not end:
            return None
        return [
            RecordingSegmentsQuery(camera_ids=frozenset(camera_ids), start=start, end=end)
        ]

    # ── Events ───────────────────────────────────────────────────────────

    async def get_events(
        self,
        store: CameraConfigStore,
        query: EventQuery,
        use_cache: bool = True,
    ) -> dict[EventQuery, EventQueryResults] | None:
        output: dict[EventQuery, EventQueryResults] = {}

        async def process_instance(instance_id: str, camera_ids: set[str]) -> None:
            instance_query = query.for_cameras(camera_ids)
            cached = self._request_cache.get(instance_query) if use_cache else None
            if cached is not None:
                logger.debug("Event cache hit for instance %s", instance_id)
                output[instance_query] = cached
                return

            native = NativeEventQuery(
                instance_id=instance_id,
                cameras=sorted(self._camera_names_for(store, camera_ids)),
                labels=sorted(query.what) if query.what else None,
                zones=sorted(query.where) if query.where else None,
                sub_labels=sorted(query.tags) if query.tags else None,
                before=to_unix(query.end) if query.end else None,
                after=to_unix(query.start) if query.start else None,
                has_clip=query.has_clip or None,
                has_snapshot=query.has_snapshot or None,
                favorites=query.favorite or None,
                limit=query.limit or self._event_limit_default,
            )
            result = EventQueryResults(
                instance_id=instance_id,
                events=await get_events(self._transport, native),
                expiry=utc_now() + self._lifetimes.event,
                cached=False,
            )
            if use_cache:
                self._request_cache.set(instance_query, result.as_cached(), result.expiry)
            output[instance_query] = result

        # One backend request per instance covers all its cameras.
        instances = self._build_instance_to_camera_ids(store, query.camera_ids)
        await asyncio.gather(
            *(process_instance(instance_id, ids) for instance_id, ids in instances.items())
        )
        return output or None

    # ── Recordings ───────────────────────────────────────────────────────

    async def get_recordings(
        self,
        store: CameraConfigStore,
        query: RecordingQuery,
        use_cache: bool = True,
    ) -> dict[RecordingQuery, RecordingQueryResults] | None:
        output: dict[RecordingQuery, RecordingQueryResults] = {}

        async def process_camera(camera_id: str) -> None:
            camera_query = query.for_cameras([camera_id])
            cached = self._request_cache.get(camera_query) if use_cache else None
            if cached is not None:
                logger.debug("Recording cache hit for camera %s", camera_id)
                output[camera_query] = cached
                return

            config = self._get_queryable_camera_config(store, camera_id)
            if config is None or not config.camera_name:
                return

            summary = await get_recordings_summary(
                self._transport, config.instance_id, config.camera_name, self._timezone
            )
            result = RecordingQueryResults(
                instance_id=config.instance_id,
                recordings=expand_recording_summary(
                    camera_id,
                    summary,
                    self._tz,
                    start=query.start,
                    end=query.end,
                    limit=query.limit,
                ),
                expiry=utc_now() + self._lifetimes.recording_summary,
                cached=False,
            )
            if use_cache:
                self._request_cache.set(camera_query, result.as_cached(), result.expiry)
            output[camera_query] = result

        await asyncio.gather(*(process_camera(camera_id) for camera_id in query.camera_ids))
        return output or None

    # ── Recording segments ───────────────────────────────────────────────

    async def get_recording_segments(
        self,
        store: CameraConfigStore,
        query: RecordingSegmentsQuery,
        use_cache: bool = True,
    ) -> dict[RecordingSegmentsQuery, RecordingSegmentsQueryResults] | None:
        output: dict[RecordingSegmentsQuery, RecordingSegmentsQueryResults] = {}

        async def process_camera(camera_id: str) -> None:
            camera_query = query.for_cameras([camera_id])
            config = self._get_queryable_camera_config(store, camera_id)
            if config is None or not config.camera_name:
                return

            # Segments are cached by window rather than by query, so a request
            # inside any previously fetched window is served locally.
            rng = Interval(query.start, query.end)
            cached = self._segments_cache.get(camera_id, rng) if use_cache else None
            if cached is not None:
                logger.debug("Segment cache hit for camera %s", camera_id)
                output[camera_query] = RecordingSegmentsQueryResults(
                    instance_id=config.instance_id,
                    segments=cached,
                    cached=True,
                )
                return

            segments = await get_recording_segments(
                self._transport,
                NativeRecordingSegmentsQuery(
                    instance_id=config.instance_id,
                    camera=config.camera_name,
                    after=to_unix(query.start),
                    before=to_unix(query.end),
                ),
            )
            if use_cache:
                self._segments_cache.add(camera_id, rng, segments)
            output[camera_query] = RecordingSegmentsQueryResults(
                instance_id=config.instance_id,
                segments=segments,
                cached=False,
            )

        await asyncio.gather(*(process_camera(camera_id) for camera_id in query.camera_ids))

        defer_to_loop(lambda: self._throttled_segment_gc(store))
        return output or None

    async def garbage_collect_segments(self, store: CameraConfigStore) -> int:
        """Evict cached segments whose hour no longer has a recording upstream.

        Coverage is left untouched.  Returns the number of segments evicted.
        """
        camera_ids = self._segments_cache.get_camera_ids()
        if not camera_ids:
            return 0

        results = await self.get_recordings(
            store, RecordingQuery(camera_ids=frozenset(camera_ids))
        )
        if not results:
            return 0

        evicted = 0
        for query, result in results.items():
            if not is_recording_results(result):
                continue
            good_hours = {
                HourKey.for_instant(recording.camera_id, recording.start_time, self._tz)
                for recording in result.recordings
            }
            # Recording queries are per camera, so each has exactly one.
            camera_id = next(iter(query.camera_ids))
            evicted += self._segments_cache.expire_matches(
                camera_id,
                lambda segment: HourKey.for_instant(
                    camera_id, from_unix(segment.start_time), self._tz
                )
                not in good_hours,
            )

        logger.info(
            "Segment garbage collection evicted %d segment(s) across %d camera(s)",
            evicted,
            len(camera_ids),
        )
        return evicted

    # ── Media metadata ───────────────────────────────────────────────────

    async def get_media_metadata(
        self,
        store: CameraConfigStore,
        query: MediaMetadataQuery,
        use_cache: bool = True,
    ) -> dict[MediaMetadataQuery, MediaMetadataQueryResults] | None:
        if use_cache:
            cached = self._request_cache.get(query)
            if cached is not None:
                return {query: cached}

        instances = self._build_instance_to_camera_ids(store, query.camera_ids)
        if not instances:
            return None

        what: set[str] = set()
        where: set[str] = set()
        days: set[str] = set()
        tags: set[str] = set()

        async def process_event_summary(instance_id: str, camera_ids: set[str]) -> None:
            camera_names = self._camera_names_for(store, camera_ids)
            for entry in await get_event_summary(self._transport, instance_id, self._timezone):
                # Cameras on this instance that are not configured here are skipped.
                if entry.camera not in camera_names:
                    continue
                if entry.label:
                    what.add(entry.label)
                where.update(entry.zones)
                if entry.day:
                    days.add(entry.day)
                if entry.sub_label:
                    tags.update(split_sub_labels(entry.sub_label))

        async def process_recordings(camera_ids: set[str]) -> None:
            recordings = await self.get_recordings(
                store, RecordingQuery(camera_ids=frozenset(camera_ids)), use_cache=use_cache
            )
            for result in (recordings or {}).values():
                if not is_recording_results(result):
                    continue
                # Recordings are one hour long, so never span a day.
                days.update(r.start_time.strftime("%Y-%m-%d") for r in result.recordings)

        await asyncio.gather(
            *(
                asyncio.gather(
                    process_event_summary(instance_id, camera_ids),
                    process_recordings(camera_ids),
                )
                for instance_id, camera_ids in instances.items()
            )
        )

        result = MediaMetadataQueryResults(
            metadata=MediaMetadata(
                what=frozenset(what) or None,
                where=frozenset(where) or None,
                days=frozenset(days) or None,
                tags=frozenset(tags) or None,
            ),
            expiry=utc_now() + self._lifetimes.media_metadata,
            cached=False,
        )
        if use_cache:
            self._request_cache.set(query, result.as_cached(), result.expiry)
        return {query: result}

    # ── Media projection ─────────────────────────────────────────────────

    def generate_media_from_events(
        self,
        store: CameraConfigStore,
        query: EventQuery,
        results: QueryResults,
    ) -> list[ViewMedia] | None:
        if not is_event_results(results):
            return None

        output: list[ViewMedia] = []
        for event in results.events:
            camera_id = self._get_camera_id_match(store, query, results.instance_id, event.camera)
            if camera_id is None:
                continue
            config = self._get_queryable_camera_config(store, camera_id)
            if config is None:
                continue
            media_type = resolve_event_media_type(query, event)
            if media_type is None:
                continue
            output.append(
                event_media(
                    media_type,
                    camera_id,
                    config.instance_id,
                    event,
                    split_sub_labels(event.sub_label) if event.sub_label else None,
                )
            )
        return output

    def generate_media_from_recordings(
        self,
        store: CameraConfigStore,
        query: RecordingQuery,
        results: QueryResults,
    ) -> list[ViewMedia] | None:
        if not is_recording_results(results):
            return None

        output: list[ViewMedia] = []
        for recording in results.recordings:
            config = self._get_queryable_camera_config(store, recording.camera_id)
            if config is None:
                continue
            output.append(
                recording_media(
                    recording.camera_id, config.instance_id, recording, config.display_title
                )
            )
        return output

    def get_query_result_max_age(self, query: Any) -> float | None:
        if query.type == QueryType.EVENT:
            return self._lifetimes.event.total_seconds()
        if query.type == QueryType.RECORDING:
            return self._lifetimes.recording_summary.total_seconds()
        return None

    # ── Seeking ──────────────────────────────────────────────────────────

    async def get_media_seek_time(
        self,
        store: CameraConfigStore,
        media: ViewMedia,
        target: datetime,
        use_cache: bool = True,
    ) -> float | None:
        """Playback offset in seconds that lands on *target* within *media*."""
        start, end = media.start_time, media.end_time
        if start is None or end is None or target < start or target > end:
            return None

        results = await self.get_recording_segments(
            store,
            RecordingSegmentsQuery(camera_ids=frozenset([media.camera_id]), start=start, end=end),
            use_cache=use_cache,
        )
        if not results:
            return None
        # Segment queries are per camera and only one camera was asked for.
        return seek_time_in_segments(start, target, next(iter(results.values())).segments)

    # ── Favorites ────────────────────────────────────────────────────────

    async def retain(
        self,
        store: CameraConfigStore,
        camera_id: str,
        event_id: str,
        retain: bool,
    ) -> None:
        """(Un)retain an event on the instance that owns *camera_id*.

        Raises:
            RetainError: If the backend reports failure.
        """
        config = self._get_queryable_camera_config(store, camera_id)
        if config is None:
            logger.warning("Cannot retain event %s: camera %s not queryable", event_id, camera_id)
            return
        await retain_event(self._transport, config.instance_id, event_id, retain)

    async def favorite_media(
        self,
        store: CameraConfigStore,
        media: ViewMedia,
        favorite: bool,
    ) -> None:
        if not is_event_media(media):
            return
        await self.retain(store, media.camera_id, media.media_id, favorite)
        media.set_favorite(favorite)

    # ── Capabilities & endpoints ─────────────────────────────────────────

    def get_media_capabilities(self, media: ViewMedia) -> MediaCapabilities:
        return MediaCapabilities(can_favorite=is_event_media(media), can_download=True)

    def get_media_download_path(
        self,
        store: CameraConfigStore,
        media: ViewMedia,
    ) -> CameraEndpoint | None:
        config = store.get_camera_config(media.camera_id)
        if config is None:
            return None
        if is_event_media(media):
            filename = "clip.mp4" if is_clip(media) else "snapshot.jpg"
            return CameraEndpoint(
                endpoint=(
                    f"/api/frigate/{config.instance_id}"
                    f"/notifications/{media.media_id}/{filename}?download=true"
                ),
                sign=True,
            )
        if is_recording_media(media) and media.start_time and media.end_time:
            return CameraEndpoint(
                endpoint=(
                    f"/api/frigate/{config.instance_id}"
                    f"/recording/{config.camera_name}"
                    f"/start/{to_unix(media.start_time)}"
                    f"/end/{to_unix(media.end_time)}?download=true"
                ),
                sign=True,
            )
        return None

    # ── Internals ────────────────────────────────────────────────────────

    def _get_queryable_camera_config(
        self,
        store: CameraConfigStore,
        camera_id: str,
    ) -> CameraConfig | None:
        config = store.get_camera_config(camera_id)
        if config is None or config.is_birdseye:
            return None
        return config

    def _build_instance_to_camera_ids(
        self,
        store: CameraConfigStore,
        camera_ids: Iterable[str],
    ) -> dict[str, set[str]]:
        output: dict[str, set[str]] = {}
        for camera_id in camera_ids:
            config = self._get_queryable_camera_config(store, camera_id)
            if config is not None:
                output.setdefault(config.instance_id, set()).add(camera_id)
        return output

    def _camera_names_for(self, store: CameraConfigStore, camera_ids: Iterable[str]) -> set[str]:
        names: set[str] = set()
        for camera_id in camera_ids:
            config = self._get_queryable_camera_config(store, camera_id)
            if config is not None and config.camera_name:
                names.add(config.camera_name)
        return names

    def _get_camera_id_match(
        self,
        store: CameraConfigStore,
        query: EventQuery,
        instance_id: str,
        camera_name: str,
    ) -> str | None:
        # A single-camera query owns every result without matching.
        if len(query.camera_ids) == 1:
            return next(iter(query.camera_ids))
        for camera_id, config in store.get_camera_config_entries():
            if config.instance_id == instance_id and config.camera_name == camera_name:
                return camera_id
        return None
