"""Tests for the FederationEngine: fan-out, caching, merging and derivations."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from media_federation.cameras.store import CameraConfigStore
from media_federation.domain.backend import BackendEvent, RecordingSegment, RecordingSummaryDay
from media_federation.domain.enums import MediaType
from media_federation.domain.media import ViewMedia
from media_federation.domain.queries import (
    EventQuery,
    MediaMetadataQuery,
    RecordingQuery,
    RecordingSegmentsQuery,
)
from media_federation.domain.range import Interval
from media_federation.domain.results import EventQueryResults, RecordingQueryResults
from media_federation.engine.federation import (
    FederationEngine,
    expand_recording_summary,
    resolve_event_media_type,
    seek_time_in_segments,
    split_sub_labels,
)
from media_federation.transport.errors import RetainError, TransportError

from tests.fakes import FakeTransport, build_store, camera, event_payload, segment_payload

_DAY = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
_T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

EVENTS = "frigate/events/get"
EVENT_SUMMARY = "frigate/events/summary"
RECORDINGS_SUMMARY = "frigate/recordings/summary"
SEGMENTS = "frigate/recordings/get"
RETAIN = "frigate/event/retain"


def _events_for_cameras(message: dict) -> list[dict]:
    return [event_payload(f"{name}-1", name) for name in message["cameras"]]


def _summary(hours: list[int]) -> list[dict]:
    return [
        {
            "day": "2026-01-01",
            "events": len(hours),
            "hours": [{"hour": h, "events": 1, "duration": 3600} for h in hours],
        }
    ]


def _seek_segments(_message: dict) -> list[dict]:
    return [
        segment_payload("s1", _T0, _T0 + timedelta(seconds=600)),
        segment_payload("s2", _T0 + timedelta(seconds=600), _T0 + timedelta(seconds=1200)),
        segment_payload("s3", _T0 + timedelta(seconds=2000), _T0 + timedelta(seconds=2600)),
    ]


@pytest.fixture
def store() -> CameraConfigStore:
    return build_store(
        camera("front", "frigate-a"),
        camera("back", "frigate-a"),
        camera("drive", "frigate-b"),
        camera("birdseye", "frigate-a", camera_name="birdseye"),
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport(
        {
            EVENTS: _events_for_cameras,
            RECORDINGS_SUMMARY: _summary([1, 3, 5, 7, 9]),
            SEGMENTS: _seek_segments,
            RETAIN: {"success": True},
            EVENT_SUMMARY: [],
        }
    )


@pytest.fixture
def engine(transport: FakeTransport) -> FederationEngine:
    return FederationEngine(transport)


# ── Pure helpers ─────────────────────────────────────────────────────────────


class TestMediaTypeResolution:
    def _event(self, **kw) -> BackendEvent:
        return BackendEvent.model_validate(event_payload("e1", "front", **kw))

    def test_no_preference_prefers_clip(self) -> None:
        query = EventQuery(camera_ids={"front"})
        assert resolve_event_media_type(query, self._event()) == MediaType.CLIP

    def test_no_preference_falls_back_to_snapshot(self) -> None:
        query = EventQuery(camera_ids={"front"})
        assert resolve_event_media_type(query, self._event(has_clip=False)) == MediaType.SNAPSHOT

    def test_snapshot_request_honoured(self) -> None:
        query = EventQuery(camera_ids={"front"}, has_snapshot=True)
        assert resolve_event_media_type(query, self._event()) == MediaType.SNAPSHOT

    def test_snapshot_request_against_clip_only_event_drops_it(self) -> None:
        query = EventQuery(camera_ids={"front"}, has_snapshot=True)
        assert resolve_event_media_type(query, self._event(has_snapshot=False)) is None

    def test_event_without_media_dropped(self) -> None:
        query = EventQuery(camera_ids={"front"})
        event = self._event(has_clip=False, has_snapshot=False)
        assert resolve_event_media_type(query, event) is None


class TestSeekTime:
    def _segments(self) -> list[RecordingSegment]:
        return [RecordingSegment.model_validate(s) for s in _seek_segments({})]

    def test_gap_contributes_nothing(self) -> None:
        target = _T0 + timedelta(seconds=2300)
        assert seek_time_in_segments(_T0, target, self._segments()) == pytest.approx(1500.0)

    def test_target_inside_first_segment(self) -> None:
        target = _T0 + timedelta(seconds=90)
        assert seek_time_in_segments(_T0, target, self._segments()) == pytest.approx(90.0)

    def test_segment_before_start_is_clipped(self) -> None:
        start = _T0 + timedelta(seconds=300)
        target = _T0 + timedelta(seconds=900)
        assert seek_time_in_segments(start, target, self._segments()) == pytest.approx(600.0)

    def test_no_segments(self) -> None:
        assert seek_time_in_segments(_T0, _T0, []) is None


class TestRecordingExpansion:
    def _summary(self, hours: list[int]):
        return [RecordingSummaryDay.model_validate(d) for d in _summary(hours)]

    def test_hours_are_one_hour_long(self) -> None:
        (recording,) = expand_recording_summary("front", self._summary([4]), ZoneInfo("UTC"))
        assert recording.start_time == _DAY + timedelta(hours=4)
        assert recording.end_time == _DAY + timedelta(hours=5) - timedelta(microseconds=1)

    def test_partial_hours_excluded(self) -> None:
        recordings = expand_recording_summary(
            "front",
            self._summary([1, 3, 5, 7]),
            ZoneInfo("UTC"),
            start=_DAY + timedelta(hours=1, minutes=30),
            end=_DAY + timedelta(hours=6),
        )
        assert [r.start_time.hour for r in recordings] == [3, 5]

    def test_summary_interpreted_in_timezone(self) -> None:
        (recording,) = expand_recording_summary(
            "front", self._summary([4]), ZoneInfo("America/New_York")
        )
        assert recording.start_time.astimezone(timezone.utc).hour == 9


def test_split_sub_labels() -> None:
    assert split_sub_labels("alice, bob ,carol") == ["alice", "bob", "carol"]


# ── Events ───────────────────────────────────────────────────────────────────


class TestEvents:
    @pytest.mark.asyncio
    async def test_fans_out_per_instance(self, engine, store, transport) -> None:
        query = EventQuery(camera_ids={"front", "back", "drive"})
        results = await engine.get_events(store, query)

        assert len(transport.calls_of(EVENTS)) == 2
        assert set(results) == {
            query.for_cameras({"front", "back"}),
            query.for_cameras({"drive"}),
        }
        by_instance = {r.instance_id: r for r in results.values()}
        assert len(by_instance["frigate-a"].events) == 2
        assert len(by_instance["frigate-b"].events) == 1

    @pytest.mark.asyncio
    async def test_native_query_translation(self, engine, store, transport) -> None:
        query = EventQuery(
            camera_ids={"front", "back"},
            what={"person", "car"},
            where={"porch"},
            tags={"alice"},
            start=_T0,
            end=_T0 + timedelta(hours=1),
            has_clip=True,
            favorite=True,
        )
        await engine.get_events(store, query)
        (call,) = transport.calls_of(EVENTS)
        assert call["instance_id"] == "frigate-a"
        assert call["cameras"] == ["back", "front"]
        assert call["labels"] == ["car", "person"]
        assert call["zones"] == ["porch"]
        assert call["sub_labels"] == ["alice"]
        assert call["after"] == int(_T0.timestamp())
        assert call["before"] == int(_T0.timestamp()) + 3600
        assert call["has_clip"] is True
        assert call["favorites"] is True
        assert "has_snapshot" not in call
        assert call["limit"] == 10000

    @pytest.mark.asyncio
    async def test_explicit_limit_sent(self, engine, store, transport) -> None:
        await engine.get_events(store, EventQuery(camera_ids={"front"}, limit=5))
        assert transport.calls_of(EVENTS)[0]["limit"] == 5

    @pytest.mark.asyncio
    async def test_cache_short_circuits(self, engine, store, transport) -> None:
        query = EventQuery(camera_ids={"front", "drive"})
        first = await engine.get_events(store, query)
        second = await engine.get_events(store, query)

        assert len(transport.calls_of(EVENTS)) == 2
        assert not any(r.cached for r in first.values())
        assert all(r.cached for r in second.values())
        assert set(first) == set(second)

    @pytest.mark.asyncio
    async def test_use_cache_false_always_fetches(self, engine, store, transport) -> None:
        query = EventQuery(camera_ids={"front"})
        await engine.get_events(store, query, use_cache=False)
        await engine.get_events(store, query, use_cache=False)
        assert len(transport.calls_of(EVENTS)) == 2
        assert len(engine.request_cache) == 0

    @pytest.mark.asyncio
    async def test_unqueryable_cameras_return_none(self, engine, store, transport) -> None:
        assert await engine.get_events(store, EventQuery(camera_ids={"nope", "birdseye"})) is None
        assert await engine.get_events(store, EventQuery(camera_ids=set())) is None
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_one_failing_instance_fails_whole_query(self, store) -> None:
        def flaky(message: dict) -> list[dict]:
            if message["instance_id"] == "frigate-b":
                raise TransportError("boom", message)
            return _events_for_cameras(message)

        engine = FederationEngine(FakeTransport({EVENTS: flaky}))
        with pytest.raises(TransportError):
            await engine.get_events(store, EventQuery(camera_ids={"front", "drive"}))


class TestEventMedia:
    @pytest.mark.asyncio
    async def test_multi_camera_results_matched_by_name(self, engine, store) -> None:
        query = EventQuery(camera_ids={"front", "back"})
        results = await engine.get_events(store, query)
        ((sub_query, result),) = results.items()

        media = engine.generate_media_from_events(store, sub_query, result)
        assert {m.camera_id for m in media} == {"front", "back"}
        assert all(m.media_type == MediaType.CLIP for m in media)

    def test_unmatched_camera_dropped(self, engine, store) -> None:
        query = EventQuery(camera_ids={"front", "back"})
        result = EventQueryResults(
            instance_id="frigate-a",
            events=[event_payload("e1", "front"), event_payload("e2", "garage")],
        )
        media = engine.generate_media_from_events(store, query, result)
        assert [m.media_id for m in media] == ["e1"]

    def test_single_camera_fast_path(self, engine, store) -> None:
        query = EventQuery(camera_ids={"front"})
        result = EventQueryResults(
            instance_id="frigate-a",
            events=[event_payload("e1", "renamed-upstream", sub_label="alice,bob")],
        )
        (media,) = engine.generate_media_from_events(store, query, result)
        assert media.camera_id == "front"
        assert media.tags == ["alice", "bob"]

    def test_wrong_result_kind_returns_none(self, engine, store) -> None:
        query = EventQuery(camera_ids={"front"})
        assert engine.generate_media_from_events(
            store, query, RecordingQueryResults(instance_id="frigate-a")
        ) is None


# ── Recordings ───────────────────────────────────────────────────────────────


class TestRecordings:
    @pytest.mark.asyncio
    async def test_one_request_per_camera(self, engine, store, transport) -> None:
        results = await engine.get_recordings(store, RecordingQuery(camera_ids={"front", "drive"}))
        calls = transport.calls_of(RECORDINGS_SUMMARY)
        assert len(calls) == 2
        assert {c["camera"] for c in calls} == {"front", "drive"}
        assert all(c["timezone"] == "UTC" for c in calls)
        assert set(results) == {
            RecordingQuery(camera_ids={"front"}),
            RecordingQuery(camera_ids={"drive"}),
        }

    @pytest.mark.asyncio
    async def test_limit_keeps_most_recent_descending(self, engine, store) -> None:
        results = await engine.get_recordings(store, RecordingQuery(camera_ids={"front"}, limit=2))
        (result,) = results.values()
        assert [r.start_time for r in result.recordings] == [
            _DAY + timedelta(hours=9),
            _DAY + timedelta(hours=7),
        ]

    @pytest.mark.asyncio
    async def test_without_limit_returns_all_hours(self, engine, store) -> None:
        results = await engine.get_recordings(store, RecordingQuery(camera_ids={"front"}))
        (result,) = results.values()
        assert len(result.recordings) == 5

    @pytest.mark.asyncio
    async def test_cached_on_second_call(self, engine, store, transport) -> None:
        query = RecordingQuery(camera_ids={"front"})
        await engine.get_recordings(store, query)
        results = await engine.get_recordings(store, query)
        assert len(transport.calls_of(RECORDINGS_SUMMARY)) == 1
        assert all(r.cached for r in results.values())

    @pytest.mark.asyncio
    async def test_recording_media(self, engine, store) -> None:
        query = RecordingQuery(camera_ids={"front"}, limit=1)
        results = await engine.get_recordings(store, query)
        ((sub_query, result),) = results.items()
        (media,) = engine.generate_media_from_recordings(store, sub_query, result)
        assert media.media_type == MediaType.RECORDING
        assert media.start_time == _DAY + timedelta(hours=9)


# ── Recording segments ───────────────────────────────────────────────────────


class TestRecordingSegments:
    @pytest.mark.asyncio
    async def test_second_query_served_from_segment_cache(self, engine, store, transport) -> None:
        query = RecordingSegmentsQuery(
            camera_ids={"front"}, start=_T0, end=_T0 + timedelta(hours=1)
        )
        first = await engine.get_recording_segments(store, query)
        second = await engine.get_recording_segments(store, query)

        assert len(transport.calls_of(SEGMENTS)) == 1
        (first_result,) = first.values()
        (second_result,) = second.values()
        assert not first_result.cached
        assert second_result.cached
        assert [s.id for s in second_result.segments] == ["s1", "s2", "s3"]

    @pytest.mark.asyncio
    async def test_sub_window_served_from_cache(self, engine, store, transport) -> None:
        await engine.get_recording_segments(
            store,
            RecordingSegmentsQuery(camera_ids={"front"}, start=_T0, end=_T0 + timedelta(hours=1)),
        )
        results = await engine.get_recording_segments(
            store,
            RecordingSegmentsQuery(
                camera_ids={"front"},
                start=_T0 + timedelta(seconds=100),
                end=_T0 + timedelta(seconds=700),
            ),
        )
        assert len(transport.calls_of(SEGMENTS)) == 1
        (result,) = results.values()
        assert [s.id for s in result.segments] == ["s1", "s2"]

    @pytest.mark.asyncio
    async def test_native_request(self, engine, store, transport) -> None:
        await engine.get_recording_segments(
            store,
            RecordingSegmentsQuery(camera_ids={"drive"}, start=_T0, end=_T0 + timedelta(hours=1)),
        )
        (call,) = transport.calls_of(SEGMENTS)
        assert call == {
            "type": SEGMENTS,
            "instance_id": "frigate-b",
            "camera": "drive",
            "after": int(_T0.timestamp()),
            "before": int(_T0.timestamp()) + 3600,
        }

    @pytest.mark.asyncio
    async def test_one_request_per_camera(self, engine, store, transport) -> None:
        results = await engine.get_recording_segments(
            store,
            RecordingSegmentsQuery(
                camera_ids={"front", "back", "nope"}, start=_T0, end=_T0 + timedelta(hours=1)
            ),
        )
        assert len(transport.calls_of(SEGMENTS)) == 2
        assert len(results) == 2


class TestSeek:
    def _media(self) -> ViewMedia:
        return ViewMedia(
            media_type=MediaType.RECORDING,
            camera_id="front",
            instance_id="frigate-a",
            media_id="r1",
            start_time=_T0,
            end_time=_T0 + timedelta(seconds=3600),
        )

    @pytest.mark.asyncio
    async def test_seek_offset(self, engine, store) -> None:
        seconds = await engine.get_media_seek_time(
            store, self._media(), _T0 + timedelta(seconds=2300)
        )
        assert seconds == pytest.approx(1500.0)

    @pytest.mark.asyncio
    async def test_target_outside_media_is_none(self, engine, store, transport) -> None:
        seconds = await engine.get_media_seek_time(
            store, self._media(), _T0 + timedelta(seconds=3601)
        )
        assert seconds is None
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_no_segments_is_none(self, store) -> None:
        engine = FederationEngine(FakeTransport({SEGMENTS: []}))
        assert await engine.get_media_seek_time(store, self._media(), _T0) is None


# ── Garbage collection ───────────────────────────────────────────────────────


class TestSegmentGarbageCollection:
    def _prime(self, engine: FederationEngine) -> Interval:
        window = Interval(_DAY + timedelta(hours=1), _DAY + timedelta(hours=6))
        segments = [
            RecordingSegment.model_validate(
                segment_payload(
                    f"seg-{h}",
                    _DAY + timedelta(hours=h),
                    _DAY + timedelta(hours=h, minutes=10),
                )
            )
            for h in range(1, 6)
        ]
        engine.segments_cache.add("front", window, segments)
        return window

    @pytest.mark.asyncio
    async def test_only_hours_with_recordings_survive(self, store) -> None:
        engine = FederationEngine(FakeTransport({RECORDINGS_SUMMARY: _summary([2, 3, 4])}))
        window = self._prime(engine)

        evicted = await engine.garbage_collect_segments(store)

        assert evicted == 2
        remaining = engine.segments_cache.get("front", window)
        assert [s.id for s in remaining] == ["seg-2", "seg-3", "seg-4"]
        assert engine.segments_cache.has_coverage("front", window)

    @pytest.mark.asyncio
    async def test_nothing_cached_makes_no_requests(self, store) -> None:
        transport = FakeTransport()
        engine = FederationEngine(transport)
        assert await engine.garbage_collect_segments(store) == 0
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_triggered_after_segment_queries(self, store) -> None:
        transport = FakeTransport(
            {SEGMENTS: _seek_segments, RECORDINGS_SUMMARY: _summary([12])}
        )
        engine = FederationEngine(transport, gc_cooldown=0.01)
        query = RecordingSegmentsQuery(
            camera_ids={"front"}, start=_T0, end=_T0 + timedelta(hours=1)
        )
        await engine.get_recording_segments(store, query)
        await engine.get_recording_segments(store, query)
        await asyncio.sleep(0.1)

        # Trailing edge: two triggers inside the cooldown run one pass.
        assert len(transport.calls_of(RECORDINGS_SUMMARY)) == 1
        assert engine.segments_cache.get_size("front") == 3


# ── Media metadata ───────────────────────────────────────────────────────────


class TestMediaMetadata:
    @pytest.fixture
    def transport(self) -> FakeTransport:
        return FakeTransport(
            {
                EVENT_SUMMARY: [
                    {"camera": "front", "day": "2026-01-01", "label": "person",
                     "sub_label": "alice, bob", "zones": ["porch"], "count": 2},
                    {"camera": "drive", "day": "2026-01-02", "label": "car", "zones": []},
                    {"camera": "unconfigured", "day": "2026-01-03", "label": "dog",
                     "zones": ["yard"]},
                ],
                RECORDINGS_SUMMARY: _summary([1]),
            }
        )

    @pytest.mark.asyncio
    async def test_aggregates_configured_cameras(self, engine, store, transport) -> None:
        query = MediaMetadataQuery(camera_ids={"front", "drive"})
        results = await engine.get_media_metadata(store, query)

        metadata = results[query].metadata
        assert metadata.what == {"person", "car"}
        assert metadata.where == {"porch"}
        assert metadata.tags == {"alice", "bob"}
        assert metadata.days == {"2026-01-01", "2026-01-02"}
        assert len(transport.calls_of(EVENT_SUMMARY)) == 2

    @pytest.mark.asyncio
    async def test_cached_on_second_call(self, engine, store, transport) -> None:
        query = MediaMetadataQuery(camera_ids={"front"})
        await engine.get_media_metadata(store, query)
        calls = len(transport.calls)
        results = await engine.get_media_metadata(store, query)
        assert len(transport.calls) == calls
        assert results[query].cached

    @pytest.mark.asyncio
    async def test_no_queryable_cameras(self, engine, store, transport) -> None:
        assert await engine.get_media_metadata(store, MediaMetadataQuery(camera_ids={"x"})) is None
        assert transport.calls == []


# ── Retain / favorites ───────────────────────────────────────────────────────


class TestRetain:
    def _event_media(self) -> ViewMedia:
        return ViewMedia(
            media_type=MediaType.CLIP,
            camera_id="drive",
            instance_id="frigate-b",
            media_id="e1",
            start_time=_T0,
        )

    @pytest.mark.asyncio
    async def test_favorite_event(self, engine, store, transport) -> None:
        media = self._event_media()
        await engine.favorite_media(store, media, True)
        (call,) = transport.calls_of(RETAIN)
        assert call["instance_id"] == "frigate-b"
        assert call["event_id"] == "e1"
        assert call["retain"] is True
        assert media.favorite

    @pytest.mark.asyncio
    async def test_recording_cannot_be_favorited(self, engine, store, transport) -> None:
        media = self._event_media().model_copy(update={"media_type": MediaType.RECORDING})
        await engine.favorite_media(store, media, True)
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_backend_refusal_raises(self, store) -> None:
        engine = FederationEngine(FakeTransport({RETAIN: {"success": False, "message": "no"}}))
        media = self._event_media()
        with pytest.raises(RetainError) as excinfo:
            await engine.favorite_media(store, media, True)
        assert excinfo.value.request["event_id"] == "e1"
        assert excinfo.value.response.message == "no"
        assert not media.favorite


# ── Default queries & misc ───────────────────────────────────────────────────


class TestDefaultQueries:
    def test_shared_defaults_batch_into_one_query(self, engine) -> None:
        store = build_store(
            camera("a", zones=["porch"], labels=["person"]),
            camera("b", zones=["porch"], labels=["person"]),
        )
        (query,) = engine.generate_default_event_query(store, ["a", "b"], limit=3)
        assert query.camera_ids == {"a", "b"}
        assert query.where == {"porch"}
        assert query.what == {"person"}
        assert query.limit == 3

    def test_differing_defaults_fan_out(self, engine) -> None:
        store = build_store(camera("a", zones=["porch"]), camera("b"))
        queries = engine.generate_default_event_query(store, ["a", "b"])
        assert [(q.camera_ids, q.where) for q in queries] == [
            (frozenset({"a"}), frozenset({"porch"})),
            (frozenset({"b"}), None),
        ]

    def test_segments_query_needs_both_bounds(self, engine, store) -> None:
        assert engine.generate_default_recording_segments_query(store, ["front"], start=_T0) is None
        (query,) = engine.generate_default_recording_segments_query(
            store, ["front"], start=_T0, end=_T0 + timedelta(hours=1)
        )
        assert query.camera_ids == {"front"}

    def test_recording_query(self, engine, store) -> None:
        (query,) = engine.generate_default_recording_query(store, ["front"], limit=4)
        assert query.limit == 4


class TestMisc:
    def test_query_result_max_age(self, engine) -> None:
        assert engine.get_query_result_max_age(EventQuery(camera_ids={"a"})) == 60
        assert engine.get_query_result_max_age(RecordingQuery(camera_ids={"a"})) == 60
        assert engine.get_query_result_max_age(MediaMetadataQuery(camera_ids={"a"})) is None

    def test_download_paths(self, engine, store) -> None:
        clip = ViewMedia(
            media_type=MediaType.CLIP, camera_id="front", instance_id="frigate-a", media_id="e1"
        )
        assert engine.get_media_download_path(store, clip).endpoint == (
            "/api/frigate/frigate-a/notifications/e1/clip.mp4?download=true"
        )
        recording = ViewMedia(
            media_type=MediaType.RECORDING,
            camera_id="front",
            instance_id="frigate-a",
            media_id="r1",
            start_time=_T0,
            end_time=_T0 + timedelta(hours=1),
        )
        endpoint = engine.get_media_download_path(store, recording)
        assert endpoint.sign
        assert endpoint.endpoint == (
            f"/api/frigate/frigate-a/recording/front/start/{int(_T0.timestamp())}"
            f"/end/{int(_T0.timestamp()) + 3600}?download=true"
        )

    def test_capabilities(self, engine) -> None:
        clip = ViewMedia(
            media_type=MediaType.SNAPSHOT, camera_id="front", instance_id="i", media_id="e1"
        )
        assert engine.get_media_capabilities(clip).can_favorite
