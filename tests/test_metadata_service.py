import json
import threading
import time
from unittest.mock import MagicMock

from conftest import NOW, RETENTION_MS
from encore.core.errors import MalformedPayloadError, TransportError
from encore.core.ingestion import parse_iso_timestamp
from encore.core.metadata_persistence import MetadataPersistence


def _schedule(*items):
    return {"data": [{"data": list(items)}]}


def _broadcast(show_id, start, end, version_id=None):
    item = {"type": "broadcast_summary", "id": show_id, "start": start, "end": end}
    if version_id:
        item["playable_item"] = {"id": version_id}
    return item


def test_defaults(make_service):
    service = make_service()

    assert service.is_running is False
    assert service.store.track_count() == 0
    assert service.success_count == 0
    assert service.error_count == 0
    assert service.retention_ms == RETENTION_MS


def test_ingest_tracks_dedups_across_batches(make_service, make_segment):
    service = make_service()
    payload = {"data": [make_segment("track1", primary="Artist", secondary="Track", now_playing=True)]}

    assert service.ingest_tracks(payload) == 1
    changed = {"data": [make_segment("track1", primary="Other", secondary="Changed")]}
    assert service.ingest_tracks(changed) == 0

    tracks = service.store.tracks()
    assert len(tracks) == 1
    assert tracks[0].artist == "Artist"


def test_ingest_tracks_prunes_and_saves_when_new(make_service, make_segment, make_track):
    persistence = MagicMock()
    service = make_service(persistence=persistence)
    service.store.insert_track(make_track("ancient", NOW - RETENTION_MS - 1))

    service.ingest_tracks({"data": [make_segment("fresh")]})

    assert [t.id for t in service.store.tracks()] == ["fresh"]
    persistence.save_async.assert_called_once()
    saved = persistence.save_async.call_args[0][0]
    assert [t.id for t in saved] == ["fresh"]


def test_ingest_tracks_without_new_entries_skips_prune_and_save(make_service, make_segment, make_track):
    persistence = MagicMock()
    service = make_service(persistence=persistence)
    service.store.insert_track(make_track("ancient", NOW - RETENTION_MS - 1))

    service.ingest_tracks({"data": [make_segment("x", segment_type="speech")]})

    assert service.store.has_track("ancient")
    persistence.save_async.assert_not_called()


def test_now_playing_listener_fires_for_new_entries_only(make_service, make_segment):
    service = make_service()
    heard = []
    service.add_now_playing_listener(heard.append)
    payload = {"data": [make_segment("a", now_playing=True), make_segment("b", start=200)]}

    service.ingest_tracks(payload)
    service.ingest_tracks(payload)

    assert [t.id for t in heard] == ["a"]


def test_failing_listener_does_not_break_ingestion(make_service, make_segment):
    service = make_service()

    def boom(track):
        raise RuntimeError("ui gone")

    heard = []
    service.add_now_playing_listener(boom)
    service.add_now_playing_listener(heard.append)

    assert service.ingest_tracks({"data": [make_segment("a", now_playing=True)]}) == 1
    assert len(heard) == 1


def test_ingest_shows_prunes_even_without_new_shows(make_service, make_show):
    service = make_service()
    cutoff = NOW - RETENTION_MS
    service.store.insert_show(make_show("old", cutoff - 10000, cutoff - 1))

    assert service.ingest_shows(_schedule()) == 0
    assert service.store.show_count() == 0


def test_poll_once_success(make_service, fake_client, make_segment):
    fake_client.segments = {"data": [make_segment("a"), make_segment("b", start=240)]}
    fake_client.schedule = _schedule(
        _broadcast("show1", "2023-11-14T22:00:00Z", "2023-11-14T23:00:00Z")
    )
    service = make_service()

    result = service.poll_once()

    assert result.ok
    assert result.tracks.added == 2
    assert result.schedule.added == 1
    assert service.success_count == 2
    assert service.error_count == 0
    assert service.last_poll_time == NOW
    assert service.show_at(NOW).id == "show1"


def test_track_failure_does_not_affect_schedule(make_service, fake_client):
    fake_client.segments = TransportError("HTTP 503: Service Unavailable", status_code=503)
    fake_client.schedule = _schedule(
        _broadcast("show1", "2023-11-14T22:00:00Z", "2023-11-14T23:00:00Z")
    )
    service = make_service()

    result = service.poll_once()

    assert result.tracks.ok is False
    assert "503" in result.tracks.error
    assert result.schedule.ok is True
    assert service.store.show_count() == 1
    assert service.error_count == 1
    assert service.success_count == 1
    assert service.last_poll_time is None
    assert service.consecutive_failures == 1


def test_poll_failures_are_contained(make_service, fake_client):
    fake_client.segments = RuntimeError("boom")
    fake_client.schedule = MalformedPayloadError("Invalid JSON")
    service = make_service()

    service.poll_once()
    result = service.poll_once()

    assert result.ok is False
    assert service.error_count == 4
    assert service.consecutive_failures == 2
    assert service.stats().last_error is not None

    fake_client.segments = {"data": []}
    fake_client.schedule = _schedule()
    assert service.poll_once().ok
    assert service.consecutive_failures == 0


def test_track_and_schedule_fetches_run_concurrently(make_service, fake_client):
    # The track fetch only returns once the schedule fetch has started
    schedule_started = threading.Event()
    fetch_schedule = fake_client.fetch_schedule

    def fetch_latest_segments(limit=10):
        assert schedule_started.wait(5.0), "schedule fetch never started"
        return {"data": []}

    def fetch_schedule_and_signal(at="now"):
        schedule_started.set()
        return fetch_schedule(at)

    fake_client.fetch_latest_segments = fetch_latest_segments
    fake_client.fetch_schedule = fetch_schedule_and_signal
    service = make_service()
    results = []

    cycle = threading.Thread(target=lambda: results.append(service.poll_once()), daemon=True)
    cycle.start()
    cycle.join(timeout=10.0)

    assert not cycle.is_alive()
    assert results[0].tracks.ok
    assert results[0].schedule.ok


def test_slow_track_fetch_does_not_hold_back_schedule(make_service, fake_client):
    release = threading.Event()
    fake_client.schedule = _schedule(
        _broadcast("show1", "2023-11-14T22:00:00Z", "2023-11-14T23:00:00Z")
    )

    def slow_latest_segments(limit=10):
        release.wait(5.0)
        return {"data": []}

    fake_client.fetch_latest_segments = slow_latest_segments
    service = make_service()

    cycle = threading.Thread(target=service.poll_once, daemon=True)
    cycle.start()
    try:
        deadline = time.monotonic() + 2.0
        while service.store.show_count() == 0 and time.monotonic() < deadline:
            time.sleep(0.01)

        assert service.show_at(NOW).id == "show1"
        assert cycle.is_alive()
    finally:
        release.set()
    cycle.join(timeout=5.0)
    assert not cycle.is_alive()


def test_non_finite_offsets_do_not_break_queries(make_service, fake_client):
    fake_client.segments = json.loads(
        '{"data": ['
        '{"segment_type": "music", "id": "inf", "offset": {"start": 10, "end": Infinity}},'
        '{"segment_type": "music", "id": "nan", "offset": {"start": NaN}}'
        ']}'
    )
    service = make_service()

    result = service.poll_once()

    assert result.tracks.ok
    assert result.tracks.added == 2
    assert [t.id for t in service.tracks_in_range(NOW - 60000, NOW)] == ["inf", "nan"]
    assert service.nearest_track(NOW, 60000) is not None
    assert service.current_track().id == "nan"


def test_start_is_idempotent_and_polls_immediately(make_service, fake_client):
    service = make_service(poll_interval_sec=60)

    service.start()
    try:
        thread = service._scheduler_thread
        service.start()
        assert service._scheduler_thread is thread
        assert service.is_running is True
        assert fake_client.polled.wait(timeout=2.0)
    finally:
        service.stop()

    assert service.is_running is False
    assert service._scheduler_thread is None


def test_start_polls_on_interval(make_service, fake_client):
    service = make_service(poll_interval_sec=0.05)

    service.start()
    deadline = time.monotonic() + 2.0
    while fake_client.calls.count("tracks") < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    service.stop()

    assert fake_client.calls.count("tracks") >= 3


def test_stop_keeps_existing_entries_queryable(make_service, make_track):
    service = make_service()
    service.store.insert_track(make_track("a", NOW - 1000))

    service.start()
    service.stop()

    assert service.current_track().id == "a"
    assert service.nearest_track(NOW).id == "a"


def test_stats(make_service, make_track):
    service = make_service()
    service.store.insert_tracks([make_track("1", NOW - 100000), make_track("2", NOW - 200000)])

    stats = service.stats()

    assert stats.is_running is False
    assert stats.station_id == "bbc_6music"
    assert stats.stored_entries == 2
    assert stats.oldest_entry == NOW - 200000
    assert stats.newest_entry == NOW - 100000
    assert stats.success_count == 0
    assert stats.error_count == 0


def test_station_info(make_service):
    info = make_service().station_info()

    assert info.id == "bbc_6music"
    assert info.name == "BBC Radio 6 Music"
    assert "bbc_6music" in info.logo_url


def test_station_info_for_unknown_station(make_service):
    info = make_service(station_id="bbc_radio_one").station_info()

    assert info.id == "bbc_radio_one"
    assert "bbc_radio_one" in info.logo_url


def test_backfill_inserts_recent_broadcast_tracks(make_service, fake_client, make_segment):
    fake_client.schedules_at["2023-11-14T22:13:20Z"] = _schedule(
        _broadcast("recent", "2023-11-14T21:30:00Z", "2023-11-14T23:00:00Z", version_id="v1"),
        _broadcast("expired", "2023-11-14T19:00:00Z", "2023-11-14T21:00:00Z", version_id="v0"),
        _broadcast("no-version", "2023-11-14T21:00:00Z", "2023-11-14T21:30:00Z"),
    )
    fake_client.version_segments["v1"] = {
        "data": [
            # Cutoff is 21:13:20; both music segments air after it
            make_segment("late", start=1200, end=1380),
            make_segment("early", start=0, end=180),
            make_segment("talk", start=600, segment_type="speech"),
        ]
    }
    service = make_service(backfill_hours=2)

    added = service.backfill()

    assert added == 2
    broadcast_start = parse_iso_timestamp("2023-11-14T21:30:00Z")
    late = service.store.tracks_at(broadcast_start + 1200000)
    assert [t.id for t in late] == ["late"]
    assert ("version", "v0") not in fake_client.calls
    assert service.store.has_track("talk") is False


def test_backfill_skips_tracks_before_cutoff(make_service, fake_client, make_segment):
    fake_client.schedules_at["2023-11-14T22:13:20Z"] = _schedule(
        _broadcast("long", "2023-11-14T20:00:00Z", "2023-11-14T22:30:00Z", version_id="v1"),
    )
    fake_client.version_segments["v1"] = {
        "data": [make_segment("too-old", start=0), make_segment("kept", start=2 * 3600)]
    }
    service = make_service(backfill_hours=1)

    assert service.backfill() == 1
    assert service.store.has_track("kept")
    assert not service.store.has_track("too-old")


def test_backfill_never_raises(make_service, fake_client):
    fake_client.schedules_at["2023-11-14T22:13:20Z"] = _schedule(
        _broadcast("recent", "2023-11-14T21:30:00Z", "2023-11-14T23:00:00Z", version_id="v1"),
    )
    fake_client.version_segments["v1"] = TransportError("HTTP 500: Internal Server Error", status_code=500)
    service = make_service(backfill_hours=3)

    assert service.backfill() == 0


def test_load_from_disk(make_service, make_track, tmp_path):
    persistence = MetadataPersistence(path=tmp_path / "track-metadata.json", station_id="bbc_6music")
    persistence.save([make_track("kept", NOW - 1000), make_track("stale", NOW - RETENTION_MS - 1)])
    service = make_service(persistence=persistence)

    assert service.load_from_disk() == 1
    assert service.current_track().id == "kept"
    assert service.store.tracks_at(NOW - 1000)[0].id == "kept"
