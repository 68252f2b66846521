"""Shared fixtures: fixed clock, fake upstream client, entry factories."""
import threading

import pytest

from encore.core.metadata_service import MetadataService
from encore.core.metadata_store import MetadataStore
from encore.models.metadata import ShowEntry, TrackEntry

NOW = 1_700_000_000_000
RETENTION_MS = 60 * 60 * 1000


class FakeBBCClient:
    """Stands in for BBCClient. Set a response attribute to an exception to make that call fail."""

    def __init__(self, station_id="bbc_6music"):
        self.station_id = station_id
        self.segments = {"data": []}
        self.schedule = {"data": [{"data": []}]}
        self.schedules_at = {}
        self.version_segments = {}
        self.calls = []
        self.polled = threading.Event()

    def _answer(self, value):
        if isinstance(value, Exception):
            raise value
        return value

    def fetch_latest_segments(self, limit=10):
        self.calls.append("tracks")
        self.polled.set()
        return self._answer(self.segments)

    def fetch_schedule(self, at="now"):
        self.calls.append(("schedule", at))
        if at == "now":
            return self._answer(self.schedule)
        return self._answer(self.schedules_at.get(at, {"data": []}))

    def fetch_version_segments(self, version_id):
        self.calls.append(("version", version_id))
        return self._answer(self.version_segments.get(version_id, {"data": []}))


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store():
    return MetadataStore(RETENTION_MS)


@pytest.fixture
def fake_client():
    return FakeBBCClient()


@pytest.fixture
def make_service(fake_client):
    def _make(**kwargs):
        kwargs.setdefault("client", fake_client)
        kwargs.setdefault("station_id", "bbc_6music")
        kwargs.setdefault("poll_interval_sec", 60)
        kwargs.setdefault("retention_ms", RETENTION_MS)
        kwargs.setdefault("backfill_hours", 0)
        kwargs.setdefault("clock", lambda: NOW)
        return MetadataService(**kwargs)

    return _make


@pytest.fixture
def make_track():
    def _make(track_id, broadcast_timestamp, stored_at=NOW, duration=0, **kwargs):
        return TrackEntry(
            id=track_id,
            broadcast_timestamp=broadcast_timestamp,
            stored_at=stored_at,
            artist=kwargs.get("artist", f"Artist {track_id}"),
            title=kwargs.get("title", f"Track {track_id}"),
            image_url=kwargs.get("image_url"),
            is_now_playing=kwargs.get("is_now_playing", False),
            duration=duration,
        )

    return _make


@pytest.fixture
def make_show():
    def _make(show_id, start, end, title="Show"):
        return ShowEntry(
            id=show_id,
            start=start,
            end=end,
            title=title,
            subtitle="",
            presenter="",
            synopsis="",
            image_url=None,
            network_logo_url=None,
            stored_at=NOW,
        )

    return _make


def segment(seg_id, start=0, end=None, segment_type="music", now_playing=False, **titles):
    """Raw upstream segment record."""
    offset = {"start": start, "now_playing": now_playing}
    if end is not None:
        offset["end"] = end
    return {
        "segment_type": segment_type,
        "id": seg_id,
        "titles": titles,
        "image_url": "https://ichef.bbci.co.uk/images/ic/{recipe}/p0bqcdzf.jpg",
        "offset": offset,
    }


@pytest.fixture
def make_segment():
    return segment
