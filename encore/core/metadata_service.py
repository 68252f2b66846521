"""Metadata poller: fetches now-playing tracks and the schedule on a fixed interval.

Completely independent of audio delivery. Any failure in a poll cycle is
logged and counted here and never leaves this module.
"""
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from encore.config import (
    BACKFILL_HOURS,
    DEFAULT_TOLERANCE_MS,
    POLL_INTERVAL_SEC,
    RETENTION_SEC,
    STATION_ID,
)
from encore.core import lookup
from encore.core.bbc_client import BBCClient
from encore.core.ingestion import (
    parse_iso_timestamp,
    parse_latest_segments,
    parse_schedule,
    parse_version_segments,
    schedule_records,
)
from encore.core.metadata_persistence import MetadataPersistence
from encore.core.metadata_store import MetadataStore
from encore.models.metadata import (
    FetchOutcome,
    MetadataStats,
    PollCycleResult,
    ShowEntry,
    StationInfo,
    TrackEntry,
)

logger = logging.getLogger(__name__)

STATIONS = {
    "bbc_6music": StationInfo(
        id="bbc_6music",
        name="BBC Radio 6 Music",
        short_name="Radio 6 Music",
        logo_url="https://sounds.files.bbci.co.uk/3.9.4/networks/bbc_6music/colour_default.svg",
    ),
}

SCHEDULER_JOIN_TIMEOUT_SEC = 2.0
HOUR_MS = 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


def station_info_for(station_id: str) -> StationInfo:
    """Static descriptor for a known station, or one derived from the id."""
    info = STATIONS.get(station_id)
    if info is not None:
        return info
    name = station_id.replace("_", " ").strip() or station_id
    return StationInfo(
        id=station_id,
        name=name,
        short_name=name,
        logo_url=f"https://sounds.files.bbci.co.uk/3.9.4/networks/{station_id}/colour_default.svg",
    )


class MetadataService:
    """Owns the store, the poll schedule and the query surface for one station."""

    def __init__(
        self,
        client: Optional[BBCClient] = None,
        store: Optional[MetadataStore] = None,
        persistence: Optional[MetadataPersistence] = None,
        station_id: str = STATION_ID,
        poll_interval_sec: float = POLL_INTERVAL_SEC,
        retention_ms: Optional[int] = None,
        backfill_hours: int = BACKFILL_HOURS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.station_id = station_id
        self.poll_interval_sec = poll_interval_sec
        self.retention_ms = int(retention_ms if retention_ms is not None else RETENTION_SEC * 1000)
        self.backfill_hours = backfill_hours
        self._clock = clock
        self._client = client or BBCClient(station_id=station_id)
        self._store = store or MetadataStore(self.retention_ms)
        self._persistence = persistence
        self._station_info = station_info_for(station_id)

        self._now_playing_listeners: List[Callable[[TrackEntry], None]] = []

        self._state_lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._scheduler_thread: Optional[threading.Thread] = None
        self._running = False

        self._counter_lock = threading.Lock()
        self.success_count = 0
        self.error_count = 0
        self.consecutive_failures = 0
        self.last_poll_time: Optional[int] = None
        self.last_error: Optional[str] = None

        logger.info("Metadata service initialized for station: %s", station_id)

    @property
    def store(self) -> MetadataStore:
        return self._store

    @property
    def is_running(self) -> bool:
        return self._running

    # Lifecycle

    def start(self) -> None:
        """Poll once right away, then every poll_interval_sec on a daemon thread."""
        with self._state_lock:
            if self._running:
                logger.warning("Metadata service already running")
                return
            self._running = True
            self._stop_event = threading.Event()
            self._scheduler_thread = threading.Thread(
                target=self._schedule_loop,
                args=(self._stop_event,),
                name="metadata-scheduler",
                daemon=True,
            )
            self._scheduler_thread.start()

        if self.backfill_hours > 0:
            threading.Thread(target=self.backfill, name="metadata-backfill", daemon=True).start()
        logger.info("Metadata service started (interval %.1fs)", self.poll_interval_sec)

    def stop(self) -> None:
        """Stop scheduling new cycles. In-flight fetches and saves are left to finish."""
        with self._state_lock:
            if self._stop_event is not None:
                self._stop_event.set()
            thread = self._scheduler_thread
            self._stop_event = None
            self._scheduler_thread = None
            self._running = False
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=SCHEDULER_JOIN_TIMEOUT_SEC)
        logger.info("Metadata service stopped")

    def _schedule_loop(self, stop_event: threading.Event) -> None:
        """Fire a cycle now and then on every tick. A slow cycle does not hold back the next tick."""
        self._spawn_cycle()
        while not stop_event.wait(timeout=self.poll_interval_sec):
            self._spawn_cycle()

    def _spawn_cycle(self) -> None:
        threading.Thread(target=self.poll_once, name="metadata-poll", daemon=True).start()

    # Poll cycle

    def poll_once(self) -> PollCycleResult:
        """Run the track and schedule fetches concurrently. Never raises."""
        outcomes: dict[str, FetchOutcome] = {}

        def run(source: str, fetch: Callable[[], int]) -> None:
            outcomes[source] = self._run_fetch(source, fetch)

        workers = [
            threading.Thread(target=run, args=("tracks", self._poll_tracks), daemon=True),
            threading.Thread(target=run, args=("schedule", self._poll_schedule), daemon=True),
        ]
        for w in workers:
            w.start()
        for w in workers:
            w.join()

        result = PollCycleResult(
            tracks=outcomes.get("tracks") or FetchOutcome("tracks", ok=False, error="fetch did not complete"),
            schedule=outcomes.get("schedule") or FetchOutcome("schedule", ok=False, error="fetch did not complete"),
        )
        with self._counter_lock:
            if result.ok:
                self.consecutive_failures = 0
            else:
                self.consecutive_failures += 1
        return result

    def _run_fetch(self, source: str, fetch: Callable[[], int]) -> FetchOutcome:
        try:
            added = fetch()
        except Exception as e:
            with self._counter_lock:
                self.error_count += 1
                self.last_error = f"{source}: {e}"
                count = self.error_count
            logger.warning("Metadata %s poll failed (error #%d): %s", source, count, e)
            return FetchOutcome(source, ok=False, error=str(e))
        with self._counter_lock:
            self.success_count += 1
        return FetchOutcome(source, ok=True, added=added)

    def _poll_tracks(self) -> int:
        payload = self._client.fetch_latest_segments()
        added = self.ingest_tracks(payload)
        with self._counter_lock:
            self.last_poll_time = self._clock()
        return added

    def _poll_schedule(self) -> int:
        payload = self._client.fetch_schedule()
        return self.ingest_shows(payload)

    # Ingestion

    def ingest_tracks(self, payload: Any, now: Optional[int] = None) -> int:
        """Parse a latest-segments payload into the store. Returns number of new tracks."""
        now = self._clock() if now is None else now
        new_entries = self._store.insert_tracks(parse_latest_segments(payload, now))
        for entry in new_entries:
            if entry.is_now_playing:
                self._notify_now_playing(entry)
        if new_entries:
            logger.debug("Stored %d new metadata entries", len(new_entries))
            self._after_tracks_added(now)
        return len(new_entries)

    def ingest_shows(self, payload: Any, now: Optional[int] = None) -> int:
        """Parse a schedule payload into the store, then prune shows. Returns number of new shows."""
        now = self._clock() if now is None else now
        new_shows = self._store.insert_shows(
            parse_schedule(payload, now, fallback_title=self._station_info.name)
        )
        self._store.prune_shows(now)
        return len(new_shows)

    def _after_tracks_added(self, now: int) -> None:
        self._store.prune_tracks(now)
        if self._persistence is not None:
            self._persistence.save_async(self._store.tracks())

    def add_now_playing_listener(self, callback: Callable[[TrackEntry], None]) -> None:
        """Register callback(track) for newly stored now-playing tracks."""
        self._now_playing_listeners.append(callback)

    def _notify_now_playing(self, entry: TrackEntry) -> None:
        for callback in list(self._now_playing_listeners):
            try:
                callback(entry)
            except Exception as e:
                logger.warning("Now-playing listener failed: %s", e)

    # Backfill

    def backfill(self) -> int:
        """Load tracks of broadcasts aired within the retention window. Never raises."""
        logger.info("Starting historical track backfill...")
        try:
            total = self._backfill()
        except Exception as e:
            logger.warning("Historical track backfill failed: %s", e)
            return 0
        if total > 0:
            logger.info("Backfilled %d historical tracks", total)
        else:
            logger.info("No new historical tracks to backfill")
        return total

    def _backfill(self) -> int:
        now = self._clock()
        cutoff = now - self.retention_ms
        seen_versions = set()
        total = 0
        for hours_ago in range(self.backfill_hours):
            target = datetime.fromtimestamp((now - hours_ago * HOUR_MS) / 1000, tz=timezone.utc)
            try:
                payload = self._client.fetch_schedule(at=target.isoformat().replace("+00:00", "Z"))
            except Exception as e:
                logger.debug("Backfill schedule for %s failed: %s", target.isoformat(), e)
                continue
            for broadcast in schedule_records(payload):
                version_id = (broadcast.get("playable_item") or {}).get("id")
                start = parse_iso_timestamp(broadcast.get("start"))
                end = parse_iso_timestamp(broadcast.get("end"))
                if not version_id or version_id in seen_versions or start is None or end is None:
                    continue
                if end < cutoff:
                    continue
                seen_versions.add(version_id)
                try:
                    segments = self._client.fetch_version_segments(version_id)
                except Exception as e:
                    logger.debug("Backfill segments for %s failed: %s", version_id, e)
                    continue
                entries = [
                    e for e in parse_version_segments(segments, start, now)
                    if e.broadcast_timestamp >= cutoff
                ]
                total += len(self._store.insert_tracks(entries))
        if total > 0:
            self._after_tracks_added(now)
        return total

    # Persistence

    def load_from_disk(self) -> int:
        """Replace stored tracks with the persisted ones (pruned). Returns count kept."""
        if self._persistence is None:
            return 0
        entries = self._persistence.load()
        if not entries:
            return 0
        self._store.replace_tracks(entries)
        self._store.prune_tracks(self._clock())
        return self._store.track_count()

    # Query surface

    def current_track(self) -> Optional[TrackEntry]:
        return lookup.current_track(self._store)

    def nearest_track(self, timestamp: Any, tolerance: Any = DEFAULT_TOLERANCE_MS) -> Optional[TrackEntry]:
        return lookup.nearest_track(self._store, timestamp, tolerance)

    def track_playing_at(self, timestamp: Any) -> Optional[TrackEntry]:
        return lookup.track_playing_at(self._store, timestamp)

    def tracks_in_range(self, start_time: Any, end_time: Any) -> List[TrackEntry]:
        return lookup.tracks_in_range(self._store, start_time, end_time)

    def show_at(self, timestamp: Any) -> Optional[ShowEntry]:
        return lookup.show_at(self._store, timestamp)

    def station_info(self) -> StationInfo:
        return self._station_info

    def stats(self) -> MetadataStats:
        oldest, newest = self._store.time_bounds()
        with self._counter_lock:
            return MetadataStats(
                is_running=self._running,
                station_id=self.station_id,
                stored_entries=self._store.track_count(),
                stored_shows=self._store.show_count(),
                last_poll_time=self.last_poll_time,
                success_count=self.success_count,
                error_count=self.error_count,
                consecutive_failures=self.consecutive_failures,
                last_error=self.last_error,
                oldest_entry=oldest,
                newest_entry=newest,
            )
