"""Retained, time-pruned collections of track and show metadata."""
import logging
import threading
from typing import Dict, Iterable, List, Optional

from encore.models.metadata import ShowEntry, TrackEntry

logger = logging.getLogger(__name__)


class MetadataStore:
    """Tracks and shows keyed by upstream id, pruned by a retention window.

    Entries are never mutated: inserting an id that is already present is a
    no-op, so the first observation of a segment or broadcast wins. Tracks
    are also indexed by broadcast_timestamp for exact-time lookups; the
    index is kept in step with every insert, prune and replace.

    All access goes through one re-entrant lock so a reader never sees a
    half-applied batch.
    """

    def __init__(self, retention_ms: int) -> None:
        self.retention_ms = int(retention_ms)
        self._tracks: Dict[str, TrackEntry] = {}
        self._tracks_by_time: Dict[int, List[TrackEntry]] = {}
        self._shows: Dict[str, ShowEntry] = {}
        self._lock = threading.RLock()

    # Tracks

    def insert_track(self, entry: TrackEntry) -> bool:
        """Insert one track. Returns False (and changes nothing) if its id is known."""
        with self._lock:
            if entry.id in self._tracks:
                return False
            self._tracks[entry.id] = entry
            self._tracks_by_time.setdefault(entry.broadcast_timestamp, []).append(entry)
            return True

    def insert_tracks(self, entries: Iterable[TrackEntry]) -> List[TrackEntry]:
        """Insert a batch atomically. Returns the entries that were new."""
        with self._lock:
            return [e for e in entries if self.insert_track(e)]

    def has_track(self, track_id: str) -> bool:
        with self._lock:
            return track_id in self._tracks

    def tracks(self) -> List[TrackEntry]:
        """Snapshot of all live tracks in insertion order."""
        with self._lock:
            return list(self._tracks.values())

    def tracks_at(self, timestamp: int) -> List[TrackEntry]:
        """Tracks whose broadcast_timestamp equals timestamp exactly."""
        with self._lock:
            return list(self._tracks_by_time.get(timestamp, ()))

    def track_count(self) -> int:
        with self._lock:
            return len(self._tracks)

    def prune_tracks(self, now: int) -> int:
        """Drop tracks with broadcast_timestamp < now - retention. Returns count removed."""
        cutoff = now - self.retention_ms
        with self._lock:
            stale = [e for e in self._tracks.values() if e.broadcast_timestamp < cutoff]
            for entry in stale:
                del self._tracks[entry.id]
                bucket = self._tracks_by_time.get(entry.broadcast_timestamp)
                if bucket is not None:
                    bucket[:] = [e for e in bucket if e.id != entry.id]
                    if not bucket:
                        del self._tracks_by_time[entry.broadcast_timestamp]
        if stale:
            logger.debug("Pruned %d track entries older than %d", len(stale), cutoff)
        return len(stale)

    def replace_tracks(self, entries: Iterable[TrackEntry]) -> int:
        """Swap in a new track collection (e.g. loaded from disk) and rebuild the index."""
        with self._lock:
            self._tracks = {}
            self._tracks_by_time = {}
            for entry in entries:
                self.insert_track(entry)
            return len(self._tracks)

    # Shows

    def insert_show(self, entry: ShowEntry) -> bool:
        """Insert one show. Returns False (and changes nothing) if its id is known."""
        with self._lock:
            if entry.id in self._shows:
                return False
            self._shows[entry.id] = entry
            return True

    def insert_shows(self, entries: Iterable[ShowEntry]) -> List[ShowEntry]:
        with self._lock:
            return [e for e in entries if self.insert_show(e)]

    def shows(self) -> List[ShowEntry]:
        with self._lock:
            return list(self._shows.values())

    def show_count(self) -> int:
        with self._lock:
            return len(self._shows)

    def prune_shows(self, now: int) -> int:
        """Drop shows with end < now - retention. Returns count removed."""
        cutoff = now - self.retention_ms
        with self._lock:
            stale = [s.id for s in self._shows.values() if s.end < cutoff]
            for show_id in stale:
                del self._shows[show_id]
        if stale:
            logger.debug("Pruned %d shows ended before %d", len(stale), cutoff)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._tracks = {}
            self._tracks_by_time = {}
            self._shows = {}

    def time_bounds(self) -> tuple[Optional[int], Optional[int]]:
        """(oldest, newest) broadcast_timestamp among live tracks, or (None, None)."""
        with self._lock:
            if not self._tracks_by_time:
                return None, None
            return min(self._tracks_by_time), max(self._tracks_by_time)
