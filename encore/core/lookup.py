"""Time-based queries over the metadata store.

Every function here is total: a missing, boolean, NaN or otherwise
non-numeric timestamp yields no result instead of raising.
"""
import math
from typing import Any, List, Optional

from encore.config import DEFAULT_TOLERANCE_MS
from encore.core.metadata_store import MetadataStore
from encore.models.metadata import ShowEntry, TrackEntry


def coerce_timestamp(value: Any) -> Optional[float]:
    """Return value as a finite float (epoch ms), or None if it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(ts):
        return None
    return ts


def nearest_track(
    store: MetadataStore,
    timestamp: Any,
    tolerance: Any = DEFAULT_TOLERANCE_MS,
) -> Optional[TrackEntry]:
    """Track whose broadcast_timestamp is closest to timestamp, within tolerance (inclusive).

    Ties go to the earliest stored_at, then the earliest broadcast_timestamp,
    then the lowest id.
    """
    ts = coerce_timestamp(timestamp)
    tol = coerce_timestamp(tolerance)
    if ts is None or tol is None or tol < 0:
        return None

    best: Optional[TrackEntry] = None
    best_key = None
    for entry in store.tracks():
        distance = abs(entry.broadcast_timestamp - ts)
        if distance > tol:
            continue
        key = (distance, entry.stored_at, entry.broadcast_timestamp, entry.id)
        if best_key is None or key < best_key:
            best, best_key = entry, key
    return best


def track_playing_at(store: MetadataStore, timestamp: Any) -> Optional[TrackEntry]:
    """Track whose [broadcast_timestamp, end_timestamp] contains timestamp; latest start wins."""
    ts = coerce_timestamp(timestamp)
    if ts is None:
        return None
    candidates = [
        e for e in store.tracks() if e.broadcast_timestamp <= ts <= e.end_timestamp
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda e: (e.broadcast_timestamp, -e.stored_at))


def tracks_in_range(store: MetadataStore, start_time: Any, end_time: Any) -> List[TrackEntry]:
    """Tracks whose airing interval overlaps [start_time, end_time], oldest first.

    A track covers [broadcast_timestamp, end_timestamp]; for a zero-duration
    track that is just its broadcast_timestamp.
    """
    start = coerce_timestamp(start_time)
    end = coerce_timestamp(end_time)
    if start is None or end is None or start > end:
        return []
    hits = [
        e for e in store.tracks()
        if e.broadcast_timestamp <= end and e.end_timestamp >= start
    ]
    hits.sort(key=lambda e: (e.broadcast_timestamp, e.stored_at))
    return hits


def current_track(store: MetadataStore) -> Optional[TrackEntry]:
    """Most recently started track (max broadcast_timestamp), earliest stored_at on ties."""
    entries = store.tracks()
    if not entries:
        return None
    return max(entries, key=lambda e: (e.broadcast_timestamp, -e.stored_at))


def show_at(store: MetadataStore, timestamp: Any) -> Optional[ShowEntry]:
    """First show (insertion order) whose [start, end] contains timestamp."""
    ts = coerce_timestamp(timestamp)
    if ts is None:
        return None
    for show in store.shows():
        if show.start <= ts <= show.end:
            return show
    return None
