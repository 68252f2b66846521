"""Persist and load track metadata (JSON). Best effort: never raises."""
import json
import logging
import math
import os
import threading
import time
from pathlib import Path
from typing import Iterable, List

from encore.config import MAX_SAVED_ENTRIES, STATION_ID, TRACK_METADATA_PATH
from encore.core.errors import PersistenceError
from encore.models.metadata import TrackEntry

logger = logging.getLogger(__name__)


def track_to_dict(entry: TrackEntry) -> dict:
    return {
        "id": entry.id,
        "broadcast_timestamp": entry.broadcast_timestamp,
        "stored_at": entry.stored_at,
        "artist": entry.artist,
        "title": entry.title,
        "image_url": entry.image_url,
        "is_now_playing": entry.is_now_playing,
        "duration": entry.duration,
    }


def track_from_dict(item: dict) -> TrackEntry:
    """Raises KeyError, TypeError or ValueError for entries that cannot be trusted."""
    if not isinstance(item, dict):
        raise TypeError(f"Expected an object, got {type(item).__name__}")
    duration = float(item.get("duration") or 0)
    if not math.isfinite(duration) or duration < 0:
        raise ValueError(f"Invalid duration: {duration}")
    return TrackEntry(
        id=str(item["id"]),
        broadcast_timestamp=int(item["broadcast_timestamp"]),
        stored_at=int(item["stored_at"]),
        artist=item["artist"],
        title=item["title"],
        image_url=item.get("image_url"),
        is_now_playing=bool(item.get("is_now_playing", False)),
        duration=duration,
    )


class MetadataPersistence:
    """Single JSON file holding {saved_at, station_id, entries}."""

    def __init__(
        self,
        path: Path = TRACK_METADATA_PATH,
        station_id: str = STATION_ID,
        max_entries: int = MAX_SAVED_ENTRIES,
    ) -> None:
        self.path = Path(path)
        self.station_id = station_id
        self.max_entries = max_entries
        self._write_lock = threading.Lock()

    def _write(self, entries: List[TrackEntry]) -> None:
        newest = sorted(entries, key=lambda e: e.broadcast_timestamp)[-self.max_entries:]
        data = {
            "saved_at": int(time.time() * 1000),
            "station_id": self.station_id,
            "entries": [track_to_dict(e) for e in newest],
        }
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._write_lock:
                tmp.write_text(json.dumps(data), encoding="utf-8")
                os.replace(tmp, self.path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e

    def save(self, entries: Iterable[TrackEntry]) -> bool:
        """Write entries to disk. Returns False on failure (logged)."""
        entries = list(entries)
        try:
            self._write(entries)
        except PersistenceError as e:
            logger.warning("Failed to save metadata: %s", e)
            return False
        logger.debug("Saved %d track metadata entries to disk", min(len(entries), self.max_entries))
        return True

    def save_async(self, entries: Iterable[TrackEntry]) -> threading.Thread:
        """Fire-and-forget save on a daemon thread."""
        thread = threading.Thread(
            target=self.save, args=(list(entries),), name="metadata-save", daemon=True
        )
        thread.start()
        return thread

    def _read(self) -> dict:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"Unexpected content in {self.path}")
        return data

    def load(self) -> List[TrackEntry]:
        """Load saved entries. Missing file, unreadable file, or other station -> []."""
        if not self.path.exists():
            return []
        try:
            data = self._read()
        except PersistenceError as e:
            logger.warning("Failed to load metadata: %s", e)
            return []

        station_id = data.get("station_id")
        if station_id and station_id != self.station_id:
            logger.info(
                "Ignoring saved metadata for station %s (configured: %s)",
                station_id,
                self.station_id,
            )
            return []

        raw = data.get("entries")
        if not isinstance(raw, list):
            return []
        out = []
        for item in raw:
            try:
                out.append(track_from_dict(item))
            except (KeyError, TypeError, ValueError):
                continue
        logger.info("Loaded %d metadata entries from disk", len(out))
        return out
