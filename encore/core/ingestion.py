"""Turn raw upstream payloads into TrackEntry / ShowEntry records.

Parsing is pure: nothing here touches the store. Payloads with the wrong
shape produce zero records rather than errors.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, List, Optional

from encore.config import IMAGE_RECIPE
from encore.models.metadata import ShowEntry, TrackEntry

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_TRACK = "Unknown Track"
MUSIC_SEGMENT = "music"
BROADCAST_SUMMARY = "broadcast_summary"


def format_image_url(url: Optional[str], size: str = IMAGE_RECIPE) -> Optional[str]:
    """Fill the {recipe} placeholder in an image URL; None stays None."""
    if not url:
        return None
    return url.replace("{recipe}", size)


def format_logo_url(
    url: Optional[str],
    type_: str = "colour",
    size: str = "default",
    format_: str = "svg",
) -> Optional[str]:
    """Fill the {type}, {size} and {format} placeholders in a network logo URL."""
    if not url:
        return None
    return url.replace("{type}", type_).replace("{size}", size).replace("{format}", format_)


def parse_iso_timestamp(value: Any) -> Optional[int]:
    """ISO-8601 string -> epoch ms. Naive times are UTC. None if unparseable."""
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _number(value: Any) -> Optional[float]:
    """Finite int/float, else None. The JSON decoder lets Infinity and NaN through."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _segment_duration(offset: dict) -> float:
    start = _number(offset.get("start"))
    end = _number(offset.get("end"))
    if start is None or end is None:
        return 0
    return max(0, end - start)


def _segment_records(payload: Any) -> List[dict]:
    data = _as_dict(payload).get("data")
    if not isinstance(data, list):
        logger.debug("No segment list in API response")
        return []
    return [item for item in data if isinstance(item, dict)]


def _track_from_segment(item: dict, broadcast_timestamp: int, now: int, is_now_playing: bool) -> TrackEntry:
    titles = _as_dict(item.get("titles"))
    return TrackEntry(
        id=str(item["id"]),
        broadcast_timestamp=broadcast_timestamp,
        stored_at=now,
        artist=titles.get("primary") or UNKNOWN_ARTIST,
        title=titles.get("secondary") or UNKNOWN_TRACK,
        image_url=format_image_url(item.get("image_url")),
        is_now_playing=is_now_playing,
        duration=_segment_duration(_as_dict(item.get("offset"))),
    )


def parse_latest_segments(payload: Any, now: int) -> List[TrackEntry]:
    """Music segments from a "latest segments" response.

    The upstream reports each segment's offset in seconds relative to the
    poll, so the on-air time is anchored on now: now - offset.start * 1000.
    """
    entries = []
    for item in _segment_records(payload):
        if item.get("segment_type") != MUSIC_SEGMENT or not item.get("id"):
            continue
        offset = _as_dict(item.get("offset"))
        start = _number(offset.get("start")) or 0
        entries.append(
            _track_from_segment(
                item,
                broadcast_timestamp=int(now - start * 1000),
                now=now,
                is_now_playing=bool(offset.get("now_playing", False)),
            )
        )
    return entries


def parse_version_segments(payload: Any, broadcast_start: int, now: int) -> List[TrackEntry]:
    """Music segments of a past broadcast; offsets count from the broadcast start."""
    entries = []
    for item in _segment_records(payload):
        if item.get("segment_type") != MUSIC_SEGMENT or not item.get("id"):
            continue
        start = _number(_as_dict(item.get("offset")).get("start")) or 0
        entries.append(
            _track_from_segment(
                item,
                broadcast_timestamp=int(broadcast_start + start * 1000),
                now=now,
                is_now_playing=False,
            )
        )
    return entries


def schedule_records(payload: Any) -> List[dict]:
    """Broadcast-summary records nested under data[0].data of a schedule response."""
    data = _as_dict(payload).get("data")
    if not isinstance(data, list) or not data:
        logger.debug("No schedule data in API response")
        return []
    inner = _as_dict(data[0]).get("data")
    if not isinstance(inner, list):
        logger.debug("No schedule data in API response")
        return []
    return [
        item for item in inner
        if isinstance(item, dict) and item.get("type") == BROADCAST_SUMMARY
    ]


def parse_schedule(payload: Any, now: int, fallback_title: str) -> List[ShowEntry]:
    """Shows from a schedule response. Title falls back to the station name."""
    shows = []
    for item in schedule_records(payload):
        show_id = item.get("id")
        start = parse_iso_timestamp(item.get("start"))
        end = parse_iso_timestamp(item.get("end"))
        if not show_id or start is None or end is None:
            logger.debug("Skipping schedule item without id/start/end: %s", show_id)
            continue
        if start > end:
            logger.debug("Skipping schedule item %s: start after end", show_id)
            continue
        titles = _as_dict(item.get("titles"))
        shows.append(
            ShowEntry(
                id=str(show_id),
                start=start,
                end=end,
                title=titles.get("primary") or fallback_title,
                subtitle=titles.get("secondary") or "",
                presenter=titles.get("tertiary") or "",
                synopsis=_as_dict(item.get("synopses")).get("short") or "",
                image_url=format_image_url(item.get("image_url")),
                network_logo_url=format_logo_url(_as_dict(item.get("network")).get("logo_url")),
                stored_at=now,
            )
        )
    return shows
