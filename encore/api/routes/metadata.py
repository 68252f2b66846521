"""Track/show metadata lookups for the delayed player.

Query parameters are passed through as received; the lookups treat missing
or non-numeric values as "no match", so these routes answer null or [] for
bad input instead of an error status.
"""
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends

from encore.api.state import AppState, get_state
from encore.config import DEFAULT_TOLERANCE_MS
from encore.core.metadata_persistence import track_to_dict
from encore.core.metadata_service import now_ms
from encore.models.metadata import ShowEntry, TrackEntry

router = APIRouter()


def _track_to_dict(t: Optional[TrackEntry]):
    return None if t is None else track_to_dict(t)


def _show_to_dict(s: Optional[ShowEntry]):
    if s is None:
        return None
    return {
        "id": s.id,
        "start": s.start,
        "end": s.end,
        "title": s.title,
        "subtitle": s.subtitle,
        "presenter": s.presenter,
        "synopsis": s.synopsis,
        "image_url": s.image_url,
        "network_logo_url": s.network_logo_url,
    }


@router.get("/current")
def get_current(playback_time: Optional[str] = None, state: AppState = Depends(get_state)):
    """Track at the listener's playback position if given, else the most recent track."""
    service = state.metadata_service
    if playback_time is None:
        return _track_to_dict(service.current_track())
    return _track_to_dict(service.nearest_track(playback_time, DEFAULT_TOLERANCE_MS))


@router.get("/at")
def get_at(
    timestamp: Optional[str] = None,
    tolerance: Optional[str] = None,
    state: AppState = Depends(get_state),
):
    """Nearest track to timestamp (epoch ms) within tolerance (ms, default 5 min)."""
    tol = DEFAULT_TOLERANCE_MS if tolerance is None else tolerance
    return _track_to_dict(state.metadata_service.nearest_track(timestamp, tol))


@router.get("/range")
def get_range(
    start: Optional[str] = None,
    end: Optional[str] = None,
    state: AppState = Depends(get_state),
):
    """Tracks airing between start and end (epoch ms), oldest first."""
    return [_track_to_dict(t) for t in state.metadata_service.tracks_in_range(start, end)]


@router.get("/show")
def get_show(timestamp: Optional[str] = None, state: AppState = Depends(get_state)):
    """Show on air at timestamp (default: now)."""
    ts = now_ms() if timestamp is None else timestamp
    return _show_to_dict(state.metadata_service.show_at(ts))


@router.get("/stats")
def get_stats(state: AppState = Depends(get_state)):
    return asdict(state.metadata_service.stats())


@router.get("/station")
def get_station(state: AppState = Depends(get_state)):
    return asdict(state.metadata_service.station_info())
