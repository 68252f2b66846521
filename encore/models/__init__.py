"""Data models for tracks, shows and poll outcomes."""
from encore.models.metadata import (
    FetchOutcome,
    MetadataStats,
    PollCycleResult,
    ShowEntry,
    StationInfo,
    TrackEntry,
)

__all__ = [
    "TrackEntry",
    "ShowEntry",
    "StationInfo",
    "FetchOutcome",
    "PollCycleResult",
    "MetadataStats",
]
