"""Track, show and station metadata, plus poll outcomes."""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TrackEntry:
    """One music segment with its estimated on-air time (epoch ms)."""
    id: str
    broadcast_timestamp: int
    stored_at: int
    artist: str
    title: str
    image_url: Optional[str]
    is_now_playing: bool
    duration: float  # seconds

    @property
    def end_timestamp(self) -> int:
        return self.broadcast_timestamp + int(self.duration * 1000)


@dataclass(frozen=True)
class ShowEntry:
    """One broadcast from the station schedule; start/end are epoch ms."""
    id: str
    start: int
    end: int
    title: str
    subtitle: str
    presenter: str
    synopsis: str
    image_url: Optional[str]
    network_logo_url: Optional[str]
    stored_at: int


@dataclass(frozen=True)
class StationInfo:
    """Static station descriptor."""
    id: str
    name: str
    short_name: str
    logo_url: str


@dataclass
class FetchOutcome:
    """Result of one upstream fetch inside a poll cycle."""
    source: str  # "tracks" | "schedule"
    ok: bool
    added: int = 0
    error: Optional[str] = None


@dataclass
class PollCycleResult:
    tracks: FetchOutcome
    schedule: FetchOutcome

    @property
    def ok(self) -> bool:
        return self.tracks.ok and self.schedule.ok


@dataclass
class MetadataStats:
    """Observability snapshot of the metadata service."""
    is_running: bool
    station_id: str
    stored_entries: int
    stored_shows: int
    last_poll_time: Optional[int]
    success_count: int
    error_count: int
    consecutive_failures: int
    last_error: Optional[str] = None
    oldest_entry: Optional[int] = None
    newest_entry: Optional[int] = None
