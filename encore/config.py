"""Configuration: env, data paths, upstream API and polling settings."""
import os
from pathlib import Path

from dotenv import load_dotenv

# Base paths (project root = parent of encore package)
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from project root so ENCORE_STATION_ID etc. are set
load_dotenv(BASE_DIR / ".env")

DATA_DIR = Path(os.getenv("ENCORE_DATA_DIR", str(BASE_DIR / "data")))
TRACK_METADATA_PATH = DATA_DIR / "track-metadata.json"

# API
API_HOST = os.getenv("ENCORE_API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("ENCORE_API_PORT", "8000"))

# Upstream metadata API (BBC RMS)
API_BASE_URL = os.getenv("ENCORE_API_BASE_URL", "https://rms.api.bbc.co.uk/v2")
STATION_ID = os.getenv("ENCORE_STATION_ID", "bbc_6music")
USER_AGENT = "encore.fm/1.0"
FETCH_TIMEOUT_SEC = float(os.getenv("ENCORE_FETCH_TIMEOUT_SEC", "10"))
LATEST_SEGMENTS_LIMIT = 10

# Polling
POLL_INTERVAL_SEC = float(os.getenv("ENCORE_POLL_INTERVAL_SEC", "30"))
# Hours of past schedule to walk on startup; 0 disables backfill
BACKFILL_HOURS = int(os.getenv("ENCORE_BACKFILL_HOURS", "9"))

# Retention follows the audio buffer so metadata lives as long as the audio it describes
BUFFER_DURATION_SEC = float(os.getenv("ENCORE_BUFFER_DURATION_SEC", str(8.5 * 60 * 60)))
RETENTION_SEC = float(os.getenv("ENCORE_RETENTION_SEC", str(BUFFER_DURATION_SEC)))

# Lookup / ingestion
DEFAULT_TOLERANCE_MS = 5 * 60 * 1000
IMAGE_RECIPE = "400x400"
MAX_SAVED_ENTRIES = 1000


def ensure_data_dir() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
