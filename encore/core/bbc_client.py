"""BBC RMS API client via requests: latest segments, schedules, broadcast segments."""
import json
import logging
import threading
from typing import Any, Optional

import requests

from encore.config import (
    API_BASE_URL,
    FETCH_TIMEOUT_SEC,
    LATEST_SEGMENTS_LIMIT,
    STATION_ID,
    USER_AGENT,
)
from encore.core.errors import MalformedPayloadError, TransportError

logger = logging.getLogger(__name__)


class BBCClient:
    """Thin JSON client. Each call finishes within timeout seconds and raises only MetadataError subclasses."""

    def __init__(
        self,
        station_id: str = STATION_ID,
        base_url: str = API_BASE_URL,
        timeout: float = FETCH_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.station_id = station_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _get_json(self, path: str, params: Optional[dict] = None) -> Any:
        """GET and decode JSON. The whole call, body included, is capped at timeout seconds.

        requests' own timeout only bounds each socket read, so a server that
        trickles bytes could hold a plain get() open indefinitely. The request
        runs on a daemon thread instead; past the deadline the caller gets a
        TransportError and the worker stops at its next chunk.
        """
        url = f"{self.base_url}{path}"
        outcome: dict = {}
        cancelled = threading.Event()

        def run() -> None:
            try:
                outcome["value"] = self._request_json(url, params, cancelled)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=run, name="bbc-request", daemon=True)
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            cancelled.set()
            raise TransportError(f"Timed out after {self.timeout}s: {url}")
        if "error" in outcome:
            raise outcome["error"]
        return outcome["value"]

    def _request_json(self, url: str, params: Optional[dict], cancelled: threading.Event) -> Any:
        try:
            response = self._session.get(
                url, params=params, headers=self._headers, timeout=self.timeout, stream=True
            )
        except requests.Timeout as e:
            raise TransportError(f"Timed out after {self.timeout}s: {url}") from e
        except requests.RequestException as e:
            raise TransportError(f"Request failed: {url}: {e}") from e

        try:
            if not response.ok:
                raise TransportError(
                    f"HTTP {response.status_code}: {response.reason}",
                    status_code=response.status_code,
                )
            chunks = []
            for chunk in response.iter_content(chunk_size=8192):
                if cancelled.is_set():
                    raise TransportError(f"Abandoned after {self.timeout}s: {url}")
                chunks.append(chunk)
        except requests.RequestException as e:
            raise TransportError(f"Request failed: {url}: {e}") from e
        finally:
            response.close()

        try:
            return json.loads(b"".join(chunks))
        except ValueError as e:
            raise MalformedPayloadError(f"Invalid JSON from {url}") from e

    def fetch_latest_segments(self, limit: int = LATEST_SEGMENTS_LIMIT) -> Any:
        """Most recent segments (tracks and speech) for the station."""
        return self._get_json(
            f"/services/{self.station_id}/segments/latest",
            params={"experience": "domestic", "limit": limit},
        )

    def fetch_schedule(self, at: str = "now") -> Any:
        """Schedule around `at` ("now" or an ISO-8601 timestamp)."""
        return self._get_json(
            f"/experience/inline/schedules/{self.station_id}",
            params={"time": at},
        )

    def fetch_version_segments(self, version_id: str) -> Any:
        """All segments of one past broadcast version."""
        return self._get_json(
            f"/versions/{version_id}/segments",
            params={"experience": "domestic"},
        )

    def close(self) -> None:
        self._session.close()
