"""Application state owned by the FastAPI app (injected into routes)."""
from fastapi import Request

from encore.core.bbc_client import BBCClient
from encore.core.metadata_persistence import MetadataPersistence
from encore.core.metadata_service import MetadataService


class AppState:
    def __init__(self, metadata_service: MetadataService | None = None) -> None:
        if metadata_service is None:
            client = BBCClient()
            metadata_service = MetadataService(
                client=client,
                persistence=MetadataPersistence(station_id=client.station_id),
                station_id=client.station_id,
            )
        self.metadata_service = metadata_service

    def start(self) -> None:
        self.metadata_service.load_from_disk()
        self.metadata_service.start()

    def stop(self) -> None:
        self.metadata_service.stop()


def get_state(request: Request) -> AppState:
    return request.app.state.encore
