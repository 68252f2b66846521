"""Core services: metadata store, lookups, upstream client, poller, persistence."""
from encore.core.metadata_service import MetadataService
from encore.core.metadata_store import MetadataStore

__all__ = ["MetadataService", "MetadataStore"]
