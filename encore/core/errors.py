class MetadataError(Exception):
    """Base class for all metadata subsystem errors."""

    pass


class TransportError(MetadataError):
    """Network failure, timeout, or non-2xx status from the upstream API."""

    def __init__(self, msg: str, status_code: int | None = None):
        super().__init__(msg)
        self.status_code = status_code


class MalformedPayloadError(MetadataError):
    """Upstream response body could not be decoded as JSON."""

    pass


class PersistenceError(MetadataError):
    """Reading or writing the on-disk track metadata failed."""

    pass
