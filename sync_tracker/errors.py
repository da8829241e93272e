"""Error taxonomy for the tracker, the sync client and the log shipper."""


class SyncTrackerError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(SyncTrackerError):
    pass


class SyncClientError(SyncTrackerError):
    """Raised by SyncClient operations."""


class TransportError(SyncClientError):
    """An HTTP request failed after all retries, or was rejected."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class AuthError(SyncClientError):
    pass


class OpenError(SyncClientError):
    pass


class WriteError(SyncClientError):
    pass


class SyncError(SyncClientError):
    pass


class AuthUnavailable(SyncTrackerError):
    """No valid credential could be established for the log store."""


class SessionUnavailable(SyncTrackerError):
    """Authenticated, but no usable log store could be opened."""
