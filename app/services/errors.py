"""Sync pipeline error taxonomy.

Only AuthError and UpstreamError abort a run; the rest are tallied per record.
"""

from typing import Any


class SyncError(Exception):
    """Base exception for the sync pipeline."""
    pass


class AuthError(SyncError):
    """Upstream credential could not be obtained."""

    def __init__(self, message: str, *, status_code: int | None = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class UpstreamError(SyncError):
    """An upstream fetch failed; carries the HTTP status and (capped) body."""

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RecordValidationError(SyncError):
    """A single raw record is malformed."""

    def __init__(self, message: str, *, key: str | None = None):
        super().__init__(message)
        self.key = key


class EnrichmentError(SyncError):
    """Geocode lookup failed or returned nothing usable."""
    pass


class StorageError(SyncError):
    """A single store operation failed."""
    pass


class NotificationError(SyncError):
    """Webhook delivery failed."""
    pass
