"""Error taxonomy for the sync layer."""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base class for sync layer errors."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class NetworkError(SyncError):
    """Connection failure, timeout, abort or exhausted retries.

    Always recoverable by queueing; never surfaced to the end user as a failure.
    """


class ValidationError(SyncError):
    """The remote API rejected the request (4xx). Never retried."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: Any = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message, original_error)
        self.status_code = status_code
        self.details = details


class NotFoundError(SyncError):
    """A local operation referenced an unknown record id."""

    def __init__(self, record_type: str, record_id: str):
        super().__init__(f"Unknown {record_type} id: {record_id}")
        self.record_type = record_type
        self.record_id = record_id


class StorageError(SyncError):
    """The local store could not be read or written."""
