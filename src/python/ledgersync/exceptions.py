"""Custom exception types for ledgersync."""

from __future__ import annotations

from typing import Any


class NotFoundError(Exception):
    """Raised when a requested record does not exist."""


class QueueStorageError(Exception):
    """Raised when the local queue or snapshot store cannot be written or read."""


class SyncInProgressError(Exception):
    """Raised when a sync is requested while another one is still outstanding."""


class SyncTransportError(Exception):
    """Raised when the push endpoint cannot be reached or answers with a server error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteValidationError(Exception):
    """Raised when the push endpoint rejects the batch as invalid input."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class BatchValidationError(Exception):
    """Raised when a record in a pushed batch fails validation.

    ``details`` identifies the offending record: entity type, position in its
    bucket, record id (when present) and field.
    """

    def __init__(self, message: str, details: dict[str, Any]) -> None:
        super().__init__(message)
        self.details = details


class UpstreamError(Exception):
    """Raised when the trusted bulk channel fails or rejects a batch."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}
