"""Push transports used by the sync orchestrator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any
import logging

import requests

from ledgersync.applier import BatchApplier
from ledgersync.exceptions import RemoteValidationError, SyncTransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10


class PushTransport(ABC):
    """Delivers one grouped batch to the authority."""

    @abstractmethod
    def push(self, batch: dict[str, list[Any]]) -> dict[str, Any]:
        """Send ``batch`` and return the decoded success payload.

        Raises:
            SyncTransportError: unreachable endpoint, timeout, server error or
                an unreadable response.
            RemoteValidationError: the authority rejected the batch as invalid.
        """


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return fallback


class HttpPushTransport(PushTransport):
    """POST the batch as JSON to the push endpoint."""

    def __init__(self, push_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        if not push_url or not push_url.strip():
            raise ValueError("push_url is required")
        self.push_url = push_url.strip()
        self.timeout = timeout

    def push(self, batch: dict[str, list[Any]]) -> dict[str, Any]:
        logger.debug("Pushing %d buckets to %s", len(batch), self.push_url)
        try:
            response = requests.post(self.push_url, json=batch, timeout=self.timeout)
        except requests.Timeout as exc:
            raise SyncTransportError(f"Push timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise SyncTransportError(f"Push failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if 400 <= response.status_code < 500:
            details = body.get("details") if isinstance(body, dict) else None
            raise RemoteValidationError(
                _error_message(body, f"Push rejected with {response.status_code}"),
                details if isinstance(details, dict) else {"status": response.status_code},
            )
        if response.status_code >= 500:
            raise SyncTransportError(
                _error_message(body, f"Push failed with {response.status_code}"),
                status_code=response.status_code,
            )
        if not isinstance(body, dict):
            raise SyncTransportError(
                "Push endpoint returned a non-JSON response", status_code=response.status_code
            )
        return body


class InProcessTransport(PushTransport):
    """Hand the batch straight to a local applier, with HTTP status semantics."""

    def __init__(self, applier: BatchApplier) -> None:
        self.applier = applier

    def push(self, batch: dict[str, list[Any]]) -> dict[str, Any]:
        status, body = self.applier.handle_push(batch)
        if 400 <= status < 500:
            raise RemoteValidationError(_error_message(body, "Push rejected"), body.get("details"))
        if status >= 500:
            raise SyncTransportError(_error_message(body, "Push failed"), status_code=status)
        return body
