"""Trusted bulk-insert channels used by the applier fast path."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import quote
import logging

import requests

from ledgersync.exceptions import NotFoundError, UpstreamError
from ledgersync.persistence import AuthoritativeStore
from ledgersync.schema import EntityType

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-APP-TOKEN"
DEFAULT_TIMEOUT_SECONDS = 10
BULK_ENDPOINT = "addTransactionsBatch"


class BulkChannel(ABC):
    """Accepts a whole batch of ledger transactions in one call."""

    @abstractmethod
    def insert_transactions(self, records: list[dict[str, Any]]) -> list[str]:
        """Insert-or-update ``records`` by id and return the ids the channel applied."""


def endpoint_candidates(base_url: str, endpoint: str) -> list[str]:
    """Direct path first, then the ``?route=`` form some script hosts require."""
    normalized = base_url.strip().rstrip("/")
    direct = f"{normalized}/{endpoint}"
    separator = "&" if "?" in normalized else "?"
    routed = f"{normalized}{separator}route={quote(endpoint, safe='')}"
    if direct == routed:
        return [direct]
    return [direct, routed]


def _read_body(response: requests.Response) -> Any:
    text = response.text or ""
    if not text.strip():
        return None
    try:
        return response.json()
    except ValueError:
        return {"raw": text}


class BulkInsertChannel(BulkChannel):
    """HTTP bulk channel authenticated with a shared application token."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        endpoint: str = BULK_ENDPOINT,
    ) -> None:
        if not base_url or not base_url.strip():
            raise ValueError("Bulk channel URL is required")
        if not token or not token.strip():
            raise ValueError("Bulk channel token is required")
        self.base_url = base_url.strip()
        self.token = token.strip()
        self.timeout = timeout
        self.endpoint = endpoint

    def insert_transactions(self, records: list[dict[str, Any]]) -> list[str]:
        body, url = self._post({"transactions": records})
        if isinstance(body, dict) and body.get("ok") is False:
            message = body.get("message")
            raise UpstreamError(
                message if isinstance(message, str) else "Bulk channel rejected the batch",
                {"url": url, "body": body},
            )
        if isinstance(body, dict) and isinstance(body.get("synced_ids"), list):
            return [str(item) for item in body["synced_ids"]]
        return [str(record["id"]) for record in records]

    def _post(self, payload: dict[str, Any]) -> tuple[Any, str]:
        headers = {"Content-Type": "application/json", TOKEN_HEADER: self.token}
        last_error: dict[str, Any] = {}
        for url in endpoint_candidates(self.base_url, self.endpoint):
            try:
                response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
            except requests.RequestException as exc:
                logger.warning("Bulk channel request to %s failed: %s", url, exc)
                last_error = {"url": url, "cause": str(exc)}
                continue
            body = _read_body(response)
            if not response.ok:
                logger.warning("Bulk channel %s answered %s", url, response.status_code)
                last_error = {"url": url, "status": response.status_code, "body": body}
                continue
            return body, url
        raise UpstreamError(
            "Failed to reach the bulk channel", {"endpoint": self.endpoint, **last_error}
        )


class StoreBulkChannel(BulkChannel):
    """In-process channel writing straight into an authoritative store.

    Behaves like the remote procedure: idempotent upsert keyed by id.
    """

    def __init__(self, store: AuthoritativeStore) -> None:
        self.store = store

    def insert_transactions(self, records: list[dict[str, Any]]) -> list[str]:
        applied = []
        for record in records:
            record_id = str(record["id"])
            try:
                self.store.update_by_id(EntityType.TRANSACTION, record_id, record)
            except NotFoundError:
                self.store.append_one(EntityType.TRANSACTION, record)
            applied.append(record_id)
        return applied
