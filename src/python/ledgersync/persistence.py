"""Persistence interfaces for ledgersync storage backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ledgersync.models import EntitySnapshot, MutationOp, SyncState
from ledgersync.schema import Action, EntityType


class LocalStoreBackend(ABC):
    """Abstract interface for the client-local queue and snapshot store."""

    @abstractmethod
    def __init__(self, db_path: str | Path) -> None:
        """Initialize the backend with a storage path."""

    @abstractmethod
    def connect(self) -> None:
        """Open the store and make sure its tables exist."""

    @abstractmethod
    def close(self) -> None:
        """Close the store."""

    @abstractmethod
    def enqueue(
        self,
        entity_type: EntityType,
        entity_id: str,
        action: Action,
        payload: dict[str, Any] | None,
    ) -> MutationOp:
        """Append a new mutation op."""

    @abstractmethod
    def list_pending(self) -> list[MutationOp]:
        """Return all pending ops in enqueue order."""

    @abstractmethod
    def remove_applied(self, op_ids: list[str]) -> None:
        """Delete the given ops; unknown ids are ignored."""

    @abstractmethod
    def read_snapshot(self, entity_type: EntityType, item_id: str) -> dict[str, Any] | None:
        """Return the stored payload or None."""

    @abstractmethod
    def write_snapshot(
        self, entity_type: EntityType, item_id: str, payload: dict[str, Any]
    ) -> None:
        """Overwrite the snapshot for a record."""

    @abstractmethod
    def list_snapshots(self, entity_type: EntityType) -> list[EntitySnapshot]:
        """Return all snapshots of a type, most recently updated first."""

    @abstractmethod
    def read_sync_state(self) -> SyncState:
        """Return the persisted sync state."""

    @abstractmethod
    def write_sync_state(self, state: SyncState) -> None:
        """Persist the sync state."""


class AuthoritativeStore(ABC):
    """Read/write contract of the shared authoritative store."""

    @abstractmethod
    def read_all(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """Return every record of a type in insertion order."""

    @abstractmethod
    def append_one(self, entity_type: EntityType, record: dict[str, Any]) -> None:
        """Append a record."""

    @abstractmethod
    def append_many(self, entity_type: EntityType, records: list[dict[str, Any]]) -> None:
        """Append records in order."""

    @abstractmethod
    def update_by_id(
        self, entity_type: EntityType, record_id: str, record: dict[str, Any]
    ) -> None:
        """Replace a record; raise NotFoundError when absent."""

    @abstractmethod
    def delete_by_id(self, entity_type: EntityType, record_id: str) -> None:
        """Delete a record; raise NotFoundError when absent."""

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a transaction."""

    @abstractmethod
    def commit(self) -> None:
        """Commit the active transaction."""

    @abstractmethod
    def rollback(self) -> None:
        """Rollback the active transaction."""
