"""SQLite repository implementation of the authoritative store."""

from __future__ import annotations

from pathlib import Path
from typing import Any
import json
import sqlite3

from ledgersync.exceptions import NotFoundError
from ledgersync.models import Card, CardTransaction, now_iso
from ledgersync.persistence import AuthoritativeStore
from ledgersync.schema import (
    COLLECTIONS,
    ID_FIELDS,
    ORIGIN_STATEMENT,
    STORE_TABLE_TEMPLATE,
    EntityType,
)


class Repository(AuthoritativeStore):
    """SQLite-backed authoritative store.

    Every entity type lives in its own table of ``(record_id, payload)`` rows;
    ``position`` preserves append order for ``read_all``.
    """

    def __init__(self, db_path: str | Path) -> None:
        """Create a repository for the given database path."""
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self.connection: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open the database connection and create missing tables."""
        if self.connection is None:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self.connection.row_factory = sqlite3.Row
            for table in COLLECTIONS.values():
                self.connection.execute(STORE_TABLE_TEMPLATE.format(table=table))
            self.connection.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def __enter__(self) -> "Repository":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def begin_transaction(self) -> None:
        """Begin a database transaction."""
        self._ensure_connection()
        if not self.connection.in_transaction:
            self.connection.execute("BEGIN")

    def commit(self) -> None:
        """Commit the current transaction."""
        self._ensure_connection()
        self.connection.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self._ensure_connection()
        self.connection.rollback()

    def ping(self) -> bool:
        """Check that the database answers a trivial query."""
        self._ensure_connection()
        self.connection.execute("SELECT 1").fetchone()
        return True

    def read_all(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """Return every record of a type in append order."""
        self._ensure_connection()
        rows = self.connection.execute(
            f"SELECT payload FROM {self._table(entity_type)} ORDER BY position"
        ).fetchall()
        return [json.loads(row["payload"]) for row in rows]

    def get_by_id(self, entity_type: EntityType, record_id: str) -> dict[str, Any]:
        self._ensure_connection()
        row = self.connection.execute(
            f"SELECT payload FROM {self._table(entity_type)} WHERE record_id = ?",
            (record_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"{EntityType(entity_type).value} {record_id} not found")
        return json.loads(row["payload"])

    def append_one(self, entity_type: EntityType, record: dict[str, Any]) -> None:
        """Append a record; its id must not exist yet."""
        self._ensure_connection()
        record_id = self._record_id(entity_type, record)
        self.connection.execute(
            f"INSERT INTO {self._table(entity_type)} (record_id, payload, updated_at) "
            "VALUES (?, ?, ?)",
            (record_id, json.dumps(record, default=str), now_iso()),
        )

    def append_many(self, entity_type: EntityType, records: list[dict[str, Any]]) -> None:
        for record in records:
            self.append_one(entity_type, record)

    def update_by_id(
        self, entity_type: EntityType, record_id: str, record: dict[str, Any]
    ) -> None:
        """Replace the payload of an existing record."""
        self._ensure_connection()
        cursor = self.connection.execute(
            f"UPDATE {self._table(entity_type)} SET payload = ?, updated_at = ? "
            "WHERE record_id = ?",
            (json.dumps(record, default=str), now_iso(), record_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"{EntityType(entity_type).value} {record_id} not found")

    def delete_by_id(self, entity_type: EntityType, record_id: str) -> None:
        """Delete a record by id."""
        self._ensure_connection()
        cursor = self.connection.execute(
            f"DELETE FROM {self._table(entity_type)} WHERE record_id = ?",
            (record_id,),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"{EntityType(entity_type).value} {record_id} not found")

    def read_cards(self) -> list[Card]:
        """Return cards ordered by name."""
        cards = [Card.from_payload(row) for row in self.read_all(EntityType.CARD)]
        return sorted(cards, key=lambda card: card.name.lower())

    def get_card(self, card_id: str) -> Card:
        return Card.from_payload(self.get_by_id(EntityType.CARD, card_id))

    def read_card_transactions(self, card_id: str | None = None) -> list[CardTransaction]:
        """Return card transactions, optionally filtered to one card."""
        rows = self.read_all(EntityType.CARD_TRANSACTION)
        transactions = [CardTransaction.from_payload(row) for row in rows]
        if card_id is None:
            return transactions
        return [item for item in transactions if item.card_id == card_id]

    def realign_reference_month(self, ids: list[str], reference_month: str) -> int:
        """Move statement-origin transactions to ``reference_month``; return the change count."""
        changed = 0
        for record_id in ids:
            payload = self.get_by_id(EntityType.CARD_TRANSACTION, record_id)
            if payload.get("origin") != ORIGIN_STATEMENT:
                continue
            if payload.get("reference_month") == reference_month:
                continue
            payload["reference_month"] = reference_month
            payload["updated_at"] = now_iso()
            self.update_by_id(EntityType.CARD_TRANSACTION, record_id, payload)
            changed += 1
        return changed

    def _record_id(self, entity_type: EntityType, record: dict[str, Any]) -> str:
        value = record.get(ID_FIELDS[EntityType(entity_type)])
        if value is None or not str(value).strip():
            raise ValueError(f"{EntityType(entity_type).value} record has no id")
        return str(value).strip()

    def _table(self, entity_type: EntityType) -> str:
        return COLLECTIONS[EntityType(entity_type)]

    def _ensure_connection(self) -> None:
        if self.connection is None:
            raise RuntimeError("Database connection is not open")
