"""SQLite-backed mutation queue and entity snapshot store for the client."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator
import json
import logging
import sqlite3

from ledgersync.exceptions import QueueStorageError
from ledgersync.models import EntitySnapshot, MutationOp, SyncState, new_id, now_iso
from ledgersync.persistence import LocalStoreBackend
from ledgersync.schema import COLLECTIONS, LOCAL_SCHEMA, Action, EntityType

logger = logging.getLogger(__name__)

GLOBAL_SYNC_STATE_ID = "global"
DEFAULT_LOG_LIMIT = 80


def _load_json(value: str | None, fallback: Any) -> Any:
    if not value:
        return fallback
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return fallback


class LocalStore(LocalStoreBackend):
    """Client-local queue (``sync_ops``) and snapshot table (``entity_rows``)."""

    def __init__(self, db_path: str | Path) -> None:
        """Create a store for the given database path."""
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else db_path
        self.connection: sqlite3.Connection | None = None
        self._transaction_depth = 0

    def connect(self) -> None:
        """Open the database connection and create tables."""
        if self.connection is not None:
            return
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.connection = sqlite3.connect(self.db_path, isolation_level=None)
            self.connection.row_factory = sqlite3.Row
            self.connection.executescript(LOCAL_SCHEMA)
        except (sqlite3.Error, OSError) as exc:
            raise QueueStorageError(f"Failed to open local store: {exc}") from exc

    def close(self) -> None:
        """Close the database connection."""
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def __enter__(self) -> "LocalStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group local writes so a snapshot and its queued op land together."""
        self._ensure_connection()
        if self._transaction_depth:
            self._transaction_depth += 1
            try:
                yield
            finally:
                self._transaction_depth -= 1
            return
        self._execute("BEGIN")
        self._transaction_depth = 1
        try:
            yield
        except Exception:
            self._transaction_depth = 0
            self.connection.rollback()
            raise
        self._transaction_depth = 0
        self._execute("COMMIT")

    # Mutation queue

    def enqueue(
        self,
        entity_type: EntityType,
        entity_id: str,
        action: Action,
        payload: dict[str, Any] | None,
    ) -> MutationOp:
        """Append a new op with a fresh id and the current timestamp.

        Raises:
            ValueError: an upsert without a mapping payload; nothing is queued.
        """
        if Action(action) is Action.UPSERT and not isinstance(payload, dict):
            raise ValueError(
                f"Upsert of {EntityType(entity_type).value} {entity_id} requires a payload"
            )
        operation = MutationOp(
            op_id=new_id(),
            entity_type=EntityType(entity_type),
            entity_id=str(entity_id),
            action=Action(action),
            payload=payload,
            created_at=now_iso(),
        )
        self._execute(
            """
            INSERT INTO sync_ops (op_id, entity, entity_id, action, payload, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                operation.op_id,
                operation.entity_type.value,
                operation.entity_id,
                operation.action.value,
                None if payload is None else json.dumps(payload, default=str),
                operation.created_at,
            ),
        )
        logger.debug(
            "Queued %s %s %s as %s",
            operation.action.value,
            operation.entity_type.value,
            operation.entity_id,
            operation.op_id,
        )
        return operation

    def list_pending(self) -> list[MutationOp]:
        """Return pending ops in enqueue order."""
        rows = self._execute(
            "SELECT op_id, entity, entity_id, action, payload, created_at "
            "FROM sync_ops ORDER BY seq"
        ).fetchall()
        return [
            MutationOp(
                op_id=row["op_id"],
                entity_type=EntityType(row["entity"]),
                entity_id=row["entity_id"],
                action=Action(row["action"]),
                payload=_load_json(row["payload"], None),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def remove_applied(self, op_ids: list[str]) -> None:
        """Delete ops by id; ids that are already gone are ignored."""
        with self.transaction():
            for op_id in op_ids:
                self._execute("DELETE FROM sync_ops WHERE op_id = ?", (op_id,))

    def pending_count(self) -> int:
        row = self._execute("SELECT COUNT(*) AS total FROM sync_ops").fetchone()
        return int(row["total"])

    def pending_entity_ids(self, entity_type: EntityType) -> set[str]:
        """Ids of records of ``entity_type`` that still have queued ops."""
        rows = self._execute(
            "SELECT DISTINCT entity_id FROM sync_ops WHERE entity = ?",
            (EntityType(entity_type).value,),
        ).fetchall()
        return {row["entity_id"] for row in rows}

    # Entity snapshots

    def read_snapshot(self, entity_type: EntityType, item_id: str) -> dict[str, Any] | None:
        row = self._execute(
            "SELECT payload FROM entity_rows WHERE entity = ? AND item_id = ?",
            (self._collection(entity_type), item_id),
        ).fetchone()
        if row is None:
            return None
        return _load_json(row["payload"], {"id": item_id})

    def write_snapshot(
        self, entity_type: EntityType, item_id: str, payload: dict[str, Any]
    ) -> None:
        if not isinstance(payload, dict):
            raise ValueError("Snapshot payload must be a mapping")
        if not item_id:
            raise ValueError("Snapshot item id is required")
        updated_at = payload.get("updated_at") or now_iso()
        self._execute(
            """
            INSERT OR REPLACE INTO entity_rows (entity, item_id, payload, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                self._collection(entity_type),
                item_id,
                json.dumps(payload, default=str),
                str(updated_at),
            ),
        )

    def remove_snapshot(self, entity_type: EntityType, item_id: str) -> None:
        self._execute(
            "DELETE FROM entity_rows WHERE entity = ? AND item_id = ?",
            (self._collection(entity_type), item_id),
        )

    def list_snapshots(self, entity_type: EntityType) -> list[EntitySnapshot]:
        """Return snapshots most recently updated first, flagged with pending_sync."""
        entity = EntityType(entity_type)
        pending = self.pending_entity_ids(entity)
        rows = self._execute(
            "SELECT item_id, payload, updated_at FROM entity_rows "
            "WHERE entity = ? ORDER BY updated_at DESC, item_id",
            (self._collection(entity),),
        ).fetchall()
        return [
            EntitySnapshot(
                entity_type=entity,
                item_id=row["item_id"],
                payload=_load_json(row["payload"], {"id": row["item_id"]}),
                updated_at=row["updated_at"],
                pending_sync=row["item_id"] in pending,
            )
            for row in rows
        ]

    def replace_snapshots(
        self, entity_type: EntityType, rows: list[dict[str, Any]], id_field: str = "id"
    ) -> None:
        """Replace every snapshot of a type with rows fetched from the authority."""
        collection = self._collection(entity_type)
        with self.transaction():
            self._execute("DELETE FROM entity_rows WHERE entity = ?", (collection,))
            for index, row in enumerate(rows):
                item_id = str(row.get(id_field) or f"{collection}:{index + 1}")
                self.write_snapshot(entity_type, item_id, row)

    def entity_counts(self) -> dict[str, int]:
        rows = self._execute(
            "SELECT entity, COUNT(*) AS total FROM entity_rows GROUP BY entity"
        ).fetchall()
        return {row["entity"]: int(row["total"]) for row in rows}

    # Sync state and log

    def read_sync_state(self) -> SyncState:
        row = self._execute(
            "SELECT * FROM sync_state WHERE id = ?", (GLOBAL_SYNC_STATE_ID,)
        ).fetchone()
        if row is None:
            return SyncState()
        return SyncState(
            status=row["status"],
            last_error=row["last_error"],
            last_success_at=row["last_success_at"],
            last_applied_count=int(row["last_applied_count"]),
            last_synced_ids=tuple(_load_json(row["last_synced_ids"], [])),
            updated_at=row["updated_at"],
        )

    def write_sync_state(self, state: SyncState) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO sync_state
            (id, status, last_error, last_success_at, last_applied_count, last_synced_ids, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                GLOBAL_SYNC_STATE_ID,
                state.status,
                state.last_error,
                state.last_success_at,
                state.last_applied_count,
                json.dumps(list(state.last_synced_ids)),
                state.updated_at or now_iso(),
            ),
        )

    def add_sync_log(
        self,
        level: str,
        event: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        entry = {
            "log_id": new_id(),
            "level": level.strip() or "info",
            "event": event.strip() or "sync_event",
            "message": message.strip() or "No details",
            "details": details,
            "created_at": now_iso(),
        }
        self._execute(
            """
            INSERT INTO sync_logs (log_id, level, event, message, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                entry["log_id"],
                entry["level"],
                entry["event"],
                entry["message"],
                None if details is None else json.dumps(details, default=str),
                entry["created_at"],
            ),
        )
        return entry

    def list_sync_logs(self, limit: int = DEFAULT_LOG_LIMIT) -> list[dict[str, Any]]:
        if limit <= 0:
            limit = DEFAULT_LOG_LIMIT
        rows = self._execute(
            "SELECT log_id, level, event, message, details, created_at FROM sync_logs "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [{**dict(row), "details": _load_json(row["details"], None)} for row in rows]

    def clear_sync_logs(self) -> None:
        self._execute("DELETE FROM sync_logs")

    def summary(self) -> dict[str, Any]:
        return {
            "counts": self.entity_counts(),
            "pending_ops": self.pending_count(),
            "sync_state": self.read_sync_state(),
        }

    def _collection(self, entity_type: EntityType) -> str:
        return COLLECTIONS[EntityType(entity_type)]

    def _ensure_connection(self) -> None:
        if self.connection is None:
            raise QueueStorageError("Local store is not connected")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        self._ensure_connection()
        try:
            return self.connection.execute(sql, params)
        except sqlite3.Error as exc:
            raise QueueStorageError(f"Local store operation failed: {exc}") from exc
