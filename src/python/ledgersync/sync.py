"""Sync orchestration: drain the local mutation queue into the authority."""

from __future__ import annotations

from dataclasses import replace
from typing import Any
import logging
import threading

from ledgersync.exceptions import QueueStorageError, SyncInProgressError
from ledgersync.local_store import LocalStore
from ledgersync.models import MutationOp, SyncOutcome, SyncState, now_iso
from ledgersync.schema import (
    BUCKETS,
    SYNC_ERROR,
    SYNC_IN_PROGRESS,
    SYNC_SUCCESS,
    Action,
)
from ledgersync.transport import PushTransport

logger = logging.getLogger(__name__)


def dedupe_ops(operations: list[MutationOp]) -> list[MutationOp]:
    """Keep the last op per ``(entity_type, entity_id)`` in enqueue order.

    The surviving op takes the position of the key's first appearance.
    """
    by_key: dict[tuple[str, str], MutationOp] = {}
    for operation in operations:
        by_key[(operation.entity_type.value, operation.entity_id)] = operation
    return list(by_key.values())


def group_ops(operations: list[MutationOp]) -> dict[str, list[Any]]:
    """Build the push payload: one bucket per entity type and action.

    Upserts without a payload cannot be sent; they only come from rows written
    outside ``LocalStore.enqueue`` and are skipped with a warning.
    """
    grouped: dict[str, list[Any]] = {bucket: [] for bucket in BUCKETS.values()}
    for operation in operations:
        bucket = BUCKETS[(operation.entity_type, operation.action)]
        if operation.action is Action.DELETE:
            grouped[bucket].append(operation.entity_id)
        elif isinstance(operation.payload, dict):
            grouped[bucket].append(operation.payload)
        else:
            logger.warning(
                "Skipping upsert %s of %s %s without a payload",
                operation.op_id,
                operation.entity_type.value,
                operation.entity_id,
            )
    return grouped


def has_any_operation(grouped: dict[str, list[Any]]) -> bool:
    return any(items for items in grouped.values())


def bucket_counts(grouped: dict[str, list[Any]]) -> dict[str, int]:
    return {bucket: len(items) for bucket, items in grouped.items() if items}


class SyncOrchestrator:
    """Push pending mutations to the authority, one sync at a time."""

    def __init__(self, local_store: LocalStore, transport: PushTransport) -> None:
        self.local_store = local_store
        self.transport = transport
        self._lock = threading.Lock()

    def status(self) -> SyncState:
        """Return the persisted sync state."""
        return self.local_store.read_sync_state()

    def sync(self) -> SyncOutcome:
        """Run one sync.

        Raises:
            SyncInProgressError: another sync on this orchestrator is still running.
            SyncTransportError, RemoteValidationError: the push failed; the
                queue is left untouched and the state records the error.
            QueueStorageError: the queue could not be drained after a successful
                push; the state records the error.
        """
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError("A sync is already in progress")
        try:
            return self._run()
        finally:
            self._lock.release()

    def _run(self) -> SyncOutcome:
        store = self.local_store
        pending_raw = store.list_pending()
        if not pending_raw:
            store.add_sync_log("info", "sync_skipped", "No pending operations to sync.")
            logger.info("Nothing to sync")
            return SyncOutcome(pushed=0, pending_before_dedupe=0, synced_ids=[], nothing_to_sync=True)

        raw_ids = [operation.op_id for operation in pending_raw]
        pending = dedupe_ops(pending_raw)
        grouped = group_ops(pending)

        if not has_any_operation(grouped):
            store.remove_applied(raw_ids)
            store.add_sync_log(
                "warn",
                "sync_compacted",
                "Queue compacted with no sendable operations.",
                {"pending": len(pending_raw)},
            )
            logger.warning("Discarded %d ops with nothing to push", len(pending_raw))
            return SyncOutcome(
                pushed=0,
                pending_before_dedupe=len(pending_raw),
                synced_ids=[],
                discarded=len(pending_raw),
                nothing_to_sync=True,
            )

        previous = store.read_sync_state()
        store.write_sync_state(
            replace(previous, status=SYNC_IN_PROGRESS, last_error=None, updated_at=now_iso())
        )
        store.add_sync_log(
            "info",
            "sync_started",
            "Sync started.",
            {
                "pending_before_dedupe": len(pending_raw),
                "pending_after_dedupe": len(pending),
                "payload_counts": bucket_counts(grouped),
            },
        )
        logger.info("Pushing %d ops (%d before dedupe)", len(pending), len(pending_raw))

        try:
            response = self.transport.push(grouped)
        except Exception as exc:
            self._record_failure(exc, len(pending))
            raise

        synced_ids = response.get("synced_ids")
        synced_ids = [str(item) for item in synced_ids] if isinstance(synced_ids, list) else []
        finished_at = now_iso()
        try:
            with store.transaction():
                store.remove_applied(raw_ids)
                store.write_sync_state(
                    SyncState(
                        status=SYNC_SUCCESS,
                        last_error=None,
                        last_success_at=finished_at,
                        last_applied_count=len(pending),
                        last_synced_ids=tuple(synced_ids),
                        updated_at=finished_at,
                    )
                )
                store.add_sync_log(
                    "success",
                    "sync_success",
                    "Sync completed.",
                    {"pushed": len(pending), "synced_ids": len(synced_ids), "server": response},
                )
        except QueueStorageError as exc:
            # pushed ops stay queued and are resent by the next sync
            self._record_failure(exc, len(pending))
            raise
        logger.info("Synced %d ops", len(pending))
        return SyncOutcome(
            pushed=len(pending),
            pending_before_dedupe=len(pending_raw),
            synced_ids=synced_ids,
        )

    def _record_failure(self, exc: Exception, pending: int) -> None:
        message = str(exc) or exc.__class__.__name__
        store = self.local_store
        store.write_sync_state(
            replace(
                store.read_sync_state(),
                status=SYNC_ERROR,
                last_error=message,
                updated_at=now_iso(),
            )
        )
        store.add_sync_log("error", "sync_error", message, {"pending": pending})
        logger.error("Sync failed: %s", message)
