"""Server-side application of pushed batches to the authoritative store."""

from __future__ import annotations

from typing import Any, Callable, TypeVar
import logging
import threading

from ledgersync.bulk import BulkChannel
from ledgersync.exceptions import BatchValidationError, NotFoundError, UpstreamError
from ledgersync.models import ApplyResult, EntityCounts
from ledgersync.persistence import AuthoritativeStore
from ledgersync.schema import ID_FIELDS, EntityType
from ledgersync.validation import EntityBatch, validate_batch

logger = logging.getLogger(__name__)

T = TypeVar("T")

MODE_BULK = "bulk"
MODE_FALLBACK = "fallback"


class BatchApplier:
    """Validate a grouped batch and write it to the store.

    Two strategies produce the same store contents: a trusted bulk channel for
    batches made only of ledger transaction upserts, and a per-record
    upsert/delete fallback for everything else.

    Store transactions are serialized through ``lock``; callers that write to
    the same store outside the applier should share it.
    """

    def __init__(
        self,
        store: AuthoritativeStore,
        bulk_channel: BulkChannel | None = None,
        lock: threading.Lock | None = None,
    ) -> None:
        self.store = store
        self.bulk_channel = bulk_channel
        self.lock = lock or threading.Lock()

    def apply(self, payload: Any) -> ApplyResult:
        """Validate every record, then apply the batch in one store transaction.

        Raises:
            BatchValidationError: the first invalid record; nothing is written.
            UpstreamError: the bulk channel failed or rejected the batch.
        """
        batches = validate_batch(payload)
        if not batches:
            return ApplyResult(mode=MODE_FALLBACK, counts={}, synced_ids=[])
        if self._can_use_bulk(batches):
            return self._run_transaction(lambda: self._apply_bulk(batches[EntityType.TRANSACTION]))
        return self._run_transaction(lambda: self._apply_fallback(batches))

    def handle_push(self, body: Any) -> tuple[int, dict[str, Any]]:
        """Apply a push body and return ``(http_status, response_payload)``."""
        try:
            result = self.apply(body)
        except BatchValidationError as exc:
            logger.warning("Rejected push batch: %s", exc)
            return 400, {"code": "VALIDATION_ERROR", "message": str(exc), "details": exc.details}
        except UpstreamError as exc:
            logger.error("Bulk channel failed: %s", exc)
            return 502, {"code": "UPSTREAM_ERROR", "message": str(exc), "details": exc.details}
        return 200, {
            "ok": True,
            "mode": result.mode,
            "synced_ids": result.synced_ids,
            "counts": {entity: counts.as_dict() for entity, counts in result.counts.items()},
            "sent_count": result.sent_count,
        }

    def _can_use_bulk(self, batches: dict[EntityType, EntityBatch]) -> bool:
        if self.bulk_channel is None:
            return False
        if set(batches) != {EntityType.TRANSACTION}:
            return False
        return not batches[EntityType.TRANSACTION].delete_ids

    def _apply_bulk(self, batch: EntityBatch) -> ApplyResult:
        synced_ids = self.bulk_channel.insert_transactions(batch.upserts)
        logger.info("Applied %d transactions through the bulk channel", len(synced_ids))
        counts = {EntityType.TRANSACTION.value: EntityCounts(inserted=len(synced_ids))}
        return ApplyResult(mode=MODE_BULK, counts=counts, synced_ids=list(synced_ids))

    def _apply_fallback(self, batches: dict[EntityType, EntityBatch]) -> ApplyResult:
        counts: dict[str, EntityCounts] = {}
        synced_ids: list[str] = []
        for entity_type in EntityType:
            batch = batches.get(entity_type)
            if batch is None:
                continue
            entity_counts = EntityCounts()
            id_field = ID_FIELDS[entity_type]
            existing = {
                str(record.get(id_field)) for record in self.store.read_all(entity_type)
            }

            for record in batch.upserts:
                record_id = str(record[id_field])
                if record_id in existing:
                    self.store.update_by_id(entity_type, record_id, record)
                    entity_counts.updated += 1
                else:
                    self.store.append_one(entity_type, record)
                    existing.add(record_id)
                    entity_counts.inserted += 1
                synced_ids.append(record_id)

            for record_id in batch.delete_ids:
                try:
                    self.store.delete_by_id(entity_type, record_id)
                    existing.discard(record_id)
                    entity_counts.deleted += 1
                except NotFoundError:
                    entity_counts.missing += 1
                synced_ids.append(record_id)

            counts[entity_type.value] = entity_counts
            logger.debug("Applied %s: %s", entity_type.value, entity_counts.as_dict())
        logger.info("Applied %d records through the fallback path", len(synced_ids))
        return ApplyResult(mode=MODE_FALLBACK, counts=counts, synced_ids=synced_ids)

    def _run_transaction(self, action: Callable[[], T]) -> T:
        with self.lock:
            self.store.begin_transaction()
            try:
                result = action()
                self.store.commit()
                return result
            except Exception:
                self.store.rollback()
                raise
