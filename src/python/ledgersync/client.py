"""Client orchestration layer for ledgersync."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar
import datetime as dt
import logging
import os

from ledgersync.applier import BatchApplier
from ledgersync.bulk import StoreBulkChannel
from ledgersync.config import Settings, load_settings
from ledgersync.exceptions import NotFoundError, SyncTransportError
from ledgersync.importer import preview_import, run_import
from ledgersync.local_store import LocalStore
from ledgersync.models import (
    Allocation,
    Card,
    CardTransaction,
    EntitySnapshot,
    ImportLine,
    ImportSummary,
    MutationOp,
    SyncOutcome,
    SyncState,
    new_id,
    now_iso,
)
from ledgersync.repository import Repository
from ledgersync.schema import (
    ID_FIELDS,
    ORIGIN_MANUAL,
    ORIGIN_STATEMENT,
    STATUS_PENDING,
    STATUS_RECONCILED,
    Action,
    EntityType,
)
from ledgersync.sync import SyncOrchestrator
from ledgersync.transport import HttpPushTransport, InProcessTransport, PushTransport
from ledgersync.validation import VALIDATORS

T = TypeVar("T")

# Configure logging
logger = logging.getLogger("ledgersync")
log_level = os.environ.get('LOGGING_LEVEL', 'INFO').upper()
logger.setLevel(getattr(logging, log_level, logging.INFO))
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('%(levelname)s - %(name)s - %(message)s'))
    logger.addHandler(handler)


class LedgerClient:
    """Record changes locally and push them to the authority on demand.

    Every mutating call writes the entity snapshot and queues the matching op in
    one local transaction, so the queue and the snapshots never disagree.
    """

    def __init__(
        self,
        local_db_path: str | Path | None = None,
        transport: PushTransport | None = None,
        settings: Settings | None = None,
        local_store: LocalStore | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            local_db_path: Path to the local queue database; defaults to settings
            transport: Push transport; built from settings when omitted
            settings: Resolved configuration; loaded from the config file when omitted
            local_store: Optional pre-built local store
        """
        self.settings = settings or load_settings()
        self.local_store = local_store or LocalStore(local_db_path or self.settings.local_db_path)
        self._store: Repository | None = None
        self.transport = transport or self._build_transport()
        self._orchestrator: SyncOrchestrator | None = None

    def __enter__(self) -> "LedgerClient":
        """Open the local store."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def connect(self) -> None:
        self.local_store.connect()
        if self._store is not None:
            self._store.connect()

    def close(self) -> None:
        """Close the local store and any store opened for in-process sync."""
        self.local_store.close()
        if self._store is not None:
            self._store.close()

    def _build_transport(self) -> PushTransport | None:
        """HTTP push when a URL is configured, else apply straight to a local store.

        In-process sync always bulk-writes into that same store; the remote bulk
        channel is only used by a server whose fallback shares its backing store.
        """
        if self.settings.push_url:
            return HttpPushTransport(self.settings.push_url, self.settings.push_timeout_seconds)
        if self.settings.store_db_path:
            self._store = Repository(self.settings.store_db_path)
            channel = StoreBulkChannel(self._store)
            return InProcessTransport(BatchApplier(self._store, channel))
        return None

    def _run_local(self, action: Callable[[], T]) -> T:
        with self.local_store.transaction():
            return action()

    # Generic records

    def save(self, entity_type: EntityType, record: dict[str, Any]) -> dict[str, Any]:
        """Validate a record, store its snapshot and queue an upsert.

        Raises:
            ValueError: the record is invalid; nothing is written or queued.
        """
        entity_type = EntityType(entity_type)
        id_field = ID_FIELDS[entity_type]
        record = dict(record)
        if id_field == "id" and not record.get("id"):
            record["id"] = new_id()
        normalized = VALIDATORS[entity_type](record)
        record_id = str(normalized[id_field])

        def action() -> dict[str, Any]:
            self.local_store.write_snapshot(entity_type, record_id, normalized)
            self.local_store.enqueue(entity_type, record_id, Action.UPSERT, normalized)
            return normalized

        return self._run_local(action)

    def delete(self, entity_type: EntityType, record_id: str) -> MutationOp:
        """Drop the local snapshot and queue a delete."""
        entity_type = EntityType(entity_type)
        if not record_id or not str(record_id).strip():
            raise ValueError("Record id is required")
        record_id = str(record_id).strip()

        def action() -> MutationOp:
            self.local_store.remove_snapshot(entity_type, record_id)
            return self.local_store.enqueue(entity_type, record_id, Action.DELETE, None)

        return self._run_local(action)

    def get(self, entity_type: EntityType, record_id: str) -> dict[str, Any]:
        payload = self.local_store.read_snapshot(entity_type, record_id)
        if payload is None:
            raise NotFoundError(f"{EntityType(entity_type).value} {record_id} not found")
        return payload

    def list_snapshot_views(self, entity_type: EntityType) -> list[EntitySnapshot]:
        """Snapshots with ``pending_sync`` set while their op is still queued."""
        return self.local_store.list_snapshots(entity_type)

    # Cards

    def add_card(self, card: Card) -> Card:
        payload = self.save(EntityType.CARD, card.to_payload())
        return Card.from_payload(payload)

    def get_card(self, card_id: str) -> Card:
        return Card.from_payload(self.get(EntityType.CARD, card_id))

    def list_cards(self) -> list[Card]:
        cards = [
            Card.from_payload(item.payload)
            for item in self.local_store.list_snapshots(EntityType.CARD)
        ]
        return sorted(cards, key=lambda card: card.name.lower())

    # Card transactions

    def add_card_transaction(
        self,
        card_id: str,
        date: dt.date | str,
        description: str,
        amount: Decimal | str,
        attribution_tag: str | None = None,
        installment_index: int | None = None,
        installment_total: int | None = None,
        note: str = "",
        allocations: Iterable[Allocation] | None = None,
    ) -> CardTransaction:
        """Record a manual purchase.

        Without explicit allocations the whole amount goes to ``attribution_tag``,
        or to the card default when no tag is given. A tag (or explicit
        allocations) marks the purchase reconciled.
        """
        card = self.get_card(card_id)
        parsed_amount = Decimal(str(amount))
        if allocations is None:
            tag = attribution_tag or card.default_attribution
            allocations = (Allocation(tag, parsed_amount),)
            status = STATUS_RECONCILED if attribution_tag else STATUS_PENDING
        else:
            allocations = tuple(allocations)
            status = STATUS_RECONCILED
        transaction = CardTransaction(
            id=new_id(),
            card_id=card.id,
            date=date,
            description=description,
            amount=parsed_amount,
            allocations=allocations,
            installment_index=installment_index,
            installment_total=installment_total,
            origin=ORIGIN_MANUAL,
            status=status,
            note=note,
        )
        self._record_card_transaction(transaction)
        return transaction

    def get_card_transaction(self, transaction_id: str) -> CardTransaction:
        return CardTransaction.from_payload(self.get(EntityType.CARD_TRANSACTION, transaction_id))

    def classify_card_transaction(
        self, transaction_id: str, attribution_tag: str
    ) -> CardTransaction:
        """Assign an attribution and move the transaction to reconciled."""
        current = self.get_card_transaction(transaction_id)
        updated = current.with_status(STATUS_RECONCILED, attribution_tag)
        self._record_card_transaction(updated)
        return updated

    def delete_card_transaction(self, transaction_id: str) -> None:
        self.get(EntityType.CARD_TRANSACTION, transaction_id)
        self.delete(EntityType.CARD_TRANSACTION, transaction_id)

    def list_card_transactions(self, card_id: str | None = None) -> list[EntitySnapshot]:
        views = self.local_store.list_snapshots(EntityType.CARD_TRANSACTION)
        if card_id is None:
            return views
        return [view for view in views if view.payload.get("card_id") == card_id]

    def _record_card_transaction(self, transaction: CardTransaction) -> None:
        payload = transaction.to_payload()

        def action() -> None:
            self.local_store.write_snapshot(EntityType.CARD_TRANSACTION, transaction.id, payload)
            self.local_store.enqueue(
                EntityType.CARD_TRANSACTION, transaction.id, Action.UPSERT, payload
            )

        self._run_local(action)

    def _existing_card_transactions(self, card_id: str) -> list[CardTransaction]:
        return [
            CardTransaction.from_payload(view.payload)
            for view in self.list_card_transactions(card_id)
        ]

    # Statement import

    def import_preview(self, card_id: str, lines: list[ImportLine]) -> ImportSummary:
        card = self.get_card(card_id)
        return preview_import(
            card,
            lines,
            self._existing_card_transactions(card.id),
            self.settings.match_thresholds,
        )

    def import_run(
        self,
        card_id: str,
        lines: list[ImportLine],
        reference_month: str | None = None,
        dry_run: bool = False,
    ) -> ImportSummary:
        """Reconcile a statement and queue every new line as a pending transaction."""
        card = self.get_card(card_id)
        existing = self._existing_card_transactions(card.id)

        def action() -> ImportSummary:
            return run_import(
                card,
                lines,
                existing,
                sink=self._record_card_transaction,
                realign=self._realign_reference_month,
                reference_month=reference_month,
                dry_run=dry_run,
                thresholds=self.settings.match_thresholds,
            )

        return self._run_local(action)

    def _realign_reference_month(self, ids: list[str], reference_month: str) -> int:
        changed = 0
        for transaction_id in ids:
            payload = self.local_store.read_snapshot(EntityType.CARD_TRANSACTION, transaction_id)
            if payload is None or payload.get("origin") != ORIGIN_STATEMENT:
                continue
            if payload.get("reference_month") == reference_month:
                continue
            payload = {**payload, "reference_month": reference_month, "updated_at": now_iso()}
            self.local_store.write_snapshot(EntityType.CARD_TRANSACTION, transaction_id, payload)
            self.local_store.enqueue(
                EntityType.CARD_TRANSACTION, transaction_id, Action.UPSERT, payload
            )
            changed += 1
        return changed

    # Sync

    def _get_orchestrator(self) -> SyncOrchestrator:
        if self.transport is None:
            raise SyncTransportError("No push endpoint or store configured for sync")
        if self._orchestrator is None:
            self._orchestrator = SyncOrchestrator(self.local_store, self.transport)
        return self._orchestrator

    def sync(self) -> SyncOutcome:
        return self._get_orchestrator().sync()

    def sync_status(self) -> SyncState:
        return self.local_store.read_sync_state()

    def pending_ops(self) -> list[MutationOp]:
        return self.local_store.list_pending()

    def local_summary(self) -> dict[str, Any]:
        """Snapshot counts per collection, pending op count and sync state."""
        return self.local_store.summary()

    def sync_logs(self, limit: int = 80) -> list[dict[str, Any]]:
        return self.local_store.list_sync_logs(limit)

    def clear_sync_logs(self) -> None:
        self.local_store.clear_sync_logs()

    def bootstrap(self, records: dict[EntityType, list[dict[str, Any]]]) -> dict[str, int]:
        """Replace local snapshots with records fetched from the authority."""
        counts = {}
        for entity_type, rows in records.items():
            entity_type = EntityType(entity_type)
            self.local_store.replace_snapshots(entity_type, rows, ID_FIELDS[entity_type])
            counts[entity_type.value] = len(rows)
        logger.info("Bootstrapped %s", counts)
        return counts

    def bootstrap_from_store(self, store: Repository | None = None) -> dict[str, int]:
        store = store or self._store
        if store is None:
            raise ValueError("No store configured for bootstrap")
        return self.bootstrap({entity: store.read_all(entity) for entity in EntityType})
