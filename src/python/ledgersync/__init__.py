"""Public ledgersync package exports."""

from __future__ import annotations

from ledgersync.__version__ import __version__
from ledgersync.applier import BatchApplier
from ledgersync.client import LedgerClient
from ledgersync.exceptions import (
    BatchValidationError,
    NotFoundError,
    QueueStorageError,
    RemoteValidationError,
    SyncInProgressError,
    SyncTransportError,
    UpstreamError,
)
from ledgersync.local_store import LocalStore
from ledgersync.models import (
    Allocation,
    Card,
    CardTransaction,
    ImportLine,
    MutationOp,
    SyncState,
    transaction_key,
)
from ledgersync.persistence import AuthoritativeStore, LocalStoreBackend
from ledgersync.reconcile import MatchThresholds, reconcile_import_lines
from ledgersync.repository import Repository
from ledgersync.schema import Action, EntityType
from ledgersync.sync import SyncOrchestrator

__all__ = [
    "__version__",
    "Action",
    "Allocation",
    "AuthoritativeStore",
    "BatchApplier",
    "BatchValidationError",
    "Card",
    "CardTransaction",
    "EntityType",
    "ImportLine",
    "LedgerClient",
    "LocalStore",
    "LocalStoreBackend",
    "MatchThresholds",
    "MutationOp",
    "NotFoundError",
    "QueueStorageError",
    "RemoteValidationError",
    "Repository",
    "SyncInProgressError",
    "SyncOrchestrator",
    "SyncState",
    "SyncTransportError",
    "UpstreamError",
    "reconcile_import_lines",
    "transaction_key",
]
