"""Entity, bucket and table constants shared by client and server."""

from __future__ import annotations

from enum import Enum


class EntityType(str, Enum):
    TRANSACTION = "transaction"
    FIXED_BILL = "fixed_bill"
    ANNUAL_EVENT = "annual_event"
    CATEGORY = "category"
    INCOME_RULE = "income_rule"
    CARD = "card"
    CARD_TRANSACTION = "card_transaction"


class Action(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


# Collection name per entity: snapshot collection, store table and bucket prefix.
COLLECTIONS = {
    EntityType.TRANSACTION: "transactions",
    EntityType.FIXED_BILL: "fixed_bills",
    EntityType.ANNUAL_EVENT: "annual_events",
    EntityType.CATEGORY: "categories",
    EntityType.INCOME_RULE: "income_rules",
    EntityType.CARD: "cards",
    EntityType.CARD_TRANSACTION: "card_transactions",
}

# income rules are keyed by their natural key
ID_FIELDS = {entity: "id" for entity in EntityType}
ID_FIELDS[EntityType.INCOME_RULE] = "key"

# Push bucket per (entity, action). Upserts carry payloads, deletes carry ids.
BUCKETS: dict[tuple[EntityType, Action], str] = {}
for _entity, _collection in COLLECTIONS.items():
    BUCKETS[(_entity, Action.UPSERT)] = f"{_collection}_upsert"
    BUCKETS[(_entity, Action.DELETE)] = f"{_collection}_delete_ids"
BUCKET_LOOKUP = {bucket: pair for pair, bucket in BUCKETS.items()}

ATTRIBUTION_TAGS = ("PARTY_A", "PARTY_B", "SHARED", "SHARED_INVERSE")
TRANSACTION_KINDS = ("expense", "income")
PAYMENT_METHODS = ("pix", "card", "cash", "transfer", "other")
PAYERS = ("PARTY_A", "PARTY_B")
CARD_BANKS = ("C6", "BB", "OTHER")
CARD_HOLDERS = ("PARTY_A", "PARTY_B", "DEPENDENT", "OTHER")
CARD_TX_ORIGINS = ("manual", "statement")
CARD_TX_STATUSES = ("pending", "reconciled")

STATUS_PENDING = "pending"
STATUS_RECONCILED = "reconciled"
ORIGIN_MANUAL = "manual"
ORIGIN_STATEMENT = "statement"

SYNC_IDLE = "idle"
SYNC_IN_PROGRESS = "in_progress"
SYNC_SUCCESS = "success"
SYNC_ERROR = "error"

DEFAULT_CATEGORY = "UNCATEGORIZED"
STATEMENT_IMPORT_MARKER = "[STATEMENT_IMPORT]"

LOCAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS entity_rows (
    entity TEXT NOT NULL,
    item_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (entity, item_id)
);
CREATE TABLE IF NOT EXISTS sync_ops (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    op_id TEXT NOT NULL UNIQUE,
    entity TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    action TEXT NOT NULL,
    payload TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS sync_state (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    last_error TEXT,
    last_success_at TEXT,
    last_applied_count INTEGER NOT NULL DEFAULT 0,
    last_synced_ids TEXT NOT NULL DEFAULT '[]',
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS sync_logs (
    log_id TEXT PRIMARY KEY,
    level TEXT NOT NULL,
    event TEXT NOT NULL,
    message TEXT NOT NULL,
    details TEXT,
    created_at TEXT NOT NULL
);
"""

STORE_TABLE_TEMPLATE = """
CREATE TABLE IF NOT EXISTS {table} (
    position INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id TEXT NOT NULL UNIQUE,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""
