"""Domain models and data transfer objects."""

from __future__ import annotations

from dataclasses import dataclass, field
import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Any
import unicodedata
import re
import uuid

from ledgersync.schema import (
    ATTRIBUTION_TAGS,
    CARD_BANKS,
    CARD_HOLDERS,
    CARD_TX_ORIGINS,
    CARD_TX_STATUSES,
    ORIGIN_MANUAL,
    STATUS_PENDING,
    STATUS_RECONCILED,
    SYNC_IDLE,
    Action,
    EntityType,
)

CENT = Decimal("0.01")
AMOUNT_TOLERANCE = Decimal("0.01")
_WHITESPACE = re.compile(r"\s+")


def _ensure_date(value: dt.date | dt.datetime | str) -> dt.date:
    """Normalize a date, datetime or ISO string to a date."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        try:
            return dt.date.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValueError("Date must be YYYY-MM-DD") from exc
    raise ValueError("Date must be a datetime.date")


def _ensure_non_empty(value: str | None, field_name: str) -> str:
    """Validate required text fields."""
    if value is None or not str(value).strip():
        raise ValueError(f"{field_name} is required")
    return str(value).strip()


def _ensure_decimal(value: Decimal | str | int | float, field_name: str) -> Decimal:
    """Parse and validate positive decimal values."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{field_name} must be a decimal") from exc
    if not amount.is_finite():
        raise ValueError(f"{field_name} must be a decimal")
    if amount <= Decimal("0"):
        raise ValueError(f"{field_name} must be greater than zero")
    return amount.quantize(CENT)


def _ensure_choice(value: str, allowed: tuple[str, ...], field_name: str) -> str:
    if value not in allowed:
        raise ValueError(f"{field_name} must be one of {', '.join(allowed)}")
    return value


def _optional_positive_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def now_iso() -> str:
    """Current UTC timestamp in ISO format."""
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds")


def new_id() -> str:
    return str(uuid.uuid4())


def format_amount(amount: Decimal) -> str:
    return str(amount.quantize(CENT))


def normalize_description(value: str) -> str:
    """Strip accents, collapse whitespace and uppercase a description."""
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _WHITESPACE.sub(" ", stripped).strip().upper()


def transaction_key(
    card_id: str,
    date: dt.date | str,
    description: str,
    amount: Decimal | str | int | float,
    installment_index: int | None = None,
    installment_total: int | None = None,
) -> str:
    """Fold the identifying fields of a card transaction into a stable key.

    Missing installment fields fold as ``1/1`` so a single-payment purchase has
    the same key whether or not the installment columns were filled in.
    """
    total = installment_total if installment_total and installment_total > 1 else 1
    index = installment_index if installment_index and installment_index > 0 else 1
    date_text = date.isoformat() if isinstance(date, dt.date) else str(date).strip()
    amount_value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return "|".join(
        [
            card_id,
            date_text,
            normalize_description(description),
            format_amount(amount_value),
            f"{index}/{total}",
        ]
    )


@dataclass(frozen=True)
class MutationOp:
    """One queued create/update/delete intended for the authoritative store."""
    op_id: str
    entity_type: EntityType
    entity_id: str
    action: Action
    payload: dict[str, Any] | None
    created_at: str


@dataclass(frozen=True)
class EntitySnapshot:
    """Latest locally known version of a record.

    ``pending_sync`` is derived from queue membership: the snapshot is
    provisional until the op that produced it has been applied remotely.
    """
    entity_type: EntityType
    item_id: str
    payload: dict[str, Any]
    updated_at: str
    pending_sync: bool = False


@dataclass(frozen=True)
class Allocation:
    """Share of a card transaction owned by one attribution party."""
    attribution_tag: str
    amount: Decimal
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        _ensure_choice(self.attribution_tag, ATTRIBUTION_TAGS, "attribution_tag")
        object.__setattr__(self, "amount", _ensure_decimal(self.amount, "Allocation amount"))

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "attribution_tag": self.attribution_tag,
            "amount": format_amount(self.amount),
        }


@dataclass(frozen=True)
class Card:
    """Credit card configuration."""
    id: str
    name: str
    bank: str = "OTHER"
    holder: str = "PARTY_A"
    last_digits: str = ""
    default_attribution: str = "SHARED"
    active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _ensure_non_empty(self.id, "Card id"))
        object.__setattr__(self, "name", _ensure_non_empty(self.name, "Card name"))
        _ensure_choice(self.bank, CARD_BANKS, "bank")
        _ensure_choice(self.holder, CARD_HOLDERS, "holder")
        _ensure_choice(self.default_attribution, ATTRIBUTION_TAGS, "default_attribution")
        object.__setattr__(self, "last_digits", (self.last_digits or "").strip())

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "bank": self.bank,
            "holder": self.holder,
            "last_digits": self.last_digits,
            "default_attribution": self.default_attribution,
            "active": self.active,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Card":
        return cls(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            bank=str(payload.get("bank") or "OTHER"),
            holder=str(payload.get("holder") or "PARTY_A"),
            last_digits=str(payload.get("last_digits") or ""),
            default_attribution=str(payload.get("default_attribution") or "SHARED"),
            active=bool(payload.get("active", True)),
        )


@dataclass(frozen=True)
class CardTransaction:
    """A credit-card purchase or installment with its attribution split."""
    id: str
    card_id: str
    date: dt.date
    description: str
    amount: Decimal
    allocations: tuple[Allocation, ...]
    installment_index: int | None = None
    installment_total: int | None = None
    origin: str = ORIGIN_MANUAL
    status: str = STATUS_PENDING
    reference_month: str = ""
    note: str = ""
    transaction_key: str = ""
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _ensure_non_empty(self.id, "Transaction id"))
        object.__setattr__(self, "card_id", _ensure_non_empty(self.card_id, "Card"))
        object.__setattr__(self, "date", _ensure_date(self.date))
        object.__setattr__(
            self, "description", _ensure_non_empty(self.description, "Description")
        )
        object.__setattr__(self, "amount", _ensure_decimal(self.amount, "Amount"))
        object.__setattr__(self, "allocations", tuple(self.allocations))
        _ensure_choice(self.origin, CARD_TX_ORIGINS, "origin")
        _ensure_choice(self.status, CARD_TX_STATUSES, "status")
        total = _optional_positive_int(self.installment_total)
        object.__setattr__(self, "installment_total", total if total and total > 1 else None)
        object.__setattr__(
            self, "installment_index", _optional_positive_int(self.installment_index)
        )
        if not self.allocations:
            raise ValueError("At least one allocation is required")
        allocated = sum((item.amount for item in self.allocations), Decimal("0"))
        if abs(allocated - self.amount) > AMOUNT_TOLERANCE:
            raise ValueError("Allocations must add up to the transaction amount")
        if not self.reference_month:
            object.__setattr__(self, "reference_month", self.date.strftime("%Y-%m"))
        object.__setattr__(
            self,
            "transaction_key",
            transaction_key(
                self.card_id,
                self.date,
                self.description,
                self.amount,
                self.installment_index,
                self.installment_total,
            ),
        )
        now = now_iso()
        if not self.created_at:
            object.__setattr__(self, "created_at", now)
        if not self.updated_at:
            object.__setattr__(self, "updated_at", self.created_at)

    def with_status(self, status: str, attribution_tag: str | None = None) -> "CardTransaction":
        """Return a copy moved to ``status``; reconciled never moves back to pending."""
        if self.status == STATUS_RECONCILED and status == STATUS_PENDING:
            raise ValueError("A reconciled transaction cannot return to pending")
        allocations = self.allocations
        if attribution_tag is not None:
            first_id = self.allocations[0].id if self.allocations else new_id()
            allocations = (Allocation(attribution_tag, self.amount, first_id),)
        return CardTransaction(
            id=self.id,
            card_id=self.card_id,
            date=self.date,
            description=self.description,
            amount=self.amount,
            allocations=allocations,
            installment_index=self.installment_index,
            installment_total=self.installment_total,
            origin=self.origin,
            status=status,
            reference_month=self.reference_month,
            note=self.note,
            created_at=self.created_at,
            updated_at=now_iso(),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "card_id": self.card_id,
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": format_amount(self.amount),
            "installment_index": self.installment_index,
            "installment_total": self.installment_total,
            "transaction_key": self.transaction_key,
            "origin": self.origin,
            "status": self.status,
            "reference_month": self.reference_month,
            "note": self.note,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "allocations": [item.to_payload() for item in self.allocations],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "CardTransaction":
        allocations = tuple(
            Allocation(
                attribution_tag=str(item.get("attribution_tag") or ""),
                amount=item.get("amount"),
                id=str(item.get("id") or new_id()),
            )
            for item in payload.get("allocations") or []
        )
        return cls(
            id=str(payload.get("id") or ""),
            card_id=str(payload.get("card_id") or ""),
            date=payload.get("date") or "",
            description=str(payload.get("description") or ""),
            amount=payload.get("amount"),
            allocations=allocations,
            installment_index=payload.get("installment_index"),
            installment_total=payload.get("installment_total"),
            origin=str(payload.get("origin") or ORIGIN_MANUAL),
            status=str(payload.get("status") or STATUS_PENDING),
            reference_month=str(payload.get("reference_month") or ""),
            note=str(payload.get("note") or ""),
            created_at=str(payload.get("created_at") or ""),
            updated_at=str(payload.get("updated_at") or ""),
        )


@dataclass(frozen=True)
class ImportLine:
    """One parsed statement line; never persisted."""
    date: dt.date
    description: str
    amount: Decimal
    installment_index: int | None = None
    installment_total: int | None = None
    card_last_digits: str = ""
    note: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", _ensure_date(self.date))
        object.__setattr__(
            self, "description", _ensure_non_empty(self.description, "Description")
        )
        object.__setattr__(self, "amount", _ensure_decimal(self.amount, "Amount"))
        object.__setattr__(
            self, "installment_index", _optional_positive_int(self.installment_index)
        )
        object.__setattr__(
            self, "installment_total", _optional_positive_int(self.installment_total)
        )

    def key_for(self, card_id: str) -> str:
        return transaction_key(
            card_id,
            self.date,
            self.description,
            self.amount,
            self.installment_index,
            self.installment_total,
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ImportLine":
        return cls(
            date=payload.get("date") or "",
            description=str(payload.get("description") or ""),
            amount=payload.get("amount"),
            installment_index=payload.get("installment_index"),
            installment_total=payload.get("installment_total"),
            card_last_digits=str(payload.get("card_last_digits") or ""),
            note=str(payload.get("note") or ""),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": format_amount(self.amount),
            "installment_index": self.installment_index,
            "installment_total": self.installment_total,
            "card_last_digits": self.card_last_digits,
            "note": self.note,
        }


@dataclass(frozen=True)
class ReconcileItem:
    """Classification of a single import line."""
    line: ImportLine
    transaction_key: str
    status: str
    matched_id: str | None = None
    match_kind: str | None = None


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation run."""
    items: list[ReconcileItem]
    excluded: list[ImportLine]

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def already_recorded(self) -> list[ReconcileItem]:
        return [item for item in self.items if item.matched_id is not None]

    @property
    def new(self) -> list[ReconcileItem]:
        return [item for item in self.items if item.matched_id is None]


@dataclass(frozen=True)
class ImportSummary:
    """Counts reported by an import preview or run."""
    card_id: str
    total: int
    already_recorded: int
    new: int
    excluded_by_card_suffix: int
    imported: int
    realigned_reference_month: int
    default_attribution: str
    created: list[CardTransaction] = field(default_factory=list)
    items: list[ReconcileItem] = field(default_factory=list)


@dataclass(frozen=True)
class SyncState:
    """Snapshot of the orchestrator's sync status."""
    status: str = SYNC_IDLE
    last_error: str | None = None
    last_success_at: str | None = None
    last_applied_count: int = 0
    last_synced_ids: tuple[str, ...] = ()
    updated_at: str | None = None


@dataclass(frozen=True)
class SyncOutcome:
    """Result of one sync invocation."""
    pushed: int
    pending_before_dedupe: int
    synced_ids: list[str]
    discarded: int = 0
    nothing_to_sync: bool = False


@dataclass
class EntityCounts:
    """Per-entity application counters."""
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    missing: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "deleted": self.deleted,
            "missing": self.missing,
        }


@dataclass(frozen=True)
class ApplyResult:
    """Result of applying one pushed batch."""
    mode: str
    counts: dict[str, EntityCounts]
    synced_ids: list[str]

    @property
    def sent_count(self) -> int:
        return sum(
            counts.inserted + counts.updated + counts.deleted + counts.missing
            for counts in self.counts.values()
        )
