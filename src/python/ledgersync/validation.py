"""Shape and field validation for pushed batches."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable
import datetime as dt
import re
import unicodedata

from ledgersync.exceptions import BatchValidationError
from ledgersync.models import AMOUNT_TOLERANCE, format_amount, now_iso, transaction_key
from ledgersync.schema import (
    ATTRIBUTION_TAGS,
    BUCKET_LOOKUP,
    CARD_BANKS,
    CARD_HOLDERS,
    CARD_TX_ORIGINS,
    CARD_TX_STATUSES,
    DEFAULT_CATEGORY,
    ID_FIELDS,
    PAYERS,
    PAYMENT_METHODS,
    TRANSACTION_KINDS,
    Action,
    EntityType,
)

MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")
TRUE_VALUES = {"1", "true", "yes", "y", "on", "active"}
FALSE_VALUES = {"0", "false", "no", "n", "off", "inactive"}


class FieldError(ValueError):
    """A single invalid field inside one record."""

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(f"{field_name}: {message}")
        self.field_name = field_name
        self.message = message


@dataclass
class EntityBatch:
    """Validated upserts and delete ids for one entity type."""
    upserts: list[dict[str, Any]] = field(default_factory=list)
    delete_ids: list[str] = field(default_factory=list)


def _text(record: dict[str, Any], name: str, required: bool = True, default: str = "") -> str:
    value = record.get(name)
    if value is None or not str(value).strip():
        if required:
            raise FieldError(name, "is required")
        return default
    return str(value).strip()


def _choice(
    record: dict[str, Any], name: str, allowed: tuple[str, ...], default: str | None = None
) -> str:
    value = record.get(name)
    if (value is None or value == "") and default is not None:
        return default
    if value not in allowed:
        raise FieldError(name, f"must be one of {', '.join(allowed)}")
    return str(value)


def _date(record: dict[str, Any], name: str) -> str:
    value = _text(record, name)
    try:
        return dt.date.fromisoformat(value).isoformat()
    except ValueError as exc:
        raise FieldError(name, "must be YYYY-MM-DD") from exc


def _decimal(
    record: dict[str, Any],
    name: str,
    required: bool = True,
    minimum: Decimal | None = None,
    non_zero: bool = False,
) -> Decimal | None:
    value = record.get(name)
    if value is None or value == "":
        if required:
            raise FieldError(name, "is required")
        return None
    if isinstance(value, bool):
        raise FieldError(name, "must be numeric")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise FieldError(name, "must be numeric") from exc
    if not amount.is_finite():
        raise FieldError(name, "must be numeric")
    if minimum is not None and amount < minimum:
        raise FieldError(name, f"must be at least {minimum}")
    if non_zero and amount == 0:
        raise FieldError(name, "must not be zero")
    return amount


def _integer(
    record: dict[str, Any],
    name: str,
    low: int | None = None,
    high: int | None = None,
    required: bool = True,
    default: int | None = None,
) -> int | None:
    value = record.get(name)
    if value is None or value == "":
        if required:
            raise FieldError(name, "is required")
        return default
    if isinstance(value, bool):
        raise FieldError(name, "must be an integer")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise FieldError(name, "must be an integer") from exc
    if not number.is_finite() or number != number.to_integral_value():
        raise FieldError(name, "must be an integer")
    result = int(number)
    if low is not None and result < low:
        raise FieldError(name, f"must be between {low} and {high}" if high else f"must be >= {low}")
    if high is not None and result > high:
        raise FieldError(name, f"must be between {low} and {high}")
    return result


def _boolean(record: dict[str, Any], name: str, default: bool = True) -> bool:
    value = record.get(name)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise FieldError(name, "must be a boolean")


def _timestamps(record: dict[str, Any]) -> dict[str, str]:
    now = now_iso()
    created_at = _text(record, "created_at", required=False) or now
    updated_at = _text(record, "updated_at", required=False) or created_at
    return {"created_at": created_at, "updated_at": updated_at}


def slugify(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return re.sub(r"[^a-z0-9]+", "-", stripped.lower()).strip("-")


def validate_transaction(record: dict[str, Any]) -> dict[str, Any]:
    amount = _decimal(record, "amount", non_zero=True)
    return {
        "id": _text(record, "id"),
        "date": _date(record, "date"),
        "kind": _choice(record, "kind", TRANSACTION_KINDS),
        "description": _text(record, "description"),
        "category": _text(record, "category", required=False, default=DEFAULT_CATEGORY),
        "amount": format_amount(amount),
        "attribution_tag": _choice(record, "attribution_tag", ATTRIBUTION_TAGS),
        "method": _choice(record, "method", PAYMENT_METHODS, default="other"),
        "installment_index": _integer(record, "installment_index", low=1, required=False),
        "installment_total": _integer(record, "installment_total", low=1, required=False),
        "note": _text(record, "note", required=False),
        "paid_by": _choice(record, "paid_by", PAYERS, default="PARTY_A"),
        **_timestamps(record),
    }


def validate_fixed_bill(record: dict[str, Any]) -> dict[str, Any]:
    expected = _decimal(record, "expected_amount", required=False, minimum=Decimal("0"))
    return {
        "id": _text(record, "id"),
        "name": _text(record, "name"),
        "due_day": _integer(record, "due_day", low=1, high=31),
        "expected_amount": None if expected is None else format_amount(expected),
        "attribution_tag": _choice(record, "attribution_tag", ATTRIBUTION_TAGS),
        "category": _text(record, "category"),
        "remind_days_before": _text(record, "remind_days_before", required=False, default="5,2"),
        "active": _boolean(record, "active"),
    }


def validate_annual_event(record: dict[str, Any]) -> dict[str, Any]:
    estimated = _decimal(record, "estimated_amount", minimum=Decimal("0"))
    return {
        "id": _text(record, "id"),
        "month": _integer(record, "month", low=1, high=12),
        "event": _text(record, "event"),
        "estimated_amount": format_amount(estimated),
        "remind_days_before": _text(
            record, "remind_days_before", required=False, default="10,5,2"
        ),
        "attribution_tag": _choice(record, "attribution_tag", ATTRIBUTION_TAGS),
        "category": _text(record, "category"),
        "note": _text(record, "note", required=False),
        "day_of_month": _integer(
            record, "day_of_month", low=1, high=31, required=False, default=1
        ),
    }


def validate_category(record: dict[str, Any]) -> dict[str, Any]:
    name = " ".join(_text(record, "name").split())
    slug = _text(record, "slug", required=False) or slugify(name)
    if not slug:
        raise FieldError("slug", "is required")
    return {
        "id": _text(record, "id"),
        "name": name,
        "slug": slug,
        "order": _integer(record, "order", low=0, required=False),
        "active": _boolean(record, "active"),
        **_timestamps(record),
    }


def validate_income_rule(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "key": _text(record, "key"),
        "value": _text(record, "value", required=False),
    }


def validate_card(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": _text(record, "id"),
        "name": _text(record, "name"),
        "bank": _choice(record, "bank", CARD_BANKS),
        "holder": _choice(record, "holder", CARD_HOLDERS),
        "last_digits": _text(record, "last_digits", required=False),
        "default_attribution": _choice(record, "default_attribution", ATTRIBUTION_TAGS),
        "active": _boolean(record, "active"),
        **_timestamps(record),
    }


def validate_card_transaction(record: dict[str, Any]) -> dict[str, Any]:
    card_id = _text(record, "card_id")
    date = _date(record, "date")
    description = _text(record, "description")
    amount = _decimal(record, "amount", minimum=Decimal("0"), non_zero=True)
    installment_total = _integer(record, "installment_total", low=1, required=False)
    installment_index = _integer(record, "installment_index", low=1, required=False)
    if installment_total is not None and installment_total <= 1:
        installment_total = None
    reference_month = _text(record, "reference_month", required=False) or date[:7]
    if not MONTH_PATTERN.match(reference_month):
        raise FieldError("reference_month", "must be YYYY-MM")

    raw_allocations = record.get("allocations")
    if not isinstance(raw_allocations, list) or not raw_allocations:
        raise FieldError("allocations", "must be a non-empty list")
    allocations = []
    for index, item in enumerate(raw_allocations):
        if not isinstance(item, dict):
            raise FieldError(f"allocations[{index}]", "must be an object")
        try:
            tag = _choice(item, "attribution_tag", ATTRIBUTION_TAGS)
            share = _decimal(item, "amount", minimum=Decimal("0"))
        except FieldError as exc:
            raise FieldError(f"allocations[{index}].{exc.field_name}", exc.message) from exc
        allocations.append(
            {
                "id": _text(item, "id", required=False) or f"{_text(record, 'id')}-a{index + 1}",
                "attribution_tag": tag,
                "amount": format_amount(share),
            }
        )
    allocated = sum((Decimal(item["amount"]) for item in allocations), Decimal("0"))
    if abs(allocated - amount) > AMOUNT_TOLERANCE:
        raise FieldError("allocations", "must add up to amount")

    return {
        "id": _text(record, "id"),
        "card_id": card_id,
        "date": date,
        "description": description,
        "amount": format_amount(amount),
        "installment_index": installment_index,
        "installment_total": installment_total,
        "transaction_key": transaction_key(
            card_id, date, description, amount, installment_index, installment_total
        ),
        "origin": _choice(record, "origin", CARD_TX_ORIGINS, default="manual"),
        "status": _choice(record, "status", CARD_TX_STATUSES, default="pending"),
        "reference_month": reference_month,
        "note": _text(record, "note", required=False),
        **_timestamps(record),
        "allocations": allocations,
    }


VALIDATORS: dict[EntityType, Callable[[dict[str, Any]], dict[str, Any]]] = {
    EntityType.TRANSACTION: validate_transaction,
    EntityType.FIXED_BILL: validate_fixed_bill,
    EntityType.ANNUAL_EVENT: validate_annual_event,
    EntityType.CATEGORY: validate_category,
    EntityType.INCOME_RULE: validate_income_rule,
    EntityType.CARD: validate_card,
    EntityType.CARD_TRANSACTION: validate_card_transaction,
}


def _error(
    entity_type: EntityType | None,
    bucket: str,
    index: int | None,
    record_id: str | None,
    field_name: str,
    message: str,
) -> BatchValidationError:
    label = entity_type.value if entity_type else bucket
    position = f"[{index}]" if index is not None else ""
    return BatchValidationError(
        f"Invalid {label}{position} field {field_name}: {message}",
        {
            "entity_type": entity_type.value if entity_type else None,
            "bucket": bucket,
            "index": index,
            "id": record_id,
            "field": field_name,
            "message": message,
        },
    )


def validate_batch(payload: Any) -> dict[EntityType, EntityBatch]:
    """Validate a grouped batch; every record must pass before anything is applied.

    Upserts repeated with the same id keep the last occurrence, and delete ids
    are de-duplicated preserving first-seen order.
    """
    if not isinstance(payload, dict):
        raise _error(None, "batch", None, None, "batch", "must be an object")

    batches: dict[EntityType, EntityBatch] = {}
    for bucket, items in payload.items():
        if bucket not in BUCKET_LOOKUP:
            raise _error(None, str(bucket), None, None, "bucket", "unknown bucket")
        entity_type, action = BUCKET_LOOKUP[bucket]
        if not isinstance(items, list):
            raise _error(entity_type, bucket, None, None, bucket, "must be a list")
        if not items:
            continue
        target = batches.setdefault(entity_type, EntityBatch())
        id_field = ID_FIELDS[entity_type]

        if action is Action.DELETE:
            for index, item in enumerate(items):
                if item is None or not str(item).strip() or isinstance(item, (dict, list)):
                    raise _error(entity_type, bucket, index, None, id_field, "must be a non-empty id")
                record_id = str(item).strip()
                if record_id not in target.delete_ids:
                    target.delete_ids.append(record_id)
            continue

        by_id: dict[str, dict[str, Any]] = {}
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise _error(entity_type, bucket, index, None, "record", "must be an object")
            raw_id = item.get(id_field)
            record_id = str(raw_id).strip() if raw_id is not None else None
            try:
                normalized = VALIDATORS[entity_type](item)
            except FieldError as exc:
                raise _error(
                    entity_type, bucket, index, record_id, exc.field_name, exc.message
                ) from exc
            key = normalized[id_field]
            by_id.pop(key, None)
            by_id[key] = normalized
        target.upserts.extend(by_id.values())

    return {entity: batch for entity, batch in batches.items() if batch.upserts or batch.delete_ids}
