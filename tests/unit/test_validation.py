from __future__ import annotations

import pytest

from ledgersync.exceptions import BatchValidationError
from ledgersync.schema import EntityType
from ledgersync.validation import (
    FieldError,
    slugify,
    validate_batch,
    validate_card_transaction,
    validate_category,
    validate_transaction,
)


def _card_transaction(**overrides) -> dict:
    record = {
        "id": "ct-1",
        "card_id": "c1",
        "date": "2024-03-05",
        "description": "Market XYZ",
        "amount": "30",
        "installment_index": 1,
        "installment_total": 3,
        "allocations": [
            {"attribution_tag": "PARTY_A", "amount": "15"},
            {"attribution_tag": "PARTY_B", "amount": "15.00"},
        ],
    }
    record.update(overrides)
    return record


def test_transaction_defaults_and_formatting(sample_transaction_payload) -> None:
    payload = dict(sample_transaction_payload, amount="42.1", category="", method=None)

    normalized = validate_transaction(payload)

    assert normalized["amount"] == "42.10"
    assert normalized["category"] == "UNCATEGORIZED"
    assert normalized["method"] == "other"
    assert normalized["created_at"] == "2024-03-05T10:00:00.000+00:00"


def test_transaction_rejects_zero_amount(sample_transaction_payload) -> None:
    with pytest.raises(FieldError) as excinfo:
        validate_transaction(dict(sample_transaction_payload, amount="0"))

    assert excinfo.value.field_name == "amount"


def test_card_transaction_recomputes_key_and_allocation_ids() -> None:
    normalized = validate_card_transaction(_card_transaction(transaction_key="stale"))

    assert normalized["transaction_key"] == "c1|2024-03-05|MARKET XYZ|30.00|1/3"
    assert [item["id"] for item in normalized["allocations"]] == ["ct-1-a1", "ct-1-a2"]
    assert normalized["reference_month"] == "2024-03"
    assert normalized["status"] == "pending"
    assert normalized["origin"] == "manual"


def test_card_transaction_allocation_sum_checked() -> None:
    record = _card_transaction(allocations=[{"attribution_tag": "SHARED", "amount": "29"}])

    with pytest.raises(FieldError) as excinfo:
        validate_card_transaction(record)

    assert excinfo.value.field_name == "allocations"


def test_card_transaction_reports_nested_allocation_field() -> None:
    record = _card_transaction(allocations=[{"attribution_tag": "NOBODY", "amount": "30"}])

    with pytest.raises(FieldError) as excinfo:
        validate_card_transaction(record)

    assert excinfo.value.field_name == "allocations[0].attribution_tag"


def test_category_slug_generated() -> None:
    normalized = validate_category({"id": "cat-1", "name": "  Saúde   e Bem-estar "})

    assert normalized["name"] == "Saúde e Bem-estar"
    assert normalized["slug"] == "saude-e-bem-estar"
    assert slugify("Água & Luz") == "agua-luz"


def test_batch_dedupes_upserts_and_deletes(sample_transaction_payload) -> None:
    older = dict(sample_transaction_payload, description="Old")
    newer = dict(sample_transaction_payload, description="New")

    batches = validate_batch(
        {
            "transactions_upsert": [older, newer],
            "transactions_delete_ids": ["tx-9", "tx-9", "tx-8"],
            "cards_upsert": [],
        }
    )

    assert list(batches) == [EntityType.TRANSACTION]
    batch = batches[EntityType.TRANSACTION]
    assert [item["description"] for item in batch.upserts] == ["New"]
    assert batch.delete_ids == ["tx-9", "tx-8"]


def test_batch_error_identifies_record(sample_transaction_payload) -> None:
    bad = dict(sample_transaction_payload, id="tx-2", kind="refund")

    with pytest.raises(BatchValidationError) as excinfo:
        validate_batch({"transactions_upsert": [sample_transaction_payload, bad]})

    assert excinfo.value.details == {
        "entity_type": "transaction",
        "bucket": "transactions_upsert",
        "index": 1,
        "id": "tx-2",
        "field": "kind",
        "message": "must be one of expense, income",
    }


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"unknown_upsert": []},
        {"cards_upsert": {"id": "c1"}},
        {"cards_delete_ids": [""]},
    ],
)
def test_batch_shape_errors(payload) -> None:
    with pytest.raises(BatchValidationError):
        validate_batch(payload)
