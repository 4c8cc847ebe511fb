from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from ledgersync.models import (
    Allocation,
    Card,
    CardTransaction,
    ImportLine,
    normalize_description,
    transaction_key,
)


def _make_transaction(**overrides) -> CardTransaction:
    values = {
        "id": "t1",
        "card_id": "c1",
        "date": dt.date(2024, 3, 5),
        "description": "Market XYZ",
        "amount": Decimal("42.10"),
        "allocations": (Allocation("SHARED", Decimal("42.10")),),
    }
    values.update(overrides)
    return CardTransaction(**values)


def test_transaction_key_folds_missing_installments() -> None:
    with_defaults = transaction_key("c1", "2024-03-05", "Market", Decimal("10"), 1, 1)
    without = transaction_key("c1", "2024-03-05", "Market", Decimal("10"), None, None)

    assert with_defaults == without
    assert without == "c1|2024-03-05|MARKET|10.00|1/1"


def test_transaction_key_distinguishes_installments() -> None:
    first = transaction_key("c1", "2024-03-05", "Store", "30", 1, 3)
    second = transaction_key("c1", "2024-03-05", "Store", "30", 2, 3)

    assert first != second
    assert first.endswith("|1/3")


def test_normalize_description_strips_accents_and_spaces() -> None:
    assert normalize_description("  Pão   de Açúcar ") == "PAO DE ACUCAR"


def test_card_transaction_derives_key_and_month() -> None:
    transaction = _make_transaction(installment_total=1)

    assert transaction.installment_total is None
    assert transaction.reference_month == "2024-03"
    assert transaction.transaction_key == "c1|2024-03-05|MARKET XYZ|42.10|1/1"
    assert transaction.status == "pending"
    assert transaction.created_at


def test_card_transaction_allocation_sum_must_match() -> None:
    with pytest.raises(ValueError):
        _make_transaction(allocations=(Allocation("SHARED", Decimal("40.00")),))

    split = _make_transaction(
        allocations=(
            Allocation("PARTY_A", Decimal("21.05")),
            Allocation("PARTY_B", Decimal("21.05")),
        )
    )
    assert len(split.allocations) == 2


def test_card_transaction_requires_allocation() -> None:
    with pytest.raises(ValueError):
        _make_transaction(allocations=())


def test_status_never_returns_to_pending() -> None:
    reconciled = _make_transaction().with_status("reconciled", "PARTY_B")

    assert reconciled.status == "reconciled"
    assert reconciled.allocations[0].attribution_tag == "PARTY_B"
    with pytest.raises(ValueError):
        reconciled.with_status("pending")


def test_card_transaction_payload_round_trip() -> None:
    original = _make_transaction(installment_index=2, installment_total=5, note="gift")
    restored = CardTransaction.from_payload(original.to_payload())

    assert restored == original


def test_card_validates_choices() -> None:
    with pytest.raises(ValueError):
        Card(id="c1", name="Card", bank="NOPE")
    card = Card.from_payload({"id": "c1", "name": "Card", "last_digits": " 1234 "})
    assert card.last_digits == "1234"
    assert card.default_attribution == "SHARED"


def test_import_line_validation() -> None:
    line = ImportLine(date="2024-03-05", description="Shop", amount="10.5", installment_total=0)

    assert line.amount == Decimal("10.50")
    assert line.installment_total is None
    with pytest.raises(ValueError):
        ImportLine(date="05/03/2024", description="Shop", amount="10")
    with pytest.raises(ValueError):
        ImportLine(date="2024-03-05", description="Shop", amount="-1")
