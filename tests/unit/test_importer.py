from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from ledgersync.importer import (
    normalize_reference_month,
    preview_import,
    run_import,
    statement_note,
)
from ledgersync.models import Allocation, Card, CardTransaction, ImportLine


@pytest.fixture()
def card() -> Card:
    return Card(id="c1", name="Main", holder="PARTY_A", default_attribution="PARTY_A")


@pytest.fixture()
def recorded() -> list[CardTransaction]:
    return [
        CardTransaction(
            id="t1",
            card_id="c1",
            date=dt.date(2024, 3, 5),
            description="Market XYZ",
            amount=Decimal("42.10"),
            allocations=(Allocation("SHARED", Decimal("42.10")),),
            origin="statement",
        )
    ]


def _lines() -> list[ImportLine]:
    return [
        ImportLine(date="2024-03-05", description="MARKET XYZ", amount="42.10"),
        ImportLine(date="2024-03-07", description="Bookstore", amount="55.00", note="gift"),
    ]


def test_normalize_reference_month() -> None:
    assert normalize_reference_month(" 2024-04 ") == "2024-04"
    assert normalize_reference_month("") is None
    with pytest.raises(ValueError):
        normalize_reference_month("2024-13")


def test_statement_note_marker() -> None:
    assert statement_note("") == "[STATEMENT_IMPORT]"
    assert statement_note(" gift ") == "gift [STATEMENT_IMPORT]"


def test_preview_writes_nothing(card, recorded) -> None:
    summary = preview_import(card, _lines(), recorded)

    assert (summary.total, summary.already_recorded, summary.new) == (2, 1, 1)
    assert summary.imported == 0
    assert summary.default_attribution == "PARTY_A"


def test_run_creates_pending_statement_transactions(card, recorded) -> None:
    created: list[CardTransaction] = []

    summary = run_import(card, _lines(), recorded, created.append)

    assert summary.imported == 1
    assert summary.realigned_reference_month == 0
    transaction = created[0]
    assert transaction.origin == "statement"
    assert transaction.status == "pending"
    assert transaction.reference_month == "2024-03"
    assert transaction.note == "gift [STATEMENT_IMPORT]"
    assert [(item.attribution_tag, item.amount) for item in transaction.allocations] == [
        ("PARTY_A", Decimal("55.00"))
    ]


def test_run_with_reference_month_realigns_matches(card, recorded) -> None:
    created: list[CardTransaction] = []
    realign_calls = []

    def realign(ids, month):
        realign_calls.append((ids, month))
        return len(ids)

    summary = run_import(
        card, _lines(), recorded, created.append, realign=realign, reference_month="2024-04"
    )

    assert realign_calls == [(["t1"], "2024-04")]
    assert summary.realigned_reference_month == 1
    assert created[0].reference_month == "2024-04"


def test_dry_run_matches_preview(card, recorded) -> None:
    created: list[CardTransaction] = []

    summary = run_import(card, _lines(), recorded, created.append, dry_run=True)

    assert created == []
    assert (summary.already_recorded, summary.new, summary.imported) == (1, 1, 0)


def test_secondary_holder_defaults_to_shared(recorded) -> None:
    card = Card(id="c1", name="Extra", holder="DEPENDENT", default_attribution="PARTY_B")
    created: list[CardTransaction] = []

    run_import(card, _lines(), recorded, created.append)

    assert created[0].allocations[0].attribution_tag == "SHARED"
