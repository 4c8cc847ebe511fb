from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from ledgersync.models import Allocation, Card, CardTransaction, ImportLine
from ledgersync.reconcile import (
    MATCH_EXACT,
    MATCH_FUZZY,
    STATUS_ALREADY_RECORDED,
    STATUS_NEW,
    MatchThresholds,
    descriptions_compatible,
    filter_lines_by_card_suffix,
    normalize_card_suffix,
    normalize_for_match,
    reconcile_import_lines,
)


def _card(last_digits: str = "") -> Card:
    return Card(id="c1", name="Main", last_digits=last_digits)


def _recorded(transaction_id: str, description: str, amount: str = "42.10", **extra):
    values = {
        "id": transaction_id,
        "card_id": "c1",
        "date": dt.date(2024, 3, 5),
        "description": description,
        "amount": Decimal(amount),
        "allocations": (Allocation("SHARED", Decimal(amount)),),
    }
    values.update(extra)
    return CardTransaction(**values)


def _line(description: str, amount: str = "42.10", **extra) -> ImportLine:
    return ImportLine(date="2024-03-05", description=description, amount=amount, **extra)


def test_normalize_for_match() -> None:
    assert normalize_for_match("Pão-de-Açúcar  #12") == "PAO DE ACUCAR 12"


def test_descriptions_compatible_rules() -> None:
    assert descriptions_compatible("uber trip", "UBER TRIP")
    assert descriptions_compatible("NETFLIX", "NETFLIX.COM SAO PAULO")
    assert not descriptions_compatible("BAR", "BAR DO ZE")
    assert descriptions_compatible("Posto Ipiranga Centro", "POSTO IPIRANGA 123")
    assert not descriptions_compatible("", "ANYTHING")


def test_thresholds_validate_and_load() -> None:
    with pytest.raises(ValueError):
        MatchThresholds(min_token_overlap=0)
    loaded = MatchThresholds.from_dict({"min_token_overlap": "1"})
    assert loaded == MatchThresholds(min_token_overlap=1)


def test_card_suffix_normalization_and_filter() -> None:
    assert normalize_card_suffix(" **** 1234 ") == "1234"
    assert normalize_card_suffix("virtual") == "VIRTUAL"

    lines = [_line("A", card_last_digits="1234"), _line("B", card_last_digits="9999"), _line("C")]
    kept, excluded = filter_lines_by_card_suffix(lines, "final 1234")

    assert [line.description for line in kept] == ["A", "C"]
    assert [line.description for line in excluded] == ["B"]
    assert filter_lines_by_card_suffix(lines, "") == (lines, [])


def test_exact_key_match() -> None:
    existing = [_recorded("t1", "Market XYZ")]

    result = reconcile_import_lines(_card(), [_line("  market   xyz ")], existing)

    item = result.items[0]
    assert item.status == STATUS_ALREADY_RECORDED
    assert item.matched_id == "t1"
    assert item.match_kind == MATCH_EXACT


def test_single_token_overlap_stays_new_by_default() -> None:
    existing = [_recorded("t1", "MARKET XYZ")]
    lines = [_line("Mercado XYZ Ltda")]

    default = reconcile_import_lines(_card(), lines, existing)
    relaxed = reconcile_import_lines(
        _card(), lines, existing, MatchThresholds(min_token_overlap=1)
    )

    assert default.items[0].status == STATUS_NEW
    assert relaxed.items[0].status == STATUS_ALREADY_RECORDED
    assert relaxed.items[0].match_kind == MATCH_FUZZY
    assert len(relaxed.new) == 0


def test_installments_are_not_merged() -> None:
    existing = [_recorded("t1", "Store", "30.00", installment_index=1, installment_total=3)]
    lines = [
        _line("Store", "30.00", installment_index=1, installment_total=3),
        _line("Store", "30.00", installment_index=2, installment_total=3),
    ]

    result = reconcile_import_lines(_card(), lines, existing)

    assert result.items[0].transaction_key != result.items[1].transaction_key
    assert result.items[0].matched_id == "t1"
    assert result.items[1].status == STATUS_NEW


def test_each_record_claimed_at_most_once() -> None:
    existing = [_recorded("t1", "Coffee Shop Central")]
    lines = [_line("Coffee Shop Central"), _line("Coffee Shop Central")]

    result = reconcile_import_lines(_card(), lines, existing)

    assert [item.status for item in result.items] == [STATUS_ALREADY_RECORDED, STATUS_NEW]


def test_exact_matches_claim_before_fuzzy() -> None:
    existing = [_recorded("t1", "Coffee Shop Central")]
    lines = [_line("Coffee Shop Centro"), _line("Coffee Shop Central")]

    result = reconcile_import_lines(_card(), lines, existing)

    assert [item.status for item in result.items] == [STATUS_NEW, STATUS_ALREADY_RECORDED]
    assert result.items[1].matched_id == "t1"
    assert result.items[1].match_kind == MATCH_EXACT


def test_same_inputs_give_same_assignments() -> None:
    existing = [
        _recorded("t1", "Coffee Shop Central"),
        _recorded("t2", "Coffee Shop Central"),
        _recorded("t3", "Posto Ipiranga Centro"),
    ]
    lines = [
        _line("Coffee Shop Central"),
        _line("POSTO IPIRANGA 123"),
        _line("Coffee Shop Central"),
        _line("Coffee Shop Central"),
    ]

    first = reconcile_import_lines(_card(), lines, existing)
    second = reconcile_import_lines(_card(), lines, existing)

    assignments = [(item.matched_id, item.match_kind) for item in first.items]
    assert assignments == [(item.matched_id, item.match_kind) for item in second.items]
    assert [item.transaction_key for item in first.items] == [
        item.transaction_key for item in second.items
    ]
    assert assignments == [
        ("t1", MATCH_EXACT),
        ("t3", MATCH_FUZZY),
        ("t2", MATCH_EXACT),
        (None, None),
    ]


def test_ambiguous_fuzzy_match_is_new() -> None:
    existing = [
        _recorded("t1", "Padaria Estrela Norte"),
        _recorded("t2", "Padaria Estrela Sul"),
    ]

    result = reconcile_import_lines(_card(), [_line("PADARIA ESTRELA")], existing)

    assert result.items[0].status == STATUS_NEW


def test_fuzzy_requires_same_date_amount_and_card() -> None:
    existing = [
        _recorded("t1", "Posto Ipiranga Centro", amount="50.00"),
        _recorded("t2", "Posto Ipiranga Centro", card_id="c2"),
        _recorded("t3", "Posto Ipiranga Centro", date=dt.date(2024, 3, 6)),
    ]

    result = reconcile_import_lines(_card(), [_line("POSTO IPIRANGA 123")], existing)

    assert result.items[0].status == STATUS_NEW


def test_excluded_lines_are_reported() -> None:
    lines = [_line("A", card_last_digits="1234"), _line("B", card_last_digits="5678")]

    result = reconcile_import_lines(_card("1234"), lines, [])

    assert result.total == 1
    assert [line.description for line in result.excluded] == ["B"]
