"""Statement import: preview classification and committing new lines."""

from __future__ import annotations

from typing import Callable, Iterable
import logging
import re

from ledgersync.attribution import default_attribution_for_card
from ledgersync.models import (
    Allocation,
    Card,
    CardTransaction,
    ImportSummary,
    ReconcileItem,
    ReconcileResult,
    new_id,
)
from ledgersync.reconcile import DEFAULT_THRESHOLDS, MatchThresholds, reconcile_import_lines
from ledgersync.schema import ORIGIN_STATEMENT, STATEMENT_IMPORT_MARKER, STATUS_PENDING

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

TransactionSink = Callable[[CardTransaction], None]
Realigner = Callable[[list[str], str], int]


def normalize_reference_month(value: str | None) -> str | None:
    text = (value or "").strip()
    if not text:
        return None
    if not MONTH_PATTERN.match(text):
        raise ValueError("reference_month must be YYYY-MM")
    return text


def statement_note(note: str) -> str:
    note = (note or "").strip()
    return f"{note} {STATEMENT_IMPORT_MARKER}" if note else STATEMENT_IMPORT_MARKER


def build_statement_transaction(
    card: Card,
    item: ReconcileItem,
    attribution_tag: str,
    reference_month: str | None = None,
) -> CardTransaction:
    """Pending statement transaction for a line with no recorded counterpart."""
    line = item.line
    return CardTransaction(
        id=new_id(),
        card_id=card.id,
        date=line.date,
        description=line.description,
        amount=line.amount,
        allocations=(Allocation(attribution_tag, line.amount),),
        installment_index=line.installment_index,
        installment_total=line.installment_total,
        origin=ORIGIN_STATEMENT,
        status=STATUS_PENDING,
        reference_month=reference_month or line.date.strftime("%Y-%m"),
        note=statement_note(line.note),
    )


def _summary(
    card: Card,
    result: ReconcileResult,
    imported: int = 0,
    realigned: int = 0,
    created: list[CardTransaction] | None = None,
) -> ImportSummary:
    return ImportSummary(
        card_id=card.id,
        total=result.total,
        already_recorded=len(result.already_recorded),
        new=len(result.new),
        excluded_by_card_suffix=len(result.excluded),
        imported=imported,
        realigned_reference_month=realigned,
        default_attribution=default_attribution_for_card(card),
        created=created or [],
        items=result.items,
    )


def preview_import(
    card: Card,
    lines: Iterable,
    existing: Iterable[CardTransaction],
    thresholds: MatchThresholds = DEFAULT_THRESHOLDS,
) -> ImportSummary:
    """Classify lines without writing anything."""
    result = reconcile_import_lines(card, lines, existing, thresholds)
    return _summary(card, result)


def run_import(
    card: Card,
    lines: Iterable,
    existing: Iterable[CardTransaction],
    sink: TransactionSink,
    realign: Realigner | None = None,
    reference_month: str | None = None,
    dry_run: bool = False,
    thresholds: MatchThresholds = DEFAULT_THRESHOLDS,
) -> ImportSummary:
    """Reconcile lines and hand every new one to ``sink``.

    When ``reference_month`` is given, already recorded statement transactions
    are moved to that month through ``realign``. A dry run reports the same
    classification and writes nothing.
    """
    reference_month = normalize_reference_month(reference_month)
    result = reconcile_import_lines(card, lines, existing, thresholds)
    if dry_run:
        return _summary(card, result)

    realigned = 0
    matched_ids = list(
        dict.fromkeys(item.matched_id for item in result.already_recorded if item.matched_id)
    )
    if reference_month and matched_ids and realign is not None:
        realigned = realign(matched_ids, reference_month)

    attribution_tag = default_attribution_for_card(card)
    created = []
    for item in result.new:
        transaction = build_statement_transaction(card, item, attribution_tag, reference_month)
        sink(transaction)
        created.append(transaction)

    logger.info(
        "Imported %d new lines for card %s (%d already recorded, %d excluded)",
        len(created),
        card.id,
        len(result.already_recorded),
        len(result.excluded),
    )
    return _summary(card, result, imported=len(created), realigned=realigned, created=created)
