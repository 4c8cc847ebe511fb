"""Match imported statement lines against recorded card transactions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable
import re
import unicodedata

from ledgersync.models import (
    AMOUNT_TOLERANCE,
    Card,
    CardTransaction,
    ImportLine,
    ReconcileItem,
    ReconcileResult,
)

STATUS_ALREADY_RECORDED = "already_recorded"
STATUS_NEW = "new"
MATCH_EXACT = "exact"
MATCH_FUZZY = "fuzzy"

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")
_NON_DIGIT = re.compile(r"\D")


@dataclass(frozen=True)
class MatchThresholds:
    """Tunables for fuzzy description matching."""
    min_contain_length: int = 4
    min_token_length: int = 3
    min_token_overlap: int = 2

    def __post_init__(self) -> None:
        for name in ("min_contain_length", "min_token_length", "min_token_overlap"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"{name} must be a positive integer")

    @classmethod
    def from_dict(cls, payload: dict | None) -> "MatchThresholds":
        payload = payload or {}
        defaults = cls()
        return cls(
            min_contain_length=int(payload.get("min_contain_length", defaults.min_contain_length)),
            min_token_length=int(payload.get("min_token_length", defaults.min_token_length)),
            min_token_overlap=int(payload.get("min_token_overlap", defaults.min_token_overlap)),
        )


DEFAULT_THRESHOLDS = MatchThresholds()


def normalize_for_match(value: str) -> str:
    """Accent-free, punctuation-free, uppercase form used for fuzzy comparison."""
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return " ".join(_NON_ALNUM.sub(" ", stripped).split()).upper()


def descriptions_compatible(
    left: str, right: str, thresholds: MatchThresholds = DEFAULT_THRESHOLDS
) -> bool:
    a = normalize_for_match(left)
    b = normalize_for_match(right)
    if not a or not b:
        return False
    if a == b:
        return True
    if len(a) >= thresholds.min_contain_length and a in b:
        return True
    if len(b) >= thresholds.min_contain_length and b in a:
        return True

    tokens_b = {token for token in b.split(" ") if len(token) >= thresholds.min_token_length}
    overlap = 0
    for token in a.split(" "):
        if len(token) >= thresholds.min_token_length and token in tokens_b:
            overlap += 1
            if overlap >= thresholds.min_token_overlap:
                return True
    return False


def normalize_card_suffix(value: str | None) -> str:
    """Digits of a card suffix, or the uppercased text when it holds no digits."""
    trimmed = (value or "").strip()
    if not trimmed:
        return ""
    digits = _NON_DIGIT.sub("", trimmed)
    return digits or trimmed.upper()


def filter_lines_by_card_suffix(
    lines: Iterable[ImportLine], card_suffix: str | None
) -> tuple[list[ImportLine], list[ImportLine]]:
    """Split lines into ``(kept, excluded)`` by the card's configured suffix.

    Lines without a suffix are kept, and nothing is excluded when the card has
    no suffix configured.
    """
    lines = list(lines)
    target = normalize_card_suffix(card_suffix)
    if not target:
        return lines, []
    kept: list[ImportLine] = []
    excluded: list[ImportLine] = []
    for line in lines:
        suffix = normalize_card_suffix(line.card_last_digits)
        if not suffix or suffix == target:
            kept.append(line)
        else:
            excluded.append(line)
    return kept, excluded


def _find_fuzzy_match(
    line: ImportLine,
    existing: list[CardTransaction],
    claimed: set[str],
    thresholds: MatchThresholds,
) -> CardTransaction | None:
    candidates = [
        item
        for item in existing
        if item.id not in claimed
        and item.date == line.date
        and abs(item.amount - line.amount) <= AMOUNT_TOLERANCE
        and descriptions_compatible(line.description, item.description, thresholds)
    ]
    if len(candidates) == 1:
        return candidates[0]
    return None


def reconcile_import_lines(
    card: Card,
    lines: Iterable[ImportLine],
    existing: Iterable[CardTransaction],
    thresholds: MatchThresholds = DEFAULT_THRESHOLDS,
) -> ReconcileResult:
    """Classify each line as already recorded or new.

    An exact pass over every line claims records with the same transaction key
    before a fuzzy pass looks for exactly one unclaimed candidate for the lines
    still unmatched, so a fuzzy match never takes a later line's exact record.
    A record claimed by one line is never matched again in the same run.
    """
    kept, excluded = filter_lines_by_card_suffix(lines, card.last_digits)

    by_card: list[CardTransaction] = []
    by_key: dict[str, list[CardTransaction]] = {}
    for item in existing:
        if item.card_id != card.id:
            continue
        by_card.append(item)
        by_key.setdefault(item.transaction_key, []).append(item)

    claimed: set[str] = set()
    keys = [line.key_for(card.id) for line in kept]
    matches: list[tuple[CardTransaction | None, str | None]] = []
    for key in keys:
        match = next((item for item in by_key.get(key, []) if item.id not in claimed), None)
        if match is not None:
            claimed.add(match.id)
        matches.append((match, MATCH_EXACT if match else None))

    for index, line in enumerate(kept):
        if matches[index][0] is not None:
            continue
        match = _find_fuzzy_match(line, by_card, claimed, thresholds)
        if match is not None:
            claimed.add(match.id)
            matches[index] = (match, MATCH_FUZZY)

    items: list[ReconcileItem] = []
    for line, key, (match, kind) in zip(kept, keys, matches):
        items.append(
            ReconcileItem(
                line=line,
                transaction_key=key,
                status=STATUS_ALREADY_RECORDED if match else STATUS_NEW,
                matched_id=match.id if match else None,
                match_kind=kind,
            )
        )
    return ReconcileResult(items=items, excluded=excluded)
