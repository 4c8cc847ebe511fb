"""Attribution split tables."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ledgersync.models import Card

SPLIT_TABLE = {
    "PARTY_A": (Decimal("1"), Decimal("0")),
    "PARTY_B": (Decimal("0"), Decimal("1")),
    "SHARED": (Decimal("0.6"), Decimal("0.4")),
    "SHARED_INVERSE": (Decimal("0.4"), Decimal("0.6")),
}


@dataclass(frozen=True)
class Split:
    party_a: Decimal
    party_b: Decimal


def split(tag: str, amount: Decimal) -> Split:
    """Split ``amount`` between the two parties according to ``tag``."""
    share_a, share_b = SPLIT_TABLE.get(tag, (Decimal("0"), Decimal("0")))
    return Split(party_a=amount * share_a, party_b=amount * share_b)


def default_attribution_for_card(card: Card | None) -> str:
    """Attribution given to freshly imported lines of ``card``."""
    if card is None:
        return "SHARED"
    if card.holder in ("PARTY_B", "DEPENDENT"):
        return "SHARED"
    return card.default_attribution
