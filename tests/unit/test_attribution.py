from __future__ import annotations

from decimal import Decimal

from ledgersync.attribution import default_attribution_for_card, split
from ledgersync.models import Card


def test_split_shares() -> None:
    shared = split("SHARED", Decimal("100"))
    inverse = split("SHARED_INVERSE", Decimal("100"))

    assert (shared.party_a, shared.party_b) == (Decimal("60"), Decimal("40"))
    assert (inverse.party_a, inverse.party_b) == (Decimal("40"), Decimal("60"))
    assert split("PARTY_B", Decimal("10")).party_a == 0


def test_default_attribution_for_card() -> None:
    own = Card(id="c1", name="Own", holder="PARTY_A", default_attribution="PARTY_A")
    partner = Card(id="c2", name="Partner", holder="PARTY_B", default_attribution="PARTY_B")

    assert default_attribution_for_card(own) == "PARTY_A"
    assert default_attribution_for_card(partner) == "SHARED"
    assert default_attribution_for_card(None) == "SHARED"
