"""Card and card transaction CLI commands."""

from __future__ import annotations

import click

from ledgersync.cli.common import get_client, parse_date, parse_decimal
from ledgersync.exceptions import NotFoundError
from ledgersync.models import Card, new_id
from ledgersync.schema import ATTRIBUTION_TAGS, CARD_BANKS, CARD_HOLDERS


@click.group()
def card() -> None:
    """Card commands."""


@card.command("add")
@click.option("--name", required=True, help="Card name.")
@click.option("--bank", type=click.Choice(CARD_BANKS), default="OTHER", show_default=True)
@click.option("--holder", type=click.Choice(CARD_HOLDERS), default="PARTY_A", show_default=True)
@click.option("--last-digits", default="", help="Card suffix printed on statements.")
@click.option(
    "--default-attribution",
    type=click.Choice(ATTRIBUTION_TAGS),
    default="SHARED",
    show_default=True,
)
@click.option("--id", "card_id", default=None, help="Card id; generated when omitted.")
@click.pass_context
def add_card(
    ctx: click.Context,
    name: str,
    bank: str,
    holder: str,
    last_digits: str,
    default_attribution: str,
    card_id: str | None,
) -> None:
    """Add a card."""
    try:
        new_card = Card(
            id=card_id or new_id(),
            name=name,
            bank=bank,
            holder=holder,
            last_digits=last_digits,
            default_attribution=default_attribution,
        )
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    with get_client(ctx) as client:
        record = client.add_card(new_card)
    click.echo(f"Added card {record.id}")


@card.command("list")
@click.pass_context
def list_cards(ctx: click.Context) -> None:
    """List cards."""
    with get_client(ctx) as client:
        cards = client.list_cards()
    if not cards:
        click.echo("No cards found.")
        return
    for item in cards:
        click.echo(
            f"{item.id}\t{item.name}\t{item.bank}\t{item.holder}"
            f"\t{item.last_digits}\t{item.default_attribution}"
        )


@click.group("card-tx")
def card_tx() -> None:
    """Card transaction commands."""


@card_tx.command("add")
@click.option("--card", "card_id", required=True, help="Card id.")
@click.option("--date", "date_value", required=True, help="Purchase date in YYYY-MM-DD.")
@click.option("--description", required=True, help="Purchase description.")
@click.option("--amount", "amount_value", required=True, help="Purchase amount.")
@click.option("--tag", type=click.Choice(ATTRIBUTION_TAGS), default=None, help="Attribution.")
@click.option("--installment", default=None, help="Installment as n/t.")
@click.option("--note", default="", help="Free-form note.")
@click.pass_context
def add_card_transaction(
    ctx: click.Context,
    card_id: str,
    date_value: str,
    description: str,
    amount_value: str,
    tag: str | None,
    installment: str | None,
    note: str,
) -> None:
    """Add a manual card transaction."""
    date = parse_date(date_value, "--date")
    amount = parse_decimal(amount_value, "--amount")
    index, total = None, None
    if installment:
        try:
            index_text, total_text = installment.split("/", 1)
            index, total = int(index_text), int(total_text)
        except ValueError as exc:
            raise click.BadParameter("Use n/t format.", param_hint="--installment") from exc
    with get_client(ctx) as client:
        try:
            record = client.add_card_transaction(
                card_id,
                date,
                description,
                amount,
                attribution_tag=tag,
                installment_index=index,
                installment_total=total,
                note=note,
            )
        except NotFoundError as exc:
            raise click.ClickException(f"Card {card_id!r} not found.") from exc
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo(f"Added card transaction {record.id} ({record.status})")


@card_tx.command("classify")
@click.argument("transaction_id")
@click.option("--tag", type=click.Choice(ATTRIBUTION_TAGS), required=True, help="Attribution.")
@click.pass_context
def classify_card_transaction(ctx: click.Context, transaction_id: str, tag: str) -> None:
    """Assign an attribution and mark the transaction reconciled."""
    with get_client(ctx) as client:
        try:
            record = client.classify_card_transaction(transaction_id, tag)
        except NotFoundError as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo(f"Classified {record.id} as {tag}")


@card_tx.command("delete")
@click.argument("transaction_id")
@click.pass_context
def delete_card_transaction(ctx: click.Context, transaction_id: str) -> None:
    """Delete a card transaction."""
    with get_client(ctx) as client:
        try:
            client.delete_card_transaction(transaction_id)
        except NotFoundError as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo(f"Deleted card transaction {transaction_id}")


@card_tx.command("list")
@click.option("--card", "card_id", default=None, help="Filter by card id.")
@click.pass_context
def list_card_transactions(ctx: click.Context, card_id: str | None) -> None:
    """List card transactions; ``*`` marks records not yet synced."""
    with get_client(ctx) as client:
        views = client.list_card_transactions(card_id)
    for view in views:
        payload = view.payload
        marker = "*" if view.pending_sync else " "
        tags = ",".join(item["attribution_tag"] for item in payload.get("allocations", []))
        click.echo(
            f"{marker} {payload['id']}\t{payload['date']}\t{payload['amount']}"
            f"\t{payload['status']}\t{tags}\t{payload['description']}"
        )
