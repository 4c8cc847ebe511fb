"""Legacy grid CLI commands."""

from __future__ import annotations

import json
from pathlib import Path

import click

from ledgersync.cli.common import parse_date, parse_decimal
from ledgersync.exceptions import NotFoundError
from ledgersync.legacy import LegacyGrid, LegacyLayout, locate_row, mirror_transaction
from ledgersync.schema import TRANSACTION_KINDS


@click.group()
def legacy() -> None:
    """Legacy spreadsheet layout commands."""


def _load_workbook(file_path: Path) -> tuple[LegacyLayout, dict[int, LegacyGrid]]:
    try:
        with file_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        layout = LegacyLayout.from_dict(payload["layout"])
        sheets = {
            int(year): LegacyGrid.from_dict(sheet) for year, sheet in payload["sheets"].items()
        }
    except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise click.ClickException(f"Failed to read grid file: {exc}") from exc
    return layout, sheets


@legacy.command("locate")
@click.option(
    "--grid",
    "grid_path",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="JSON file with layout and yearly sheets.",
)
@click.option("--date", "date_value", required=True, help="Transaction date in YYYY-MM-DD.")
@click.option("--kind", type=click.Choice(TRANSACTION_KINDS), required=True)
@click.option("--description", required=True, help="Transaction description.")
@click.option("--amount", "amount_value", default=None, help="Amount to write with --write.")
@click.option("--write", is_flag=True, help="Write the transaction into the grid file.")
@click.pass_context
def locate(
    ctx: click.Context,
    grid_path: Path,
    date_value: str,
    kind: str,
    description: str,
    amount_value: str | None,
    write: bool,
) -> None:
    """Find the legacy row a transaction belongs to."""
    date = parse_date(date_value, "--date")
    amount = parse_decimal(amount_value, "--amount")
    if write and amount is None:
        raise click.UsageError("--amount is required with --write.")
    layout, sheets = _load_workbook(grid_path)
    try:
        if write:
            location = mirror_transaction(sheets, layout, date, kind, description, amount)
        else:
            if date.year not in sheets:
                raise NotFoundError(f"No legacy sheet for {date.year}")
            location = locate_row(sheets[date.year], layout, date.month, kind, description)
    except NotFoundError as exc:
        raise click.ClickException(str(exc)) from exc

    if not location.found:
        click.echo(f"No space for {kind} in {date.year}-{date.month:02d}")
        ctx.exit(2)
    click.echo(f"Row {location.row} (column {location.start_col}, {location.match})")
    if write:
        payload = {
            "layout": json.loads(grid_path.read_text(encoding="utf-8"))["layout"],
            "sheets": {str(year): sheet.to_dict() for year, sheet in sheets.items()},
        }
        grid_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        click.echo(f"Wrote transaction to {grid_path}")
