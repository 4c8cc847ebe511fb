"""Statement import CLI commands."""

from __future__ import annotations

from pathlib import Path

import click

from ledgersync.cli.common import get_client
from ledgersync.exceptions import NotFoundError
from ledgersync.models import ImportSummary
from ledgersync.statement import parse_statement


@click.group("import")
def import_statement() -> None:
    """Statement import commands."""


def _read_lines(file_path: Path):
    try:
        text = file_path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise click.ClickException(f"Failed to read statement file: {exc}") from exc
    lines = parse_statement(text)
    if not lines:
        raise click.ClickException("No valid lines found in the statement file.")
    return lines


def _echo_summary(summary: ImportSummary) -> None:
    click.echo(f"  Total: {summary.total}")
    click.echo(f"  Already recorded: {summary.already_recorded}")
    click.echo(f"  New: {summary.new}")
    click.echo(f"  Excluded by card suffix: {summary.excluded_by_card_suffix}")


@import_statement.command("preview")
@click.option("--card", "card_id", required=True, help="Card id.")
@click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Statement file (CSV, semicolon or tab separated).",
)
@click.pass_context
def preview(ctx: click.Context, card_id: str, file_path: Path) -> None:
    """Classify statement lines without recording anything."""
    lines = _read_lines(file_path)
    with get_client(ctx) as client:
        try:
            summary = client.import_preview(card_id, lines)
        except NotFoundError as exc:
            raise click.ClickException(f"Card {card_id!r} not found.") from exc
    for item in summary.items:
        line = item.line
        click.echo(
            f"{item.status}\t{line.date.isoformat()}\t{line.amount}"
            f"\t{line.description}\t{item.matched_id or ''}"
        )
    click.echo("\nPreview")
    _echo_summary(summary)


@import_statement.command("run")
@click.option("--card", "card_id", required=True, help="Card id.")
@click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Statement file (CSV, semicolon or tab separated).",
)
@click.option("--month", "reference_month", default=None, help="Statement month in YYYY-MM.")
@click.option("--dry-run", is_flag=True, help="Report counts without queuing anything.")
@click.pass_context
def run(
    ctx: click.Context,
    card_id: str,
    file_path: Path,
    reference_month: str | None,
    dry_run: bool,
) -> None:
    """Queue new statement lines as pending card transactions."""
    lines = _read_lines(file_path)
    with get_client(ctx) as client:
        try:
            summary = client.import_run(card_id, lines, reference_month, dry_run)
        except NotFoundError as exc:
            raise click.ClickException(f"Card {card_id!r} not found.") from exc
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo("\nImport dry run" if dry_run else "\nImport completed")
    _echo_summary(summary)
    click.echo(f"  Imported: {summary.imported}")
    click.echo(f"  Realigned reference month: {summary.realigned_reference_month}")
    click.echo(f"  Default attribution: {summary.default_attribution}")
