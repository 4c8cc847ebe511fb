"""Sync CLI commands."""

from __future__ import annotations

import json

import click

from ledgersync.cli.common import get_client
from ledgersync.exceptions import (
    QueueStorageError,
    RemoteValidationError,
    SyncInProgressError,
    SyncTransportError,
)


@click.group()
def sync() -> None:
    """Sync commands."""


@sync.command("run")
@click.pass_context
def run_sync(ctx: click.Context) -> None:
    """Push pending changes to the authority."""
    with get_client(ctx) as client:
        try:
            outcome = client.sync()
        except RemoteValidationError as exc:
            details = json.dumps(exc.details, default=str) if exc.details else ""
            raise click.ClickException(f"Sync rejected: {exc} {details}".strip()) from exc
        except (SyncTransportError, SyncInProgressError, QueueStorageError) as exc:
            raise click.ClickException(f"Sync failed: {exc}") from exc

    if outcome.nothing_to_sync:
        if outcome.discarded:
            click.echo(f"Nothing to push; discarded {outcome.discarded} ops")
        else:
            click.echo("Nothing to sync")
        return
    click.echo("Sync completed")
    click.echo(f"  Pushed: {outcome.pushed} (from {outcome.pending_before_dedupe} queued)")
    click.echo(f"  Synced ids: {len(outcome.synced_ids)}")


@sync.command("status")
@click.pass_context
def sync_status(ctx: click.Context) -> None:
    """Show the last sync state, the pending count and local record counts."""
    with get_client(ctx) as client:
        summary = client.local_summary()
    state = summary["sync_state"]
    click.echo(f"Status: {state.status}")
    click.echo(f"Pending ops: {summary['pending_ops']}")
    click.echo(f"Last success: {state.last_success_at or '-'}")
    click.echo(f"Last applied: {state.last_applied_count}")
    if state.last_error:
        click.echo(f"Last error: {state.last_error}")
    for collection, total in sorted(summary["counts"].items()):
        click.echo(f"  {collection}: {total}")


@sync.command("pending")
@click.pass_context
def list_pending(ctx: click.Context) -> None:
    """List queued operations in enqueue order."""
    with get_client(ctx) as client:
        operations = client.pending_ops()
    if not operations:
        click.echo("No pending operations.")
        return
    for operation in operations:
        click.echo(
            f"{operation.op_id}\t{operation.created_at}\t{operation.action.value}"
            f"\t{operation.entity_type.value}\t{operation.entity_id}"
        )


@sync.command("logs")
@click.option("--limit", type=int, default=20, help="Number of entries to show.")
@click.option("--clear", is_flag=True, help="Delete all sync log entries.")
@click.pass_context
def sync_logs(ctx: click.Context, limit: int, clear: bool) -> None:
    """Show recent sync log entries."""
    with get_client(ctx) as client:
        if clear:
            client.clear_sync_logs()
            click.echo("Sync log cleared")
            return
        entries = client.sync_logs(limit)
    for entry in entries:
        click.echo(f"{entry['created_at']}\t{entry['level']}\t{entry['event']}\t{entry['message']}")
