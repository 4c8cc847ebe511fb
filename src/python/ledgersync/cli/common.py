"""Shared CLI helpers."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal, InvalidOperation

import click

from ledgersync.client import LedgerClient
from ledgersync.config import load_settings


def parse_date(value: str | None, field_name: str) -> dt.date | None:
    """Parse an ISO date string into a date."""
    if value is None:
        return None
    try:
        return dt.date.fromisoformat(value)
    except ValueError as exc:
        raise click.BadParameter("Use YYYY-MM-DD format.", param_hint=field_name) from exc


def parse_decimal(value: str | None, field_name: str) -> Decimal | None:
    """Parse a decimal string into a Decimal."""
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise click.BadParameter("Use a valid decimal value.", param_hint=field_name) from exc


def get_client(ctx: click.Context) -> LedgerClient:
    """Build a ledger client from Click context.

    The local database from ``--local-db`` wins over the config file.
    """
    payload = ctx.obj or {}
    try:
        settings = load_settings(payload.get("config_path"))
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    return LedgerClient(local_db_path=payload.get("local_db_path"), settings=settings)
