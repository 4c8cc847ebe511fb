"""Place transactions into the fixed yearly grid of the legacy spreadsheet layout.

Each year is one sheet. The header row names the months; each month owns a
block of adjacent columns (description, amount, day). Expense rows and income
rows are two fixed row ranges shared by every block. Rows and columns are
1-based, as in the spreadsheet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
import datetime as dt
import logging
import unicodedata

from ledgersync.exceptions import NotFoundError
from ledgersync.models import format_amount

logger = logging.getLogger(__name__)

FOUND = "found"
NO_SPACE = "no_space"

MATCH_INCOME_DESCRIPTION = "income_description"
MATCH_EMPTY_AMOUNT = "description_empty_amount"
MATCH_EMPTY_ROW = "empty_row"

MONTHS = {
    "JANEIRO": 1,
    "FEVEREIRO": 2,
    "MARCO": 3,
    "ABRIL": 4,
    "MAIO": 5,
    "JUNHO": 6,
    "JULHO": 7,
    "AGOSTO": 8,
    "SETEMBRO": 9,
    "OUTUBRO": 10,
    "NOVEMBRO": 11,
    "DEZEMBRO": 12,
}


def _normalize(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return " ".join(stripped.split()).upper()


@dataclass(frozen=True)
class MergedRange:
    start_row: int
    end_row: int
    start_col: int
    end_col: int

    def intersects(self, row: int, start_col: int, end_col: int) -> bool:
        return (
            self.start_row <= row <= self.end_row
            and self.start_col <= end_col
            and start_col <= self.end_col
        )


@dataclass
class LegacyGrid:
    """One yearly sheet: cell values plus its merged ranges."""
    cells: list[list[str]] = field(default_factory=list)
    merged: list[MergedRange] = field(default_factory=list)

    def get(self, row: int, col: int) -> str:
        if row < 1 or col < 1 or row > len(self.cells):
            return ""
        values = self.cells[row - 1]
        if col > len(values):
            return ""
        value = values[col - 1]
        return "" if value is None else str(value).strip()

    def set(self, row: int, col: int, value: str) -> None:
        while len(self.cells) < row:
            self.cells.append([])
        values = self.cells[row - 1]
        while len(values) < col:
            values.append("")
        values[col - 1] = value

    def row_values(self, row: int) -> list[str]:
        if row < 1 or row > len(self.cells):
            return []
        return [self.get(row, col) for col in range(1, len(self.cells[row - 1]) + 1)]

    def is_merged(self, row: int, start_col: int, end_col: int) -> bool:
        return any(item.intersects(row, start_col, end_col) for item in self.merged)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "LegacyGrid":
        cells = [
            [str(value) if value is not None else "" for value in row]
            for row in payload.get("cells", [])
        ]
        merged = [MergedRange(*map(int, item)) for item in payload.get("merged", [])]
        return cls(cells=cells, merged=merged)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cells": self.cells,
            "merged": [
                [item.start_row, item.end_row, item.start_col, item.end_col] for item in self.merged
            ],
        }


@dataclass(frozen=True)
class MonthBlock:
    label: str
    month: int
    start_col: int


@dataclass(frozen=True)
class LegacyLayout:
    """Row ranges and column offsets shared by every month block."""
    expense_rows: tuple[int, int]
    income_rows: tuple[int, int]
    header_row: int = 1
    description_offset: int = 0
    amount_offset: int = 1
    day_offset: int = 2

    def __post_init__(self) -> None:
        for name in ("expense_rows", "income_rows"):
            start, end = getattr(self, name)
            if start < 1 or end < start:
                raise ValueError(f"{name} must be a valid 1-based row range")
            object.__setattr__(self, name, (int(start), int(end)))

    def rows_for(self, kind: str) -> range:
        if kind == "income":
            start, end = self.income_rows
        elif kind == "expense":
            start, end = self.expense_rows
        else:
            raise ValueError("kind must be expense or income")
        return range(start, end + 1)

    @property
    def block_width(self) -> int:
        return max(self.description_offset, self.amount_offset, self.day_offset) + 1

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "LegacyLayout":
        return cls(
            expense_rows=tuple(payload["expense_rows"]),
            income_rows=tuple(payload["income_rows"]),
            header_row=int(payload.get("header_row", 1)),
            description_offset=int(payload.get("description_offset", 0)),
            amount_offset=int(payload.get("amount_offset", 1)),
            day_offset=int(payload.get("day_offset", 2)),
        )


@dataclass(frozen=True)
class RowLocation:
    """Where a transaction goes, or ``no_space`` when the block is full."""
    outcome: str
    month: int
    kind: str
    row: int | None = None
    start_col: int | None = None
    match: str | None = None

    @property
    def found(self) -> bool:
        return self.outcome == FOUND


def detect_month_blocks(header_row: list[str]) -> list[MonthBlock]:
    """Find the month names in a header row; each starts a column block."""
    blocks = []
    for index, value in enumerate(header_row):
        label = _normalize(value or "")
        month = MONTHS.get(label)
        if month:
            blocks.append(MonthBlock(label=label, month=month, start_col=index + 1))
    return sorted(blocks, key=lambda block: block.start_col)


def _block_for_month(grid: LegacyGrid, layout: LegacyLayout, month: int) -> MonthBlock:
    for block in detect_month_blocks(grid.row_values(layout.header_row)):
        if block.month == month:
            return block
    raise NotFoundError(f"No column block for month {month}")


def locate_row(
    grid: LegacyGrid, layout: LegacyLayout, month: int, kind: str, description: str
) -> RowLocation:
    """Pick the target row for a transaction inside its month block.

    Priority: an income row with the same description (overwritten even when
    filled), then a row with the same description and an empty amount, then the
    first entirely empty row. Merged rows are never used.
    """
    block = _block_for_month(grid, layout, month)
    description_col = block.start_col + layout.description_offset
    amount_col = block.start_col + layout.amount_offset
    day_col = block.start_col + layout.day_offset
    end_col = block.start_col + layout.block_width - 1
    target = _normalize(description)

    empty_amount_row = None
    empty_row = None
    for row in layout.rows_for(kind):
        if grid.is_merged(row, block.start_col, end_col):
            continue
        cell_description = grid.get(row, description_col)
        same_description = bool(target) and _normalize(cell_description) == target
        if kind == "income" and same_description:
            return RowLocation(FOUND, month, kind, row, block.start_col, MATCH_INCOME_DESCRIPTION)
        amount = grid.get(row, amount_col)
        if same_description and not amount and empty_amount_row is None:
            empty_amount_row = row
        if not cell_description and not amount and not grid.get(row, day_col) and empty_row is None:
            empty_row = row

    if empty_amount_row is not None:
        return RowLocation(FOUND, month, kind, empty_amount_row, block.start_col, MATCH_EMPTY_AMOUNT)
    if empty_row is not None:
        return RowLocation(FOUND, month, kind, empty_row, block.start_col, MATCH_EMPTY_ROW)
    logger.warning("No free legacy row for %s in month %s", kind, month)
    return RowLocation(NO_SPACE, month, kind, start_col=block.start_col)


def mirror_transaction(
    sheets: dict[int, LegacyGrid],
    layout: LegacyLayout,
    date: dt.date | str,
    kind: str,
    description: str,
    amount: Decimal | str | int | float,
) -> RowLocation:
    """Write description, amount and day into the located row of the year's sheet.

    Nothing is written when the outcome is ``no_space``.
    """
    if isinstance(date, str):
        date = dt.date.fromisoformat(date.strip())
    grid = sheets.get(date.year)
    if grid is None:
        raise NotFoundError(f"No legacy sheet for {date.year}")
    location = locate_row(grid, layout, date.month, kind, description)
    if not location.found:
        return location
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    grid.set(location.row, location.start_col + layout.description_offset, description.strip())
    grid.set(location.row, location.start_col + layout.amount_offset, format_amount(abs(value)))
    grid.set(location.row, location.start_col + layout.day_offset, str(date.day))
    return location
