from __future__ import annotations

import copy
import datetime as dt

import pytest

from ledgersync.exceptions import NotFoundError
from ledgersync.legacy import (
    FOUND,
    MATCH_EMPTY_AMOUNT,
    MATCH_EMPTY_ROW,
    MATCH_INCOME_DESCRIPTION,
    NO_SPACE,
    LegacyGrid,
    LegacyLayout,
    MergedRange,
    detect_month_blocks,
    locate_row,
    mirror_transaction,
)

LAYOUT = LegacyLayout(expense_rows=(2, 4), income_rows=(5, 6))


def _grid() -> LegacyGrid:
    return LegacyGrid(
        cells=[
            ["Janeiro", "", "", "Março", "", ""],
            ["Aluguel", "1500.00", "5", "Aluguel", "", ""],
            ["", "", "", "Mercado", "300.00", "2"],
            ["", "", "", "", "", ""],
            ["", "", "", "Salário", "5000.00", "5"],
            ["", "", "", "", "", ""],
        ]
    )


def test_detect_month_blocks_normalizes_accents() -> None:
    blocks = detect_month_blocks(["", "  marÇo ", "Janeiro", "Total"])

    assert [(block.month, block.start_col) for block in blocks] == [(3, 2), (1, 3)]


def test_same_description_with_empty_amount_wins() -> None:
    location = locate_row(_grid(), LAYOUT, 3, "expense", "ALUGUEL")

    assert location.outcome == FOUND
    assert (location.row, location.start_col, location.match) == (2, 4, MATCH_EMPTY_AMOUNT)


def test_first_empty_row_used_otherwise() -> None:
    location = locate_row(_grid(), LAYOUT, 3, "expense", "Farmácia")

    assert (location.row, location.match) == (4, MATCH_EMPTY_ROW)


def test_income_description_overwrites_filled_row() -> None:
    location = locate_row(_grid(), LAYOUT, 3, "income", "salario")

    assert (location.row, location.match) == (5, MATCH_INCOME_DESCRIPTION)


def test_merged_rows_are_skipped() -> None:
    grid = _grid()
    grid.merged.append(MergedRange(4, 4, 4, 6))

    location = locate_row(grid, LAYOUT, 3, "expense", "Farmácia")

    assert location.outcome == NO_SPACE
    assert not location.found


def test_missing_month_block() -> None:
    with pytest.raises(NotFoundError):
        locate_row(_grid(), LAYOUT, 7, "expense", "Anything")


def test_mirror_transaction_writes_cells() -> None:
    sheets = {2024: _grid()}

    location = mirror_transaction(sheets, LAYOUT, "2024-03-18", "expense", " Farmácia ", "-45.5")

    assert location.row == 4
    assert sheets[2024].row_values(4) == ["", "", "", "Farmácia", "45.50", "18"]


def test_mirror_transaction_leaves_full_block_untouched() -> None:
    grid = _grid()
    grid.merged.append(MergedRange(4, 4, 1, 6))
    before = copy.deepcopy(grid.to_dict())

    location = mirror_transaction({2024: grid}, LAYOUT, dt.date(2024, 3, 1), "expense", "X", 1)

    assert location.outcome == NO_SPACE
    assert grid.to_dict() == before


def test_mirror_transaction_requires_year_sheet() -> None:
    with pytest.raises(NotFoundError):
        mirror_transaction({2023: _grid()}, LAYOUT, "2024-03-18", "expense", "X", 1)


def test_grid_and_layout_from_dict() -> None:
    grid = LegacyGrid.from_dict({"cells": [["Janeiro", None]], "merged": [[2, 3, 1, 3]]})
    layout = LegacyLayout.from_dict({"expense_rows": [2, 10], "income_rows": [11, 12]})

    assert grid.cells == [["Janeiro", ""]]
    assert grid.merged == [MergedRange(2, 3, 1, 3)]
    assert layout.rows_for("income") == range(11, 13)
    assert layout.block_width == 3
    with pytest.raises(ValueError):
        LegacyLayout(expense_rows=(5, 2), income_rows=(6, 7))
