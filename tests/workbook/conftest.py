"""Shared fixtures for the workbook engine tests."""

import sys
from pathlib import Path

# Add project root to path (tests/workbook/ -> tests/ -> project root)
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

import pytest

from services.workbook_engine import (
    Cell,
    DataValidation,
    DataValidationType,
    NamedRange,
    Range,
    Row,
    Workbook,
    Worksheet,
)


def make_row(index, values):
    """Row with one text cell per non-None value, aligned by column."""
    cells = [
        Cell(row_index=index, column_index=column, value=value) if value is not None else None
        for column, value in enumerate(values)
    ]
    return Row(index=index, cells=cells)


@pytest.fixture
def sample_workbook():
    """Two visible sheets and one hidden lookup sheet.

    "Colors" names the lookup column; "Data" carries one validation per type.
    """
    data = Worksheet(
        name="Data",
        index=0,
        column_count=3,
        rows=[
            make_row(0, ["Item", "Color", "Size"]),
            None,
            make_row(2, ["Hat", None, "M"]),
        ],
        validations=[
            DataValidation(
                range=Range(row_start=1, row_end=9, column_start=1, column_end=1),
                type=DataValidationType.FORMULA,
                name="Colors",
            ),
            DataValidation(
                range=Range(row_start=1, row_end=9, column_start=2, column_end=2),
                type=DataValidationType.LIST,
                list=["S", "M", "L"],
            ),
        ],
    )
    lookup = Worksheet(
        name="Lookup",
        index=1,
        column_count=1,
        rows=[make_row(0, ["red"]), make_row(1, ["green"]), make_row(2, ["blue"])],
        is_hidden=True,
    )
    notes = Worksheet(
        name="My Notes",
        index=2,
        column_count=1,
        rows=[make_row(0, ["=not a formula"])],
    )
    return Workbook(
        worksheets=[data, lookup, notes],
        names=[
            NamedRange(
                name="Colors",
                range=Range(row_start=0, row_end=2, column_start=0, column_end=0, sheet="Lookup"),
            ),
        ],
    )
