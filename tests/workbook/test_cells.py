"""Tests for the cell reader and row alignment."""

import datetime

import pytest

from services.workbook_engine import cells
from services.workbook_engine.cells import CellKind, CellSource, cell_value, format_number, read_cell, today_serial
from services.workbook_engine.parser import build_row


@pytest.fixture
def fixed_today(monkeypatch):
    """Pin the clock to 2024-01-01 (serial 45292 in the 1900 system)."""
    monkeypatch.setattr(cells, "_current_date", lambda: datetime.date(2024, 1, 1))


def source(kind, value=None, **kwargs):
    return CellSource(row_index=0, column_index=0, kind=kind, value=value, **kwargs)


class TestFormatNumber:
    """Locale-independent number text."""

    @pytest.mark.parametrize("value,expected", [
        (3.0, "3"),
        (3.5, "3.5"),
        (0.1, "0.1"),
        (1e-07, "1e-07"),
        (-2.0, "-2"),
        (42, "42"),
    ])
    def test_shortest_form(self, value, expected):
        assert format_number(value) == expected


class TestCellValue:
    """Native kinds to display text."""

    def test_numeric(self):
        assert cell_value(source(CellKind.NUMERIC, 12.0)) == "12"

    def test_string(self):
        assert cell_value(source(CellKind.STRING, "hello")) == "hello"

    def test_boolean(self):
        assert cell_value(source(CellKind.BOOLEAN, True)) == "True"
        assert cell_value(source(CellKind.BOOLEAN, 0)) == "False"

    def test_blank_and_error_have_no_value(self):
        assert cell_value(source(CellKind.BLANK)) is None
        assert cell_value(source(CellKind.ERROR, 7)) is None

    def test_formula_uses_cached_result(self):
        numeric = source(CellKind.FORMULA, 2.0, cached_kind=CellKind.NUMERIC, formula="1+1")
        text = source(CellKind.FORMULA, "ab", cached_kind=CellKind.STRING, formula='"a"&"b"')
        assert cell_value(numeric) == "2"
        assert cell_value(text) == "ab"

    def test_formula_without_usable_cache(self):
        assert cell_value(source(CellKind.FORMULA, None, formula="A1")) is None
        assert cell_value(source(CellKind.FORMULA, True, cached_kind=CellKind.BOOLEAN)) is None

    def test_today_is_recomputed(self, fixed_today):
        stale = source(CellKind.FORMULA, 40000.0, cached_kind=CellKind.NUMERIC, formula="TODAY()")
        assert cell_value(stale) == "45292"

    def test_today_in_1904_system(self, fixed_today):
        stale = source(CellKind.FORMULA, 1.0, cached_kind=CellKind.NUMERIC, formula="TODAY()")
        assert today_serial(1) == 45292 - 1462
        assert cell_value(stale, date_mode=1) == str(45292 - 1462)

    def test_unknown_formula_text_keeps_cache(self, fixed_today):
        cached = source(CellKind.FORMULA, 40000.0, cached_kind=CellKind.NUMERIC, formula=None)
        assert cell_value(cached) == "40000"


class TestReadCell:
    """Building the normalized Cell."""

    def test_carries_format_and_comment(self):
        cell = read_cell(CellSource(
            row_index=4, column_index=2, kind=CellKind.NUMERIC, value=1.25,
            data_format="0.00", comment="check this",
        ))
        assert (cell.row_index, cell.column_index) == (4, 2)
        assert cell.value == "1.25"
        assert cell.data_format == "0.00"
        assert cell.comment == "check this"

    def test_empty_extras_become_none(self):
        cell = read_cell(source(CellKind.BLANK, data_format="", comment=""))
        assert cell.value is None
        assert cell.data_format is None
        assert cell.comment is None


class TestBuildRow:
    """Aligning sparse cells to column slots."""

    def _sources(self, columns):
        return [
            CellSource(row_index=3, column_index=c, kind=CellKind.STRING, value=f"c{c}")
            for c in columns
        ]

    def test_gaps_stay_empty(self):
        row = build_row(3, self._sources([0, 2]), 4)
        assert row.index == 3
        assert [cell.value if cell else None for cell in row.cells] == ["c0", None, "c2", None]

    def test_leading_gap(self):
        row = build_row(3, self._sources([1, 3]), 4)
        assert [cell.value if cell else None for cell in row.cells] == [None, "c1", None, "c3"]

    def test_dense_row(self):
        row = build_row(0, self._sources([0, 1, 2]), 3)
        assert all(cell is not None for cell in row.cells)
        assert row.cells[2].column_index == 2
