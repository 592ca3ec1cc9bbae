"""Tests for filling an existing xlsx template in place."""

from io import BytesIO

import openpyxl
import pytest
from openpyxl.styles import Font

from services.workbook_engine import (
    DataValidation,
    DataValidationType,
    InvalidValidation,
    InvalidWorkbook,
    NamedRange,
    Range,
    UnreadableContainer,
    UnsupportedTargetFormat,
    add_names,
    add_rows,
    add_validations,
    open_native,
    read_workbook,
    save_native,
    workbook_to_bytes,
)

from conftest import make_row


COLORS = NamedRange(
    name="Colors",
    range=Range(row_start=0, row_end=2, column_start=0, column_end=0, sheet="Lookup"),
)


@pytest.fixture
def template():
    """A styled header row on "Data" and a filled "Lookup" sheet."""
    wb = openpyxl.Workbook()
    data = wb.active
    data.title = "Data"
    data["A1"] = "Item"
    data["B1"] = "Color"
    data["A1"].font = Font(bold=True)
    data.column_dimensions["A"].width = 30
    lookup = wb.create_sheet("Lookup")
    for row, color in enumerate(["red", "green", "blue"], start=1):
        lookup.cell(row=row, column=1, value=color)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class TestFillTemplate:
    """open -> add rows, names, validations -> save"""

    def test_fill_and_save(self, template, tmp_path):
        wb = open_native(template)
        add_rows(wb, "Data", [None, make_row(1, ["Hat", "red"])])
        add_names(wb, [COLORS])
        add_validations(wb, "Data", [
            DataValidation(range=Range(row_start=1, row_end=9, column_start=1, column_end=1), name="Colors"),
        ])
        path = tmp_path / "filled.xlsx"
        save_native(wb, path)

        workbook = read_workbook(path)
        data = workbook.get_sheet("Data")
        assert data.get_cell(0, 0).value == "Item"
        assert data.get_cell(1, 0).value == "Hat"
        assert data.get_cell(1, 1).value == "red"
        assert workbook.names == [COLORS]
        assert data.validations[0].type == DataValidationType.FORMULA
        assert data.validations[0].name == "Colors"

    def test_template_formatting_survives(self, template):
        wb = open_native(template)
        add_rows(wb, "Data", [None, make_row(1, ["Hat"])])
        sink = BytesIO()
        save_native(wb, sink)

        saved = openpyxl.load_workbook(BytesIO(sink.getvalue()))
        assert saved["Data"]["A1"].font.bold
        assert saved["Data"].column_dimensions["A"].width == 30

    def test_sheetless_name_binds_to_first_sheet(self, template):
        wb = open_native(template)
        add_names(wb, [NamedRange(name="Header", range=Range(row_start=0, row_end=0, column_start=0, column_end=1))])
        sink = BytesIO()
        save_native(wb, sink)
        assert read_workbook(sink.getvalue()).names[0].range.sheet == "Data"


class TestTemplateErrors:
    """Rejected edits."""

    def test_legacy_binary_cannot_be_edited(self, sample_workbook):
        with pytest.raises(UnsupportedTargetFormat):
            open_native(workbook_to_bytes(sample_workbook, "xls"))

    def test_unreadable_source(self):
        with pytest.raises(UnreadableContainer):
            open_native(b"not a workbook")

    def test_unknown_sheet(self, template):
        wb = open_native(template)
        with pytest.raises(InvalidWorkbook):
            add_rows(wb, "Missing", [make_row(0, ["x"])])

    def test_name_already_defined(self, template):
        wb = open_native(template)
        add_names(wb, [COLORS])
        with pytest.raises(InvalidWorkbook):
            add_names(wb, [NamedRange(name="colors", range=COLORS.range)])

    def test_empty_list_validation(self, template):
        wb = open_native(template)
        validation = DataValidation(range=Range(row_start=0, row_end=0, column_start=0, column_end=0), list=[])
        with pytest.raises(InvalidValidation):
            add_validations(wb, "Data", [validation])
