"""Pydantic schemas for the normalized workbook model.

The model is plain data: it never holds a reference back into the native
container it was read from, so a workbook read from one container format can
be mutated freely and written out to the other one.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, model_validator


class ContainerFormat(str, Enum):
    """The two supported on-disk spreadsheet encodings."""
    LEGACY_BINARY = "xls"  # BIFF8 inside an OLE2 compound document
    XML_PACKAGE = "xlsx"  # SpreadsheetML inside a zip package


class DataValidationType(str, Enum):
    """What a list validation's allowed values come from."""
    FORMULA = "formula"  # Contents of a named range
    LIST = "list"  # Explicit literal options


# =============================================================================
# RANGES
# =============================================================================

class Range(BaseModel):
    """A rectangular area, each bound optional.

    A missing bound means "unbounded in that direction", e.g. ``A:A`` has no
    row bounds. All indices are zero-based.
    """
    row_start: Optional[int] = None
    row_end: Optional[int] = None
    column_start: Optional[int] = None
    column_end: Optional[int] = None
    sheet: Optional[str] = None  # Sheet qualifier, quotes removed


class NamedRange(BaseModel):
    """A workbook-level label bound to a Range."""
    name: str
    range: Range


class DataValidation(BaseModel):
    """A list validation restricting a range to a named range or literal options.

    Exactly one of ``name`` and ``list`` is set and ``type`` follows from
    which one: a name makes a FORMULA validation, a list a LIST validation.
    """
    range: Range
    type: DataValidationType = DataValidationType.LIST
    name: Optional[str] = None  # Set for FORMULA validations
    list: Optional[List[str]] = None  # Set for LIST validations

    @model_validator(mode="after")
    def _check_source(self) -> DataValidation:
        if (self.name is None) == (self.list is None):
            raise ValueError("A validation needs exactly one of 'name' and 'list'")
        derived = DataValidationType.FORMULA if self.name is not None else DataValidationType.LIST
        if "type" in self.model_fields_set and self.type != derived:
            raise ValueError(f"Validation type '{self.type.value}' does not match a {derived.value} source")
        self.type = derived
        return self


# =============================================================================
# CELLS, ROWS, SHEETS
# =============================================================================

class Cell(BaseModel):
    """A single cell, its value normalized to display text."""
    row_index: int
    column_index: int
    value: Optional[str] = None
    data_format: Optional[str] = None  # Numeric display format, e.g. "0.00"
    comment: Optional[str] = None


class Row(BaseModel):
    """A row of cell slots aligned by column index.

    ``cells[i]`` is the cell at column ``i`` or ``None`` when the position holds
    no cell.
    """
    index: int
    cells: List[Optional[Cell]] = []


class Worksheet(BaseModel):
    """A single worksheet.

    ``rows[i]`` is the row with native index ``i`` or ``None`` when the sheet
    has no such row.
    """
    name: str
    index: int  # 0-indexed position in workbook
    column_count: int = 0  # Widest row, used to pad ragged rows
    rows: List[Optional[Row]] = []
    is_hidden: bool = False
    validations: List[DataValidation] = []

    def get_row(self, index: int) -> Optional[Row]:
        """Get a row by native index."""
        if 0 <= index < len(self.rows):
            return self.rows[index]
        return None

    def get_cell(self, row_index: int, column_index: int) -> Optional[Cell]:
        """Get a cell by zero-based position."""
        row = self.get_row(row_index)
        if row is None or not 0 <= column_index < len(row.cells):
            return None
        return row.cells[column_index]


class Workbook(BaseModel):
    """Top-level normalized representation of a workbook."""
    worksheets: List[Worksheet] = []
    names: List[NamedRange] = []

    def get_sheet(self, name: str) -> Optional[Worksheet]:
        """Get a worksheet by name."""
        for sheet in self.worksheets:
            if sheet.name == name:
                return sheet
        return None

    def get_name(self, name: str) -> Optional[NamedRange]:
        """Get a named range by name."""
        for named_range in self.names:
            if named_range.name == name:
                return named_range
        return None
