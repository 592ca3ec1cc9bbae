"""Workbook Engine - legacy binary and XML package workbooks to a normalized model and back.

This module handles:
1. Reading .xls and .xlsx workbooks into a Workbook (cells, names, list validations)
2. Writing a Workbook out to either container format
3. Filling xlsx templates in place (rows, names, validations)
4. A1-style range parsing shared by names and validations
"""

from .schemas import (
    ContainerFormat,
    DataValidationType,
    Range,
    NamedRange,
    DataValidation,
    Cell,
    Row,
    Worksheet,
    Workbook,
)
from .errors import (
    WorkbookEngineError,
    UnreadableContainer,
    UnsupportedTargetFormat,
    InvalidValidation,
    InvalidWorkbook,
)
from .container import detect_format, open_container
from .parser import read_workbook
from .ranges import parse_range, range_to_area, range_to_string
from .writer import resolve_target, workbook_to_bytes, write_workbook
from .templates import add_names, add_rows, add_validations, open_native, save_native

__all__ = [
    # Schemas
    "ContainerFormat",
    "DataValidationType",
    "Range",
    "NamedRange",
    "DataValidation",
    "Cell",
    "Row",
    "Worksheet",
    "Workbook",
    # Errors
    "WorkbookEngineError",
    "UnreadableContainer",
    "UnsupportedTargetFormat",
    "InvalidValidation",
    "InvalidWorkbook",
    # Functions
    "detect_format",
    "open_container",
    "read_workbook",
    "parse_range",
    "range_to_area",
    "range_to_string",
    "resolve_target",
    "workbook_to_bytes",
    "write_workbook",
    # Template editing
    "open_native",
    "add_rows",
    "add_names",
    "add_validations",
    "save_native",
]
