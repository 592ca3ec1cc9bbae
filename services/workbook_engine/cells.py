"""Cell reader - turns one native cell into a normalized Cell.

Both container accessors describe their cells as a ``CellSource`` (kind, raw
value, cached formula result, formula text). The mapping to display text is
the same for both formats.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .schemas import Cell


TODAY_FORMULA = "TODAY()"

# Day zero of the 1900 date system, as used by both container formats
_EPOCH_1900 = datetime.date(1899, 12, 30)
_EPOCH_1904_OFFSET = 1462


class CellKind(str, Enum):
    """Native cell kinds, shared by both container formats."""
    NUMERIC = "numeric"
    STRING = "string"
    BOOLEAN = "boolean"
    FORMULA = "formula"
    BLANK = "blank"
    ERROR = "error"


@dataclass
class CellSource:
    """A native cell as reported by a container accessor."""
    row_index: int
    column_index: int
    kind: CellKind
    value: Any = None  # Raw value, or the cached result for formulas
    cached_kind: Optional[CellKind] = None  # Formulas only
    formula: Optional[str] = None  # Formula text without "=", None if unknown
    data_format: Optional[str] = None
    comment: Optional[str] = None


def _current_date() -> datetime.date:
    return datetime.date.today()


def today_serial(date_mode: int = 0) -> int:
    """Today's date as a serial number in the workbook's date system.

    ``date_mode`` is 0 for the 1900 system and 1 for the 1904 system.
    """
    serial = (_current_date() - _EPOCH_1900).days
    if date_mode == 1:
        serial -= _EPOCH_1904_OFFSET
    return serial


def format_number(value: Any) -> str:
    """Locale-independent shortest decimal form. 3.0 -> "3", 0.1 -> "0.1"."""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    text = repr(float(value))
    if text.endswith(".0"):
        text = text[:-2]
    return text


def _format_boolean(value: Any) -> str:
    return "True" if value else "False"


def cell_value(source: CellSource, date_mode: int = 0) -> Optional[str]:
    """Display text of a native cell, or None when it has no readable value."""
    if source.kind == CellKind.NUMERIC:
        return format_number(source.value)

    if source.kind == CellKind.STRING:
        return str(source.value)

    if source.kind == CellKind.BOOLEAN:
        return _format_boolean(source.value)

    if source.kind == CellKind.FORMULA:
        if source.cached_kind == CellKind.NUMERIC:
            # Cached TODAY() results go stale between regenerations
            if source.formula == TODAY_FORMULA:
                return format_number(today_serial(date_mode))
            return format_number(source.value)
        if source.cached_kind == CellKind.STRING:
            return str(source.value)
        return None

    return None


def read_cell(source: CellSource, date_mode: int = 0) -> Cell:
    """Build the normalized Cell for a native cell."""
    return Cell(
        row_index=source.row_index,
        column_index=source.column_index,
        value=cell_value(source, date_mode),
        data_format=source.data_format or None,
        comment=source.comment or None,
    )
