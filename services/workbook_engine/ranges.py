"""Range codec - parses and serializes A1-style cross-sheet ranges.

Handles the forms used by named ranges and validation targets:
- Single cell: ``B3``
- Full row: ``3:3``
- Full column: ``A:A``
- Rectangle: ``A1:C10``

Each form may carry ``$`` markers and a sheet qualifier (``Sheet1!`` or
``'My Sheet'!``). Row and column ceilings differ between the two container
formats, so both directions take the format version.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple

from .schemas import ContainerFormat, Range


# =============================================================================
# FORMAT-VERSION LIMITS
# =============================================================================

ROW_LIMITS = {
    ContainerFormat.LEGACY_BINARY: 65536,
    ContainerFormat.XML_PACKAGE: 1048576,
}

COLUMN_LIMITS = {
    ContainerFormat.LEGACY_BINARY: 256,
    ContainerFormat.XML_PACKAGE: 16384,
}


def get_row_max(version: ContainerFormat) -> int:
    """Number of rows a sheet of this format can hold."""
    return ROW_LIMITS[ContainerFormat(version)]


def get_column_max(version: ContainerFormat) -> int:
    """Number of columns a sheet of this format can hold."""
    return COLUMN_LIMITS[ContainerFormat(version)]


# =============================================================================
# A1 UTILITIES
# =============================================================================

_CELL_RE = re.compile(r"^\$?([A-Z]{1,3})\$?([0-9]+)$", re.IGNORECASE)
_COLUMN_RE = re.compile(r"^\$?([A-Z]{1,3})$", re.IGNORECASE)
_ROW_RE = re.compile(r"^\$?([0-9]+)$")
_BARE_SHEET_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


def col_letter_to_index(col: str) -> int:
    """Convert column letter(s) to 1-indexed number. A=1, B=2, ..., Z=26, AA=27."""
    result = 0
    for char in col.upper():
        result = result * 26 + (ord(char) - ord('A') + 1)
    return result


def col_index_to_letter(index: int) -> str:
    """Convert 1-indexed column number to letter(s). 1=A, 2=B, ..., 27=AA."""
    result = ""
    while index > 0:
        index -= 1
        result = chr(ord('A') + (index % 26)) + result
        index //= 26
    return result


def cell_to_string(row: int, column: int, absolute: bool = False) -> str:
    """Format a zero-based position as ``A1`` (or ``$A$1``)."""
    marker = "$" if absolute else ""
    return f"{marker}{col_index_to_letter(column + 1)}{marker}{row + 1}"


def quote_sheet_name(name: str) -> str:
    """Quote a sheet name for use in a formula when it needs it."""
    if _BARE_SHEET_RE.match(name) and not _CELL_RE.match(name):
        return name
    escaped = name.replace("'", "''")
    return f"'{escaped}'"


def _split_sheet(text: str) -> Optional[Tuple[Optional[str], str]]:
    """Split ``Sheet!A1`` into (sheet, reference). Returns None if malformed."""
    if "!" not in text:
        return None, text

    sheet, _, reference = text.rpartition("!")
    if len(sheet) >= 2 and sheet.startswith("'") and sheet.endswith("'"):
        inner = sheet[1:-1]
        if not inner or "'" in inner.replace("''", ""):
            return None
        return inner.replace("''", "'"), reference

    if not sheet or any(char in sheet for char in "'[]!"):
        return None
    return sheet, reference


def _parse_endpoint(text: str) -> Optional[Tuple[str, Optional[int], Optional[int]]]:
    """Classify one side of a range as ("cell" | "column" | "row", row, column)."""
    match = _CELL_RE.match(text)
    if match:
        row = int(match.group(2))
        if row < 1:
            return None
        return "cell", row - 1, col_letter_to_index(match.group(1)) - 1

    match = _COLUMN_RE.match(text)
    if match:
        return "column", None, col_letter_to_index(match.group(1)) - 1

    match = _ROW_RE.match(text)
    if match:
        row = int(match.group(1))
        if row < 1:
            return None
        return "row", row - 1, None

    return None


def _order(first: Optional[int], second: Optional[int]) -> Tuple[Optional[int], Optional[int]]:
    if first is None or second is None:
        return first, second
    return min(first, second), max(first, second)


# =============================================================================
# PARSING
# =============================================================================

def parse_range(text: Optional[str], version: ContainerFormat) -> Optional[Range]:
    """Parse ``[Sheet!]A1[:C10]`` into a Range.

    Returns None for anything that is not a single usable area (multi-area
    lists, external references, ``#REF!``, bounds past the format's limits).
    Bounds spanning the whole extent of the format come back unbounded.
    """
    if not text:
        return None

    text = text.strip()
    if text.startswith("="):
        text = text[1:]

    split = _split_sheet(text)
    if split is None:
        return None
    sheet, reference = split

    parts = reference.split(":")
    if len(parts) > 2:
        return None

    endpoints = [_parse_endpoint(part) for part in parts]
    if any(endpoint is None for endpoint in endpoints):
        return None

    if len(endpoints) == 1:
        kind, row, column = endpoints[0]
        if kind != "cell":
            return None
        endpoints.append(endpoints[0])

    (kind_a, row_a, col_a), (kind_b, row_b, col_b) = endpoints
    if kind_a != kind_b:
        return None

    row_start, row_end = _order(row_a, row_b)
    column_start, column_end = _order(col_a, col_b)

    row_max = get_row_max(version)
    column_max = get_column_max(version)
    if row_end is not None and row_end >= row_max:
        return None
    if column_end is not None and column_end >= column_max:
        return None

    # Whole-extent bounds are how unbounded edges come back from a container
    if row_start == 0 and row_end == row_max - 1:
        row_start = row_end = None
    if column_start == 0 and column_end == column_max - 1:
        column_start = column_end = None

    return Range(
        row_start=row_start,
        row_end=row_end,
        column_start=column_start,
        column_end=column_end,
        sheet=sheet,
    )


# =============================================================================
# SERIALIZATION
# =============================================================================

def resolve_bounds(range_: Range, version: ContainerFormat) -> Tuple[int, int, int, int]:
    """Concrete zero-based (row_start, row_end, column_start, column_end).

    Unbounded edges are resolved with the format's row and column limits.
    """
    row_start = range_.row_start if range_.row_start is not None else 0
    row_end = range_.row_end if range_.row_end is not None else get_row_max(version) - 1
    column_start = range_.column_start if range_.column_start is not None else 0
    column_end = range_.column_end if range_.column_end is not None else get_column_max(version) - 1
    return row_start, row_end, column_start, column_end


def range_to_area(range_: Range, version: ContainerFormat, absolute: bool = False) -> str:
    """Serialize the area of a range without its sheet, e.g. ``A1:C10``."""
    row_start, row_end, column_start, column_end = resolve_bounds(range_, version)
    start = cell_to_string(row_start, column_start, absolute)
    if row_start == row_end and column_start == column_end:
        return start
    return f"{start}:{cell_to_string(row_end, column_end, absolute)}"


def range_to_string(range_: Range, version: ContainerFormat) -> str:
    """Serialize a range as a defined-name formula, e.g. ``Sheet1!$A$1:$A$5``."""
    area = range_to_area(range_, version, absolute=True)
    if range_.sheet:
        return f"{quote_sheet_name(range_.sheet)}!{area}"
    return area
