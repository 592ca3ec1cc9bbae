"""Workbook reader - builds the normalized model from either container.

Handles:
- Ragged and sparse rows (cells aligned to column slots)
- Named ranges
- Per-sheet list validations
- Hidden sheets
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .cells import CellSource, read_cell
from .container import Container, Source, open_container
from .schemas import Row, Workbook, Worksheet
from .validations import extract_named_ranges


logger = logging.getLogger(__name__)


def build_row(row_index: int, sources: List[CellSource], column_count: int, date_mode: int = 0) -> Row:
    """Align a row's present cells to column slots 0..column_count-1.

    ``sources`` must be sorted by column. A slot without a cell stays None;
    ``offset`` counts the slots skipped so far so the next present cell is
    compared against the right column.
    """
    cells = []
    offset = 0
    for column in range(column_count):
        position = column - offset
        if position >= len(sources) or sources[position].column_index != column:
            offset += 1
            cells.append(None)
        else:
            cells.append(read_cell(sources[position], date_mode))
    return Row(index=row_index, cells=cells)


def read_worksheet(container: Container, index: int) -> Worksheet:
    """Read the cells of one sheet."""
    native_rows = container.rows(index)

    column_count = 0
    for sources in native_rows.values():
        column_count = max(column_count, sources[-1].column_index + 1)

    row_count = max(native_rows) + 1 if native_rows else 0
    rows: List[Optional[Row]] = [None] * row_count
    for row_index, sources in native_rows.items():
        rows[row_index] = build_row(row_index, sources, column_count, container.date_mode)

    return Worksheet(
        name=container.sheet_name(index),
        index=index,
        column_count=column_count,
        rows=rows,
        is_hidden=container.is_hidden(index),
    )


def read_workbook(source: Source) -> Workbook:
    """Read a workbook (path, bytes or binary file object) into the normalized model.

    Raises UnreadableContainer when the source is not a supported workbook.
    Malformed names and validations are skipped, never raised.
    """
    with open_container(source) as container:
        logger.info(f"[READ] Reading {container.format.value} workbook with {container.sheet_count} sheet(s)")

        names = extract_named_ranges(container.native_names(), container.format)
        name_list = [named_range.name for named_range in names]

        worksheets: List[Worksheet] = []
        for index in range(container.sheet_count):
            worksheet = read_worksheet(container, index)
            worksheet.validations = container.validations(index, name_list)
            worksheets.append(worksheet)

    workbook = Workbook(worksheets=worksheets, names=names)
    logger.info(
        f"[READ] Done: {len(worksheets)} sheet(s), {len(names)} name(s), "
        f"{sum(len(ws.validations) for ws in worksheets)} validation(s)"
    )
    return workbook
