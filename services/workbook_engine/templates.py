"""Template editing - fill an existing workbook in place.

``write_workbook`` builds a fresh container from the model. The functions here
instead work on an open openpyxl workbook, so whatever the model does not
carry (styles, column widths, charts, other sheets) survives: open a template,
add rows, names and validations, save it.

Only XML package workbooks can be edited. xlrd opens legacy binary workbooks
read-only, so ``open_native`` rejects them.
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Optional, Sequence

import openpyxl

from services.workbook_config import WorkbookSettings, get_workbook_settings

from .container import Source, detect_format, read_source
from .errors import InvalidWorkbook, UnreadableContainer, UnsupportedTargetFormat
from .schemas import ContainerFormat, DataValidation, NamedRange, Row
from .writer import (
    Sink,
    add_package_names,
    add_package_rows,
    add_package_validations,
    check_names,
    check_rows,
    check_validation,
    write_to_sink,
)


logger = logging.getLogger(__name__)

VERSION = ContainerFormat.XML_PACKAGE


def open_native(source: Source) -> openpyxl.Workbook:
    """Open a template workbook for editing."""
    data = read_source(source)
    if detect_format(data) != VERSION:
        raise UnsupportedTargetFormat("Only xlsx workbooks can be edited in place")
    try:
        wb = openpyxl.load_workbook(BytesIO(data))
    except Exception as e:
        raise UnreadableContainer(f"Could not parse XML package workbook: {e}") from e
    logger.info(f"[TEMPLATE] Opened workbook with {len(wb.worksheets)} sheet(s)")
    return wb


def _worksheet(wb: openpyxl.Workbook, sheet_name: str):
    if sheet_name not in wb.sheetnames:
        raise InvalidWorkbook(f"Workbook has no worksheet named '{sheet_name}'")
    return wb[sheet_name]


def add_rows(
    wb: openpyxl.Workbook,
    sheet_name: str,
    rows: Sequence[Optional[Row]],
    settings: Optional[WorkbookSettings] = None,
) -> None:
    """Write rows into a sheet. Cells already present at the same positions are overwritten."""
    ws = _worksheet(wb, sheet_name)
    check_rows(rows, sheet_name, VERSION)
    add_package_rows(ws, rows, settings or get_workbook_settings())
    logger.debug(f"[TEMPLATE] Added {sum(1 for row in rows if row is not None)} row(s) to '{sheet_name}'")


def add_names(wb: openpyxl.Workbook, named_ranges: Sequence[NamedRange]) -> None:
    """Define workbook-level names. A name already defined in the workbook is rejected."""
    check_names(named_ranges, VERSION, taken=list(wb.defined_names))
    add_package_names(wb, named_ranges)
    logger.debug(f"[TEMPLATE] Added {len(named_ranges)} name(s)")


def add_validations(wb: openpyxl.Workbook, sheet_name: str, validations: Sequence[DataValidation]) -> None:
    ws = _worksheet(wb, sheet_name)
    names = list(wb.defined_names)
    for validation in validations:
        check_validation(validation, sheet_name, names, VERSION)
    add_package_validations(ws, validations)
    logger.debug(f"[TEMPLATE] Added {len(validations)} validation(s) to '{sheet_name}'")


def save_native(wb: openpyxl.Workbook, sink: Sink) -> None:
    """Save an edited workbook to a path or binary file object."""
    buffer = BytesIO()
    wb.save(buffer)
    data = buffer.getvalue()
    write_to_sink(data, sink)
    logger.info(f"[TEMPLATE] Saved workbook: {len(data)} bytes")
