"""Workbook writer - materializes the normalized model as a container.

The whole workbook is checked before any container is built, and the
container is serialized into memory first. A sink only ever receives a
complete file: an invalid validation or sheet aborts the write with nothing
emitted.

Per sheet, in order: validations, then rows (display format, comment, and
the value as plain text), then the hidden flag.
"""

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Sequence, Union

import openpyxl
from openpyxl.comments import Comment
from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.workbook.defined_name import DefinedName
from openpyxl.worksheet.datavalidation import DataValidation as PackageValidation

from services.workbook_config import WorkbookSettings, get_workbook_settings

from . import biff
from .compound import write_compound_document
from .errors import InvalidValidation, InvalidWorkbook, UnsupportedTargetFormat
from .ranges import get_column_max, get_row_max, range_to_area, range_to_string, resolve_bounds
from .schemas import ContainerFormat, DataValidation, NamedRange, Range, Row, Workbook, Worksheet


logger = logging.getLogger(__name__)

MAX_SHEET_NAME = 31
MAX_LIST_LENGTH = 255  # Characters in a literal list, separators included
MAX_NAME_LENGTH = 255
MAX_TEXT_LENGTH = 32767  # Characters in one cell
INVALID_SHEET_CHARS = set('[]:*?/\\')

# Points per anchor column/row of a comment box
COMMENT_COLUMN_WIDTH = 48
COMMENT_ROW_HEIGHT = 16

Sink = Union[str, Path, BinaryIO]


def write_to_sink(data: bytes, sink: Sink) -> None:
    if isinstance(sink, (str, Path)):
        Path(sink).write_bytes(data)
    else:
        sink.write(data)


def resolve_target(target) -> ContainerFormat:
    """Accept a ContainerFormat or its string value ("xls" / "xlsx")."""
    if isinstance(target, ContainerFormat):
        return target
    if isinstance(target, str):
        try:
            return ContainerFormat(target.lower().lstrip("."))
        except ValueError:
            pass
    raise UnsupportedTargetFormat(f"No container for target format {target!r}")


# =============================================================================
# PRE-WRITE CHECKS
# =============================================================================

def _check_bounds(range_: Range, version: ContainerFormat) -> bool:
    row_start, row_end, column_start, column_end = resolve_bounds(range_, version)
    return (
        0 <= row_start <= row_end < get_row_max(version)
        and 0 <= column_start <= column_end < get_column_max(version)
    )


def check_validation(validation: DataValidation, sheet_name: str, names: Sequence[str], version: ContainerFormat):
    where = f"sheet '{sheet_name}'"
    if validation.name is None and not validation.list:
        raise InvalidValidation(f"Validation on {where} has neither a list nor a name")
    if not _check_bounds(validation.range, version):
        raise InvalidValidation(f"Validation range on {where} is outside the {version.value} limits")
    if validation.name is not None:
        if version == ContainerFormat.LEGACY_BINARY and validation.name not in names:
            raise InvalidValidation(f"Validation on {where} references undefined name '{validation.name}'")
    elif len(",".join(validation.list)) > MAX_LIST_LENGTH:
        raise InvalidValidation(f"Validation list on {where} is longer than {MAX_LIST_LENGTH} characters")


def check_names(named_ranges: Sequence[NamedRange], version: ContainerFormat, taken: Sequence[str] = ()) -> None:
    """Names are compared case-insensitively, against each other and ``taken``."""
    seen = {name.lower() for name in taken}
    for named_range in named_ranges:
        if not named_range.name or len(named_range.name) > MAX_NAME_LENGTH:
            raise InvalidWorkbook(f"Invalid name {named_range.name!r}")
        if named_range.name.lower() in seen:
            raise InvalidWorkbook(f"Duplicate name {named_range.name!r}")
        if not _check_bounds(named_range.range, version):
            raise InvalidWorkbook(f"Range of name {named_range.name!r} is outside the {version.value} limits")
        seen.add(named_range.name.lower())


def check_rows(rows: Sequence[Optional[Row]], sheet_name: str, version: ContainerFormat) -> None:
    row_max = get_row_max(version)
    column_max = get_column_max(version)
    for row in rows:
        if row is None:
            continue
        if not 0 <= row.index < row_max:
            raise InvalidWorkbook(f"Row {row.index} of sheet '{sheet_name}' is outside the {version.value} limits")
        for cell in row.cells:
            if cell is None:
                continue
            if not 0 <= cell.column_index < column_max:
                raise InvalidWorkbook(
                    f"Column {cell.column_index} of sheet '{sheet_name}' is outside the {version.value} limits"
                )
            if cell.value is not None and len(cell.value) > MAX_TEXT_LENGTH:
                raise InvalidWorkbook(
                    f"Cell at row {row.index}, column {cell.column_index} of sheet '{sheet_name}' "
                    f"holds more than {MAX_TEXT_LENGTH} characters"
                )


def check_workbook(workbook: Workbook, version: ContainerFormat) -> None:
    """Raise before anything is built if the workbook cannot be written."""
    if not workbook.worksheets:
        raise InvalidWorkbook("Workbook has no worksheets")

    seen_sheets = set()
    for sheet in workbook.worksheets:
        if not sheet.name or len(sheet.name) > MAX_SHEET_NAME or INVALID_SHEET_CHARS & set(sheet.name):
            raise InvalidWorkbook(f"Invalid sheet name {sheet.name!r}")
        if sheet.name.lower() in seen_sheets:
            raise InvalidWorkbook(f"Duplicate sheet name {sheet.name!r}")
        seen_sheets.add(sheet.name.lower())

    if all(sheet.is_hidden for sheet in workbook.worksheets):
        raise InvalidWorkbook("At least one worksheet must be visible")

    check_names(workbook.names, version)
    names = [named_range.name for named_range in workbook.names]

    for sheet in workbook.worksheets:
        for validation in sheet.validations:
            check_validation(validation, sheet.name, names, version)
        check_rows(sheet.rows, sheet.name, version)


def _active_sheet(workbook: Workbook) -> int:
    for index, sheet in enumerate(workbook.worksheets):
        if not sheet.is_hidden:
            return index
    return 0


# =============================================================================
# XML PACKAGE
# =============================================================================

def add_package_names(wb: openpyxl.Workbook, named_ranges: Sequence[NamedRange]) -> None:
    """Define workbook-level names; a name without a sheet binds to the first worksheet."""
    version = ContainerFormat.XML_PACKAGE
    for named_range in named_ranges:
        range_ = named_range.range
        if range_.sheet is None:
            range_ = range_.model_copy(update={"sheet": wb.worksheets[0].title})
        wb.defined_names[named_range.name] = DefinedName(
            named_range.name,
            attr_text=range_to_string(range_, version),
        )


def add_package_validations(ws, validations: Sequence[DataValidation]) -> None:
    version = ContainerFormat.XML_PACKAGE
    for validation in validations:
        if validation.name is not None:
            formula1 = validation.name
        else:
            formula1 = '"' + ",".join(validation.list) + '"'
        dv = PackageValidation(type="list", formula1=formula1, allow_blank=True)
        dv.add(range_to_area(validation.range, version))
        ws.add_data_validation(dv)


def add_package_rows(ws, rows: Sequence[Optional[Row]], settings: WorkbookSettings) -> None:
    """Write cells as text with their display format and comment."""
    for row in rows:
        if row is None:
            continue
        for cell in row.cells:
            if cell is None:
                continue
            target = ws.cell(row=row.index + 1, column=cell.column_index + 1)
            if cell.data_format:
                target.number_format = cell.data_format
            if cell.comment:
                target.comment = Comment(
                    cell.comment,
                    settings.comment_author,
                    width=settings.comment_anchor_columns * COMMENT_COLUMN_WIDTH,
                    height=settings.comment_anchor_rows * COMMENT_ROW_HEIGHT,
                )
            if cell.value is not None:
                try:
                    target.value = cell.value
                except IllegalCharacterError as e:
                    raise InvalidWorkbook(
                        f"Cell {target.coordinate} of sheet '{ws.title}' holds characters "
                        f"an XML package cannot store"
                    ) from e
                # Values are text, even when they look like formulas
                target.data_type = "s"


def _build_package(workbook: Workbook, settings: WorkbookSettings) -> bytes:
    wb = openpyxl.Workbook()
    wb.remove(wb.active)

    active = _active_sheet(workbook)
    for index, sheet in enumerate(workbook.worksheets):
        ws = wb.create_sheet(title=sheet.name)
        add_package_validations(ws, sheet.validations)
        add_package_rows(ws, sheet.rows, settings)
        if sheet.is_hidden:
            ws.sheet_state = "hidden"
        ws.sheet_view.tabSelected = index == active

    add_package_names(wb, workbook.names)
    wb.active = active
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


# =============================================================================
# LEGACY BINARY
# =============================================================================

DEFAULT_CELL_XF = 15
FIRST_CUSTOM_FORMAT = 164
STYLE_XF_COUNT = 15
FONT_COUNT = 5


class _LegacyBinaryBuilder:
    """Builds a BIFF8 workbook stream from the normalized model."""

    def __init__(self, workbook: Workbook, settings: WorkbookSettings):
        self.workbook = workbook
        self.settings = settings
        self.version = ContainerFormat.LEGACY_BINARY

        self.formats: Dict[str, int] = {}  # pattern -> XF index
        self.strings: Dict[str, int] = {}  # text -> SST index
        self.string_total = 0
        self.name_indices: Dict[str, int] = {}

    # Shared tables ----------------------------------------------------------

    def _collect(self) -> None:
        for sheet in self.workbook.worksheets:
            for row in sheet.rows:
                if row is None:
                    continue
                for cell in row.cells:
                    if cell is None:
                        continue
                    if cell.data_format and cell.data_format not in self.formats:
                        self.formats[cell.data_format] = DEFAULT_CELL_XF + 1 + len(self.formats)
                    if cell.value is not None:
                        self.string_total += 1
                        self.strings.setdefault(cell.value, len(self.strings))

    def _name_records(self) -> bytes:
        sheet_index = {sheet.name: i for i, sheet in enumerate(self.workbook.worksheets)}
        out = b""
        for named_range in self.workbook.names:
            sheet_name = named_range.range.sheet
            if sheet_name is None:
                index = 0
            elif sheet_name in sheet_index:
                index = sheet_index[sheet_name]
            else:
                logger.warning(f"[NAMES] Skipping '{named_range.name}': unknown sheet '{sheet_name}'")
                continue
            self.name_indices[named_range.name] = len(self.name_indices)
            out += biff.build_name(named_range.name, index, resolve_bounds(named_range.range, self.version))
        if not out:
            return b""
        sheet_count = len(self.workbook.worksheets)
        return biff.build_supbook(sheet_count) + biff.build_externsheet(sheet_count) + out

    # Worksheets --------------------------------------------------------------

    def _validation_records(self, sheet: Worksheet) -> bytes:
        if not sheet.validations:
            return b""
        out = biff.build_dval(len(sheet.validations))
        for validation in sheet.validations:
            area = resolve_bounds(validation.range, self.version)
            if validation.name is not None:
                if validation.name not in self.name_indices:
                    raise InvalidValidation(
                        f"Validation on sheet '{sheet.name}' references name "
                        f"'{validation.name}' that could not be written"
                    )
                out += biff.build_dv(area, name_index=self.name_indices[validation.name])
            else:
                out += biff.build_dv(area, options=validation.list)
        return out

    def _sheet_stream(self, sheet: Worksheet, drawing: Optional[biff.Drawing], active: bool) -> bytes:
        row_count = 0
        column_count = 0
        cells = b""
        for row in sheet.rows:
            if row is None:
                continue
            for cell in row.cells:
                if cell is None:
                    continue
                row_count = max(row_count, row.index + 1)
                column_count = max(column_count, cell.column_index + 1)
                xf_index = self.formats.get(cell.data_format, DEFAULT_CELL_XF) if cell.data_format else DEFAULT_CELL_XF
                if cell.value is not None:
                    cells += biff.build_labelsst(row.index, cell.column_index, xf_index, self.strings[cell.value])
                else:
                    cells += biff.build_blank(row.index, cell.column_index, xf_index)

        out = biff.build_bof(biff.Substream.WORKSHEET)
        out += biff.build_dimensions(row_count, column_count)
        out += cells
        if drawing is not None:
            out += biff.build_sheet_drawing(
                drawing, self.settings.comment_anchor_columns, self.settings.comment_anchor_rows,
            )
            for object_id, note in enumerate(drawing.notes, start=1):
                out += biff.build_note(note, object_id)
        out += biff.build_window2(active)
        out += self._validation_records(sheet)
        out += biff.build_eof()
        return out

    def _sheet_notes(self, sheet: Worksheet) -> List[biff.Note]:
        notes = []
        for row in sheet.rows:
            if row is None:
                continue
            for cell in row.cells:
                if cell is not None and cell.comment:
                    notes.append(biff.Note(
                        row=row.index,
                        column=cell.column_index,
                        text=cell.comment,
                        author=self.settings.comment_author,
                    ))
        return notes

    # Globals -----------------------------------------------------------------

    def _globals_head(self, active: int) -> bytes:
        out = biff.build_bof(biff.Substream.GLOBALS)
        out += biff.build_codepage()
        out += biff.build_window1(active)
        out += biff.build_datemode(0)
        out += b"".join(biff.build_font() for _ in range(FONT_COUNT))
        for offset, pattern in enumerate(self.formats):
            out += biff.build_format(FIRST_CUSTOM_FORMAT + offset, pattern)
        out += biff.build_xf(is_style=True)
        out += b"".join(biff.build_xf(is_style=True, font_index=1) for _ in range(STYLE_XF_COUNT - 1))
        out += biff.build_xf()
        for offset, _ in enumerate(self.formats):
            out += biff.build_xf(format_key=FIRST_CUSTOM_FORMAT + offset)
        out += biff.build_style()
        return out

    def build(self) -> bytes:
        self._collect()
        sheets = self.workbook.worksheets
        active = _active_sheet(self.workbook)

        links = self._name_records()
        drawings = biff.allocate_drawings([self._sheet_notes(sheet) for sheet in sheets])
        used_drawings = [drawing for drawing in drawings if drawing is not None]
        drawing_group = biff.build_drawing_group(used_drawings) if used_drawings else b""

        streams = [
            self._sheet_stream(sheet, drawing, index == active)
            for index, (sheet, drawing) in enumerate(zip(sheets, drawings))
        ]

        head = self._globals_head(active)
        boundsheet_size = sum(len(biff.build_boundsheet(sheet.name, 0, sheet.is_hidden)) for sheet in sheets)
        sst_position = len(head) + boundsheet_size + len(links) + len(drawing_group)
        sst = biff.build_sst(list(self.strings), self.string_total, sst_position)
        eof = biff.build_eof()

        position = sst_position + len(sst) + len(eof)
        boundsheets = b""
        for sheet, stream in zip(sheets, streams):
            boundsheets += biff.build_boundsheet(sheet.name, position, sheet.is_hidden)
            position += len(stream)

        globals_stream = head + boundsheets + links + drawing_group + sst + eof
        return write_compound_document(globals_stream + b"".join(streams))


# =============================================================================
# PUBLIC API
# =============================================================================

def workbook_to_bytes(
    workbook: Workbook,
    target: Union[ContainerFormat, str],
    settings: Optional[WorkbookSettings] = None,
) -> bytes:
    """Serialize a workbook as a complete container file in memory.

    Raises UnsupportedTargetFormat, InvalidWorkbook or InvalidValidation
    before anything is produced.
    """
    version = resolve_target(target)
    settings = settings or get_workbook_settings()
    check_workbook(workbook, version)

    logger.info(
        f"[WRITE] Writing {version.value}: {len(workbook.worksheets)} sheet(s), "
        f"{len(workbook.names)} name(s)"
    )
    if version == ContainerFormat.LEGACY_BINARY:
        data = _LegacyBinaryBuilder(workbook, settings).build()
    else:
        data = _build_package(workbook, settings)
    logger.info(f"[WRITE] Done: {len(data)} bytes")
    return data


def write_workbook(
    workbook: Workbook,
    target: Union[ContainerFormat, str],
    sink: Sink,
    settings: Optional[WorkbookSettings] = None,
) -> None:
    """Write a workbook to a path or binary file object.

    The sink is only touched after the whole container has been built.
    """
    write_to_sink(workbook_to_bytes(workbook, target, settings), sink)
