"""Container detection and access.

A container is opened once per read and resolved to one of two variants,
``LegacyBinaryContainer`` (xlrd) or ``XmlPackageContainer`` (openpyxl). Both
expose the same small surface to the reader: sheets, their present cells as
``CellSource`` rows, hidden flags, the name table and validations.
"""

from __future__ import annotations

import datetime
import logging
import zipfile
from contextlib import contextmanager
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Union

import openpyxl
import xlrd
from openpyxl.utils.datetime import CALENDAR_MAC_1904, to_excel

from .cells import CellKind, CellSource
from .errors import UnreadableContainer
from .internals import LegacyBinaryInternals, NativeName, XmlPackageInternals
from .schemas import ContainerFormat, DataValidation
from .validations import extract_legacy_validations, extract_package_validations


logger = logging.getLogger(__name__)

OLE2_SIGNATURE = bytes.fromhex("D0CF11E0A1B11AE1")
ZIP_SIGNATURE = b"PK\x03\x04"

Source = Union[bytes, bytearray, str, Path, BinaryIO]

# Rows of present cells, keyed by native row index, each sorted by column
SheetRows = Dict[int, List[CellSource]]


# =============================================================================
# DETECTION
# =============================================================================

def read_source(source: Source) -> bytes:
    """Load the bytes of a path, bytes object or binary file-like object."""
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise UnreadableContainer(f"Workbook file not found: {path}")
        return path.read_bytes()
    if hasattr(source, "read"):
        return source.read()
    raise UnreadableContainer(f"Unsupported workbook source: {type(source).__name__}")


def detect_format(data: bytes) -> ContainerFormat:
    """Identify the container format from its leading bytes."""
    if data.startswith(OLE2_SIGNATURE):
        return ContainerFormat.LEGACY_BINARY

    if data.startswith(ZIP_SIGNATURE):
        try:
            with zipfile.ZipFile(BytesIO(data)) as zf:
                if "xl/workbook.xml" in zf.namelist():
                    return ContainerFormat.XML_PACKAGE
        except zipfile.BadZipFile as e:
            raise UnreadableContainer(f"Corrupt zip package: {e}") from e
        raise UnreadableContainer("Zip package has no xl/workbook.xml part")

    raise UnreadableContainer("Not a legacy binary or XML package workbook")


# =============================================================================
# LEGACY BINARY
# =============================================================================

class _XlrdLog:
    """File-like sink routing xlrd's diagnostics into logging."""

    def write(self, text: str) -> None:
        text = text.strip()
        if text:
            logger.debug(f"[READ] xlrd: {text}")

    def flush(self) -> None:
        pass


_XLRD_KINDS = {
    xlrd.XL_CELL_TEXT: CellKind.STRING,
    xlrd.XL_CELL_NUMBER: CellKind.NUMERIC,
    xlrd.XL_CELL_DATE: CellKind.NUMERIC,
    xlrd.XL_CELL_BOOLEAN: CellKind.BOOLEAN,
    xlrd.XL_CELL_ERROR: CellKind.ERROR,
    xlrd.XL_CELL_BLANK: CellKind.BLANK,
}


class LegacyBinaryContainer:
    format = ContainerFormat.LEGACY_BINARY

    def __init__(self, book):
        self.book = book
        self.internals = LegacyBinaryInternals(book)
        self._native_names: Optional[List[NativeName]] = None

    @property
    def date_mode(self) -> int:
        return self.book.datemode

    @property
    def sheet_count(self) -> int:
        return self.book.nsheets

    def sheet_name(self, index: int) -> str:
        return self.book.sheet_names()[index]

    def is_hidden(self, index: int) -> bool:
        # 1 = hidden, 2 = very hidden
        return self.book.sheet_by_index(index).visibility != 0

    def native_names(self) -> List[NativeName]:
        if self._native_names is None:
            self._native_names = self.internals.names()
        return self._native_names

    def _data_format(self, xf_index: Optional[int]) -> Optional[str]:
        if xf_index is None:
            return None
        try:
            format_key = self.book.xf_list[xf_index].format_key
            pattern = self.book.format_map[format_key].format_str
        except (IndexError, KeyError):
            return None
        return None if not pattern or pattern == "General" else pattern

    def rows(self, index: int) -> SheetRows:
        sheet = self.book.sheet_by_index(index)
        formulas = self.internals.formulas(index)
        notes = getattr(sheet, "cell_note_map", None) or {}

        rows: SheetRows = {}
        for row_index in range(sheet.nrows):
            sources = []
            for column_index, cell in enumerate(sheet.row(row_index)):
                if cell.ctype == xlrd.XL_CELL_EMPTY:
                    continue
                kind = _XLRD_KINDS.get(cell.ctype, CellKind.ERROR)
                note = notes.get((row_index, column_index))
                source = CellSource(
                    row_index=row_index,
                    column_index=column_index,
                    kind=kind,
                    value=cell.value,
                    data_format=self._data_format(cell.xf_index),
                    comment=note.text if note is not None else None,
                )
                if (row_index, column_index) in formulas:
                    source.kind = CellKind.FORMULA
                    source.cached_kind = kind
                    source.formula = formulas[(row_index, column_index)]
                sources.append(source)
            if sources:
                rows[row_index] = sources
        return rows

    def validations(self, index: int, names: List[str]) -> List[DataValidation]:
        return extract_legacy_validations(self.internals.validations(index), self.native_names(), names)

    def close(self) -> None:
        self.book.release_resources()


# =============================================================================
# XML PACKAGE
# =============================================================================

def _package_kind(value, data_type: str) -> CellKind:
    if value is None:
        return CellKind.BLANK
    if data_type == "e":
        return CellKind.ERROR
    if isinstance(value, bool):
        return CellKind.BOOLEAN
    if isinstance(value, (int, float, datetime.date, datetime.time, datetime.timedelta)):
        return CellKind.NUMERIC
    return CellKind.STRING


class XmlPackageContainer:
    format = ContainerFormat.XML_PACKAGE

    def __init__(self, archive: zipfile.ZipFile, workbook, values):
        self.archive = archive
        self.workbook = workbook  # formulas as text
        self.values = values  # cached formula results
        self.internals = XmlPackageInternals(archive)
        self._native_names: Optional[List[NativeName]] = None

    @property
    def date_mode(self) -> int:
        return 1 if self.workbook.epoch == CALENDAR_MAC_1904 else 0

    @property
    def sheet_count(self) -> int:
        return len(self.workbook.worksheets)

    def sheet_name(self, index: int) -> str:
        return self.workbook.worksheets[index].title

    def is_hidden(self, index: int) -> bool:
        return self.workbook.worksheets[index].sheet_state in ("hidden", "veryHidden")

    def native_names(self) -> List[NativeName]:
        if self._native_names is None:
            self._native_names = self.internals.names()
        return self._native_names

    def _number(self, value):
        if isinstance(value, (datetime.date, datetime.time, datetime.timedelta)):
            return to_excel(value, epoch=self.workbook.epoch)
        return value

    def rows(self, index: int) -> SheetRows:
        worksheet = self.workbook.worksheets[index]
        cached = XmlPackageInternals.cells(self.values[worksheet.title])

        rows: SheetRows = {}
        for (row, column), cell in sorted(XmlPackageInternals.cells(worksheet).items()):
            number_format = cell.number_format
            source = CellSource(
                row_index=row - 1,
                column_index=column - 1,
                kind=_package_kind(cell.value, cell.data_type),
                value=cell.value,
                data_format=None if number_format == "General" else number_format,
                comment=cell.comment.text if cell.comment is not None else None,
            )
            if cell.data_type == "f":
                result = cached.get((row, column))
                source.kind = CellKind.FORMULA
                source.formula = cell.value[1:] if isinstance(cell.value, str) else None
                source.value = None
                if result is not None and result.value is not None:
                    source.cached_kind = _package_kind(result.value, result.data_type)
                    source.value = result.value
            if source.kind in (CellKind.NUMERIC, CellKind.FORMULA):
                source.value = self._number(source.value)
            rows.setdefault(row - 1, []).append(source)
        return rows

    def validations(self, index: int, names: List[str]) -> List[DataValidation]:
        title = self.workbook.worksheets[index].title
        return extract_package_validations(self.internals.validations(title), names)

    def close(self) -> None:
        self.archive.close()


Container = Union[LegacyBinaryContainer, XmlPackageContainer]


# =============================================================================
# OPENING
# =============================================================================

def _open_legacy(data: bytes) -> LegacyBinaryContainer:
    try:
        book = xlrd.open_workbook(
            file_contents=data,
            formatting_info=True,
            on_demand=True,
            ragged_rows=True,
            logfile=_XlrdLog(),
        )
    except Exception as e:
        raise UnreadableContainer(f"Could not parse legacy binary workbook: {e}") from e
    return LegacyBinaryContainer(book)


def _open_package(data: bytes) -> XmlPackageContainer:
    archive = None
    try:
        workbook = openpyxl.load_workbook(BytesIO(data), data_only=False)
        values = openpyxl.load_workbook(BytesIO(data), data_only=True)
        archive = zipfile.ZipFile(BytesIO(data))
        return XmlPackageContainer(archive, workbook, values)
    except Exception as e:
        if archive is not None:
            archive.close()
        raise UnreadableContainer(f"Could not parse XML package workbook: {e}") from e


@contextmanager
def open_container(source: Source) -> Iterator[Container]:
    """Open a workbook source as its container variant, releasing it on exit."""
    data = read_source(source)
    container_format = detect_format(data)
    logger.debug(f"[READ] Detected {container_format.value} container ({len(data)} bytes)")

    if container_format == ContainerFormat.LEGACY_BINARY:
        container: Container = _open_legacy(data)
    else:
        container = _open_package(data)

    try:
        yield container
    finally:
        container.close()
