"""Internal accessors - the only code that depends on private container layout.

Neither container library exposes data validations or formula text through
its public surface in a usable form, so both are recovered here:

- ``LegacyBinaryInternals`` walks the BIFF8 records of each worksheet in
  xlrd's private workbook buffer (``Book.mem`` / ``Book._sh_abs_posn``) and
  reads the evaluated NAME table (``Book.name_obj_list``).
- ``XmlPackageInternals`` reads the package parts directly (workbook.xml,
  its relationships and the worksheet parts).

If a library upgrade changes any of this, the accessor tests fail here.
"""

from __future__ import annotations

import logging
import struct
import zipfile
from typing import Dict, List, NamedTuple, Optional, Tuple
from xml.etree import ElementTree as ET

from xlrd.formula import oREF

from . import biff
from .ranges import cell_to_string, quote_sheet_name


logger = logging.getLogger(__name__)


class NativeName(NamedTuple):
    """One entry of a container's defined-name table."""
    name: str
    refers_to: Optional[str]  # Formula text, e.g. "Sheet1!$A$1:$A$5"
    builtin: bool = False


class NativeValidation(NamedTuple):
    """A validation element of a worksheet part."""
    sqref: str
    formula1: Optional[str]


# =============================================================================
# LEGACY BINARY
# =============================================================================

class LegacyBinaryInternals:
    """Private state of an xlrd ``Book`` opened with ``on_demand=True``."""

    def __init__(self, book):
        self.book = book
        self._scanned: Dict[int, Tuple[List[biff.DvRecord], Dict[Tuple[int, int], Optional[str]]]] = {}

    def _buffer(self) -> bytes:
        mem = self.book.mem
        if mem is None:
            raise RuntimeError("workbook stream already released")
        return mem

    def _scan(self, sheet_index: int):
        if sheet_index in self._scanned:
            return self._scanned[sheet_index]

        validations: List[biff.DvRecord] = []
        formulas: Dict[Tuple[int, int], Optional[str]] = {}
        start = self.book._sh_abs_posn[sheet_index]

        for record in biff.iter_substream(self._buffer(), start):
            if record.type == biff.RecordType.DV:
                try:
                    validations.append(biff.parse_dv_record(record.data))
                except (struct.error, IndexError, UnicodeDecodeError) as e:
                    logger.debug(f"[BIFF] Skipping malformed DV record at {record.offset}: {e}")
            elif record.type == biff.RecordType.FORMULA:
                try:
                    row, column = struct.unpack_from("<HH", record.data, 0)
                    rgce = biff.formula_tokens(record.data)
                except struct.error as e:
                    logger.debug(f"[BIFF] Skipping malformed FORMULA record at {record.offset}: {e}")
                    continue
                formulas[(row, column)] = "TODAY()" if biff.is_today_formula(rgce) else None

        self._scanned[sheet_index] = (validations, formulas)
        return self._scanned[sheet_index]

    def validations(self, sheet_index: int) -> List[biff.DvRecord]:
        """DV records of a worksheet, in file order."""
        return self._scan(sheet_index)[0]

    def formulas(self, sheet_index: int) -> Dict[Tuple[int, int], Optional[str]]:
        """Formula cells of a worksheet mapped to their text (None if not recognised)."""
        return self._scan(sheet_index)[1]

    def _render_reference(self, result) -> Optional[str]:
        if result is None or result.kind != oREF or not result.value or len(result.value) != 1:
            return None
        sheet_lo, sheet_hi, row_lo, row_hi, col_lo, col_hi = result.value[0].coords
        sheet_names = self.book.sheet_names()
        if sheet_hi != sheet_lo + 1 or not 0 <= sheet_lo < len(sheet_names):
            return None
        if row_hi <= row_lo or col_hi <= col_lo:
            return None
        area = f"{cell_to_string(row_lo, col_lo, True)}:{cell_to_string(row_hi - 1, col_hi - 1, True)}"
        return f"{quote_sheet_name(sheet_names[sheet_lo])}!{area}"

    def names(self) -> List[NativeName]:
        """The NAME table in record order, so DV name indices line up."""
        native: List[NativeName] = []
        for name_obj in self.book.name_obj_list:
            builtin = bool(name_obj.builtin or name_obj.macro or name_obj.binary)
            try:
                refers_to = self._render_reference(name_obj.result)
            except (AttributeError, TypeError, ValueError) as e:
                logger.debug(f"[NAMES] Could not resolve '{name_obj.name}': {e}")
                refers_to = None
            native.append(NativeName(name=name_obj.name, refers_to=refers_to, builtin=builtin))
        return native


# =============================================================================
# XML PACKAGE
# =============================================================================

NS = {
    "main": "http://schemas.openxmlformats.org/spreadsheetml/2006/main",
    "r": "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
    "rel": "http://schemas.openxmlformats.org/package/2006/relationships",
}


class XmlPackageInternals:
    """Raw parts of an open XML package."""

    def __init__(self, archive: zipfile.ZipFile):
        self.archive = archive
        with archive.open("xl/workbook.xml") as f:
            self._workbook_root = ET.parse(f).getroot()
        self._sheet_paths = self._resolve_sheet_paths()

    def _resolve_sheet_paths(self) -> Dict[str, str]:
        ns = NS["main"]
        r_ns = NS["r"]

        id_to_target: Dict[str, str] = {}
        try:
            with self.archive.open("xl/_rels/workbook.xml.rels") as f:
                rels_root = ET.parse(f).getroot()
        except KeyError:
            rels_root = None
        if rels_root is not None:
            for rel in rels_root.findall(f"{{{NS['rel']}}}Relationship"):
                rel_id = rel.get("Id")
                target = rel.get("Target")
                if rel_id and target:
                    id_to_target[rel_id] = target

        paths: Dict[str, str] = {}
        sheets_el = self._workbook_root.find(f"{{{ns}}}sheets")
        if sheets_el is None:
            return paths
        for sheet in sheets_el.findall(f"{{{ns}}}sheet"):
            target = id_to_target.get(sheet.get(f"{{{r_ns}}}id", ""), "")
            if target.startswith("/"):
                sheet_path = target[1:]
            else:
                sheet_path = f"xl/{target}"
            paths[sheet.get("name", "")] = sheet_path
        return paths

    def names(self) -> List[NativeName]:
        """``<definedNames>`` of workbook.xml in document order."""
        ns = NS["main"]
        native: List[NativeName] = []
        dn_el = self._workbook_root.find(f"{{{ns}}}definedNames")
        if dn_el is None:
            return native
        for dn in dn_el.findall(f"{{{ns}}}definedName"):
            name = dn.get("name", "")
            native.append(NativeName(
                name=name,
                refers_to=(dn.text or "").strip() or None,
                builtin=name.startswith("_xlnm."),
            ))
        return native

    def validations(self, sheet_name: str) -> List[NativeValidation]:
        """``<dataValidation>`` elements of the part holding a worksheet."""
        ns = NS["main"]
        found: List[NativeValidation] = []
        sheet_path = self._sheet_paths.get(sheet_name)
        if sheet_path is None:
            logger.debug(f"[VALIDATION] No part for sheet '{sheet_name}'")
            return found

        try:
            with self.archive.open(sheet_path) as f:
                sheet_el = ET.parse(f).getroot()
        except KeyError:
            logger.debug(f"[VALIDATION] Part {sheet_path} of sheet '{sheet_name}' not found")
            return found

        dv_el = sheet_el.find(f"{{{ns}}}dataValidations")
        if dv_el is None:
            return found
        for dv in dv_el.findall(f"{{{ns}}}dataValidation"):
            formula1_el = dv.find(f"{{{ns}}}formula1")
            formula1 = formula1_el.text if formula1_el is not None and formula1_el.text else None
            found.append(NativeValidation(sqref=dv.get("sqref", ""), formula1=formula1))
        return found

    @staticmethod
    def cells(worksheet) -> Dict[Tuple[int, int], object]:
        """Cells physically present in an openpyxl worksheet, keyed 1-based.

        The public row iterators create cells for every position they visit,
        which would erase the difference between blank and absent cells.
        """
        return worksheet._cells
