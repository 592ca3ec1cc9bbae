"""Validation extractor - recovers named ranges and list validations.

Two algorithms, one per container format:

- Legacy binary: the first token of a DV record's formula decides the type.
  A name token makes a Formula validation referencing the NAME table entry
  (provided that entry became a NamedRange), a string token makes a List
  validation whose options are null-separated.
- XML package: a ``formula1`` equal to a known name is a Formula
  validation; anything else is a quoted, comma-separated literal list.

Every entry is extracted on its own. An entry that cannot be understood is
logged and skipped without affecting the others.
"""

from __future__ import annotations

import logging
import struct
from typing import Iterable, List, Optional, Sequence

from . import biff
from .internals import NativeName, NativeValidation
from .ranges import cell_to_string, parse_range
from .schemas import ContainerFormat, DataValidation, DataValidationType, NamedRange


logger = logging.getLogger(__name__)

EXTERNAL_MARKER = "://"


def extract_named_ranges(native_names: Iterable[NativeName], version: ContainerFormat) -> List[NamedRange]:
    """Turn a container's name table into NamedRanges.

    Skips built-in names, external (URI) references, names whose formula is
    not a single range, and later duplicates of a name already taken.
    """
    names: List[NamedRange] = []
    seen = set()

    for native in native_names:
        if native.builtin:
            logger.debug(f"[NAMES] Skipping built-in name '{native.name}'")
            continue
        if not native.refers_to:
            logger.debug(f"[NAMES] Skipping '{native.name}': no single-range formula")
            continue
        if EXTERNAL_MARKER in native.refers_to:
            logger.debug(f"[NAMES] Skipping '{native.name}': external reference {native.refers_to}")
            continue

        range_ = parse_range(native.refers_to, version)
        if range_ is None:
            logger.debug(f"[NAMES] Skipping '{native.name}': unparsable range {native.refers_to}")
            continue
        if native.name in seen:
            logger.debug(f"[NAMES] Skipping duplicate name '{native.name}'")
            continue

        seen.add(native.name)
        names.append(NamedRange(name=native.name, range=range_))

    return names


# =============================================================================
# LEGACY BINARY
# =============================================================================

def _area_text(area: biff.Area) -> str:
    row_first, row_last, col_first, col_last = area
    return f"{cell_to_string(row_first, col_first)}:{cell_to_string(row_last, col_last)}"


def _legacy_validation(
    record: biff.DvRecord,
    native_names: Sequence[NativeName],
    names: Sequence[str],
) -> Optional[DataValidation]:
    if not record.areas:
        logger.debug("[VALIDATION] Skipping DV record without a target area")
        return None

    range_ = parse_range(_area_text(record.areas[0]), ContainerFormat.LEGACY_BINARY)
    if range_ is None:
        logger.debug(f"[VALIDATION] Skipping DV record: unusable area {record.areas[0]}")
        return None

    operand = biff.decode_list_operand(record.formula1)
    if operand is None:
        logger.debug("[VALIDATION] Skipping DV record: operand is neither a name nor a literal list")
        return None

    if operand.name_index is not None:
        if not 0 <= operand.name_index < len(native_names):
            logger.debug(f"[VALIDATION] Skipping DV record: name index {operand.name_index} out of range")
            return None
        name = native_names[operand.name_index].name
        if name not in names:
            logger.debug(f"[VALIDATION] Skipping DV record: name '{name}' is not a named range of the workbook")
            return None
        return DataValidation(
            range=range_,
            type=DataValidationType.FORMULA,
            name=name,
        )

    return DataValidation(
        range=range_,
        type=DataValidationType.LIST,
        list=operand.literal.split("\x00"),
    )


def extract_legacy_validations(
    records: Iterable[biff.DvRecord],
    native_names: Sequence[NativeName],
    names: Sequence[str],
) -> List[DataValidation]:
    """Validations of one legacy binary worksheet.

    Name tokens index the native NAME table. A validation whose name was
    left out of the model (built-ins, constants, dynamic formulas) is
    skipped like any other unusable entry.
    """
    validations: List[DataValidation] = []
    for record in records:
        try:
            validation = _legacy_validation(record, native_names, names)
        except (struct.error, IndexError, ValueError, UnicodeDecodeError) as e:
            logger.debug(f"[VALIDATION] Skipping malformed DV record: {e}")
            continue
        if validation is not None:
            validations.append(validation)
    return validations


# =============================================================================
# XML PACKAGE
# =============================================================================

def _package_validation(element: NativeValidation, names: Sequence[str]) -> Optional[DataValidation]:
    if element.formula1 is None:
        return None

    areas = element.sqref.split()
    range_ = parse_range(areas[0], ContainerFormat.XML_PACKAGE) if areas else None
    if range_ is None:
        logger.debug(f"[VALIDATION] Skipping validation: unusable sqref '{element.sqref}'")
        return None

    if element.formula1 in names:
        return DataValidation(
            range=range_,
            type=DataValidationType.FORMULA,
            name=element.formula1,
        )

    return DataValidation(
        range=range_,
        type=DataValidationType.LIST,
        list=element.formula1.strip('"').split(","),
    )


def extract_package_validations(
    elements: Iterable[NativeValidation],
    names: Sequence[str],
) -> List[DataValidation]:
    """Validations of one XML package worksheet."""
    validations: List[DataValidation] = []
    for element in elements:
        try:
            validation = _package_validation(element, names)
        except (IndexError, ValueError) as e:
            logger.debug(f"[VALIDATION] Skipping malformed validation element: {e}")
            continue
        if validation is not None:
            validations.append(validation)
    return validations
