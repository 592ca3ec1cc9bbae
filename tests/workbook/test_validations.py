"""Tests for named range and data validation extraction."""

import pytest
from pydantic import ValidationError

from services.workbook_engine import biff
from services.workbook_engine.internals import NativeName, NativeValidation
from services.workbook_engine.schemas import ContainerFormat, DataValidation, DataValidationType, Range
from services.workbook_engine.validations import (
    extract_legacy_validations,
    extract_named_ranges,
    extract_package_validations,
)


XLS = ContainerFormat.LEGACY_BINARY
XLSX = ContainerFormat.XML_PACKAGE


def dv_record(area, name_index=None, options=None):
    """Decode a DV record produced by the writer's encoder."""
    raw = biff.build_dv(area, name_index=name_index, options=options)
    return biff.parse_dv_record(raw[4:])


class TestNamedRanges:
    """Turning a name table into NamedRanges."""

    def test_plain_name(self):
        names = extract_named_ranges([NativeName("Colors", "Lookup!$A$1:$A$3")], XLSX)
        assert len(names) == 1
        assert names[0].name == "Colors"
        assert names[0].range == Range(row_start=0, row_end=2, column_start=0, column_end=0, sheet="Lookup")

    def test_skips_builtin(self):
        native = [NativeName("_xlnm.Print_Area", "Sheet1!$A$1:$B$2", builtin=True)]
        assert extract_named_ranges(native, XLSX) == []

    def test_skips_external_reference(self):
        native = [NativeName("Remote", "http://example.com/book.xlsx#Sheet1!A1")]
        assert extract_named_ranges(native, XLSX) == []

    def test_skips_unparsable_and_empty(self):
        native = [
            NativeName("Broken", "#REF!"),
            NativeName("Constant", "0.5"),
            NativeName("Nothing", None),
            NativeName("Union", "Sheet1!$A$1,Sheet1!$B$2"),
        ]
        assert extract_named_ranges(native, XLSX) == []

    def test_first_duplicate_wins(self):
        native = [
            NativeName("Dup", "Sheet1!$A$1"),
            NativeName("Dup", "Sheet1!$B$2"),
        ]
        names = extract_named_ranges(native, XLSX)
        assert len(names) == 1
        assert names[0].range.column_start == 0

    def test_bad_entry_does_not_hide_others(self):
        native = [
            NativeName("Broken", "#REF!"),
            NativeName("Good", "Sheet1!$C$3"),
        ]
        assert [n.name for n in extract_named_ranges(native, XLSX)] == ["Good"]


class TestPackageValidations:
    """XML package dataValidation elements."""

    def test_formula_validation(self):
        found = extract_package_validations([NativeValidation("B2:B10", "Colors")], ["Colors"])
        assert len(found) == 1
        assert found[0].type == DataValidationType.FORMULA
        assert found[0].name == "Colors"
        assert found[0].range == Range(row_start=1, row_end=9, column_start=1, column_end=1)

    def test_literal_list(self):
        found = extract_package_validations([NativeValidation("C1", '"S,M,L"')], [])
        assert found[0].type == DataValidationType.LIST
        assert found[0].list == ["S", "M", "L"]

    def test_quoted_literal_matching_a_name_is_a_list(self):
        found = extract_package_validations([NativeValidation("A1", '"Colors"')], ["Colors"])
        assert found[0].type == DataValidationType.LIST
        assert found[0].list == ["Colors"]

    def test_first_area_is_used(self):
        found = extract_package_validations([NativeValidation("A1:A5 C1:C5", '"x"')], [])
        assert found[0].range.column_start == 0

    def test_skips_unusable_elements(self):
        elements = [
            NativeValidation("", '"x"'),
            NativeValidation("A1", None),
            NativeValidation("not-a-ref", '"x"'),
            NativeValidation("D4", '"ok"'),
        ]
        found = extract_package_validations(elements, [])
        assert len(found) == 1
        assert found[0].list == ["ok"]


class TestLegacyValidations:
    """Legacy binary DV records."""

    def test_name_token(self):
        native = [NativeName("_xlnm._FilterDatabase", None, builtin=True), NativeName("Colors", "Lookup!$A$1:$A$3")]
        found = extract_legacy_validations([dv_record((1, 9, 1, 1), name_index=1)], native, ["Colors"])
        assert len(found) == 1
        assert found[0].type == DataValidationType.FORMULA
        assert found[0].name == "Colors"
        assert found[0].range == Range(row_start=1, row_end=9, column_start=1, column_end=1)

    def test_literal_token(self):
        found = extract_legacy_validations([dv_record((0, 0, 2, 2), options=["S", "M", "L"])], [], [])
        assert found[0].type == DataValidationType.LIST
        assert found[0].list == ["S", "M", "L"]

    def test_whole_column_target(self):
        found = extract_legacy_validations([dv_record((0, 65535, 3, 3), options=["a"])], [], [])
        assert found[0].range.row_start is None
        assert found[0].range.column_start == 3

    def test_skips_bad_records(self):
        no_area = biff.DvRecord(flags=3, formula1=b"\x17\x01\x00a", areas=[])
        no_operand = biff.DvRecord(flags=3, formula1=b"", areas=[(0, 0, 0, 0)])
        other_token = biff.DvRecord(flags=3, formula1=b"\x1e\x05\x00", areas=[(0, 0, 0, 0)])
        dangling = dv_record((0, 0, 0, 0), name_index=4)
        good = dv_record((5, 5, 5, 5), options=["yes", "no"])
        found = extract_legacy_validations([no_area, no_operand, other_token, dangling, good], [], [])
        assert len(found) == 1
        assert found[0].list == ["yes", "no"]

    def test_truncated_operand_is_skipped(self):
        truncated = biff.DvRecord(flags=3, formula1=b"\x23\x01", areas=[(0, 0, 0, 0)])
        assert extract_legacy_validations([truncated], [NativeName("A", "Sheet1!$A$1")], ["A"]) == []

    def test_name_left_out_of_the_model_is_skipped(self):
        native = [NativeName("Dyn", None), NativeName("Colors", "Lookup!$A$1:$A$3")]
        records = [
            dv_record((0, 9, 0, 0), name_index=0),
            dv_record((0, 9, 1, 1), name_index=1),
        ]
        found = extract_legacy_validations(records, native, ["Colors"])
        assert [v.name for v in found] == ["Colors"]


class TestDataValidationModel:
    """The validation type follows from its source."""

    def test_type_is_derived(self):
        target = Range(row_start=0, row_end=0, column_start=0, column_end=0)
        assert DataValidation(range=target, name="Colors").type == DataValidationType.FORMULA
        assert DataValidation(range=target, list=["a"]).type == DataValidationType.LIST

    def test_needs_exactly_one_source(self):
        target = Range(row_start=0, row_end=0, column_start=0, column_end=0)
        with pytest.raises(ValidationError):
            DataValidation(range=target)
        with pytest.raises(ValidationError):
            DataValidation(range=target, name="Colors", list=["a"])

    def test_conflicting_type(self):
        target = Range(row_start=0, row_end=0, column_start=0, column_end=0)
        with pytest.raises(ValidationError):
            DataValidation(range=target, type=DataValidationType.LIST, name="Colors")
