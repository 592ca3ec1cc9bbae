"""Tests for the A1 range codec."""

import pytest

from services.workbook_engine.ranges import (
    col_index_to_letter,
    col_letter_to_index,
    get_column_max,
    get_row_max,
    parse_range,
    quote_sheet_name,
    range_to_area,
    range_to_string,
)
from services.workbook_engine.schemas import ContainerFormat, Range


XLS = ContainerFormat.LEGACY_BINARY
XLSX = ContainerFormat.XML_PACKAGE


class TestLimits:
    """Row and column ceilings per container format."""

    def test_legacy_binary_limits(self):
        assert get_row_max(XLS) == 65536
        assert get_column_max(XLS) == 256

    def test_xml_package_limits(self):
        assert get_row_max(XLSX) == 1048576
        assert get_column_max(XLSX) == 16384

    def test_column_letters(self):
        assert col_letter_to_index("A") == 1
        assert col_letter_to_index("aa") == 27
        assert col_index_to_letter(26) == "Z"
        assert col_index_to_letter(16384) == "XFD"


class TestParseRange:
    """Parsing the forms used by names and validation targets."""

    def test_single_cell(self):
        assert parse_range("B3", XLSX) == Range(row_start=2, row_end=2, column_start=1, column_end=1)

    def test_absolute_rectangle_with_sheet(self):
        parsed = parse_range("Sheet1!$A$1:$C$10", XLSX)
        assert parsed == Range(row_start=0, row_end=9, column_start=0, column_end=2, sheet="Sheet1")

    def test_leading_equals(self):
        assert parse_range("=A1", XLS) == Range(row_start=0, row_end=0, column_start=0, column_end=0)

    def test_quoted_sheet(self):
        assert parse_range("'My Sheet'!A1", XLSX).sheet == "My Sheet"
        assert parse_range("'It''s'!A1", XLSX).sheet == "It's"

    def test_full_column(self):
        parsed = parse_range("A:A", XLSX)
        assert parsed.row_start is None and parsed.row_end is None
        assert (parsed.column_start, parsed.column_end) == (0, 0)

    def test_full_row(self):
        parsed = parse_range("3:3", XLS)
        assert (parsed.row_start, parsed.row_end) == (2, 2)
        assert parsed.column_start is None and parsed.column_end is None

    def test_reversed_corners_are_normalized(self):
        assert parse_range("C10:A1", XLSX) == parse_range("A1:C10", XLSX)

    def test_whole_extent_becomes_unbounded(self):
        parsed = parse_range("$A$1:$A$65536", XLS)
        assert parsed.row_start is None and parsed.row_end is None
        assert parsed.column_start == 0

    def test_whole_extent_depends_on_format(self):
        parsed = parse_range("A1:A65536", XLSX)
        assert (parsed.row_start, parsed.row_end) == (0, 65535)

    def test_beyond_limits(self):
        assert parse_range("A65537", XLS) is None
        assert parse_range("IW1", XLS) is None
        assert parse_range("A65537", XLSX) is not None

    @pytest.mark.parametrize("text", [
        None,
        "",
        "#REF!",
        "A1:B2,C3",
        "A1:B2:C3",
        "[1]Sheet1!A1",
        "A1:B",
        "A",
        "0:0",
        "Sheet1!",
        "not a range",
    ])
    def test_unparsable(self, text):
        assert parse_range(text, XLSX) is None


class TestSerializeRange:
    """Serialization back to A1 text."""

    def test_name_formula(self):
        range_ = Range(row_start=0, row_end=4, column_start=0, column_end=0, sheet="Sheet1")
        assert range_to_string(range_, XLSX) == "Sheet1!$A$1:$A$5"

    def test_quoted_sheet(self):
        range_ = Range(row_start=0, row_end=0, column_start=0, column_end=0, sheet="My Sheet")
        assert range_to_string(range_, XLSX) == "'My Sheet'!$A$1"

    def test_unbounded_uses_format_limits(self):
        range_ = Range(column_start=0, column_end=0)
        assert range_to_string(range_, XLS) == "$A$1:$A$65536"
        assert range_to_string(range_, XLSX) == "$A$1:$A$1048576"

    def test_area(self):
        range_ = Range(row_start=2, row_end=2, column_start=1, column_end=1, sheet="Ignored")
        assert range_to_area(range_, XLSX) == "B3"
        assert range_to_area(Range(row_start=0, row_end=9, column_start=0, column_end=2), XLSX) == "A1:C10"

    def test_quote_sheet_name(self):
        assert quote_sheet_name("Sheet1") == "Sheet1"
        assert quote_sheet_name("A1") == "'A1'"
        assert quote_sheet_name("Bob's") == "'Bob''s'"

    def test_parse_of_serialized_range(self):
        range_ = Range(row_start=4, row_end=7, column_start=2, column_end=5, sheet="Q1 Report")
        assert parse_range(range_to_string(range_, XLSX), XLSX) == range_
