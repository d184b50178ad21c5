"""
单元格规范化与 search_text 构造
"""

import pytest

from src.rows.values import (
    MAX_CELL_CHARS,
    build_search_text,
    canonical_decimal,
    coerce_column_type,
    is_numeric_shape,
    normalize_cell,
    normalize_number,
)


class TestNormalizeNumber:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("007.50", "7.5"),
            ("-0", "0"),
            ("-0.000", "0"),
            (".5", "0.5"),
            ("  42  ", "42"),
            ("+3", "3"),
            ("-12.340", "-12.34"),
            ("", ""),
            ("   ", ""),
        ],
    )
    def test_canonical_forms(self, raw, expected):
        assert normalize_number(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", "1e5", "1.2.3", ".", "-", "1,000", "--1"])
    def test_invalid(self, raw):
        assert normalize_number(raw) is None

    def test_too_many_decimals(self):
        assert normalize_number("1.123456789") is None
        assert normalize_number("1.12345678") == "1.12345678"

    def test_unbounded_decimals_for_filters(self):
        assert canonical_decimal("1.123456789") == "1.123456789"

    def test_canonical_numbers_match_sql_shape(self):
        for raw in ["7.5", "-12.34", "0", "100"]:
            assert is_numeric_shape(normalize_number(raw))
        assert not is_numeric_shape("")
        assert not is_numeric_shape(".5")


class TestNormalizeCell:
    def test_single_line_collapses_newlines(self):
        assert normalize_cell("single_line_text", "a\nb\r\nc\rd") == "a b c d"

    def test_long_text_keeps_newlines(self):
        assert normalize_cell("long_text", "a\nb") == "a\nb"

    def test_clamped(self):
        assert len(normalize_cell("long_text", "x" * (MAX_CELL_CHARS + 10))) == MAX_CELL_CHARS

    def test_unknown_type_is_single_line(self):
        assert coerce_column_type("checkbox") == "single_line_text"
        assert normalize_cell(None, "a\nb") == "a b"

    def test_number(self):
        assert normalize_cell("number", "010") == "10"
        assert normalize_cell("number", "ten") is None


class TestSearchText:
    def test_joins_trimmed_non_empty_values(self):
        assert build_search_text({"a": " Alpha ", "b": "", "c": "Beta", "d": None}) == "Alpha Beta"

    def test_empty(self):
        assert build_search_text({}) == ""
        assert build_search_text(None) == ""
