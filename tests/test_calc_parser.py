"""Tests for gridcalc.calc string scanning helpers."""

from __future__ import annotations

import pytest

from gridcalc.calc._parser import (
    expand_range,
    find_binary_operator,
    find_comparison,
    find_matching_paren,
    has_top_level_colon,
    is_parenthesized,
    match_function_call,
    parse_range,
    range_shape,
    split_args,
)


class TestSplitArgs:
    def test_top_level_commas_only(self) -> None:
        assert split_args("A1, MAX(1,2)") == ["A1", " MAX(1,2)"]

    def test_empty(self) -> None:
        assert split_args("") == [""]

    def test_trailing_comma(self) -> None:
        assert split_args("1,") == ["1", ""]

    def test_quotes_are_not_special(self) -> None:
        assert split_args('"a,b"') == ['"a', 'b"']


class TestFunctionCalls:
    def test_match(self) -> None:
        assert match_function_call("sum(A1:A5)") == ("SUM", "A1:A5")

    def test_nested(self) -> None:
        assert match_function_call("ROUND(SUM(A1:A2),2)") == ("ROUND", "SUM(A1:A2),2")

    def test_space_before_paren(self) -> None:
        assert match_function_call(" LEN (A1) ") == ("LEN", "A1")

    @pytest.mark.parametrize("expr", ["SUM(A1:A5)*2", "SUM(1)+SUM(2)", "SUM(1", "A1", "(1+2)", "1+2"])
    def test_no_match(self, expr: str) -> None:
        assert match_function_call(expr) is None

    def test_matching_paren(self) -> None:
        assert find_matching_paren("(a(b)c)", 0) == 6
        assert find_matching_paren("(a(b)c", 0) == -1

    def test_is_parenthesized(self) -> None:
        assert is_parenthesized("((1))")
        assert not is_parenthesized("(1)+(2)")
        assert not is_parenthesized("1")


class TestBinaryOperators:
    def test_rightmost_wins(self) -> None:
        assert find_binary_operator("10-3-2", "+-") == 4

    def test_binary_minus_between_refs(self) -> None:
        assert find_binary_operator("A1-B1", "+-") == 2

    @pytest.mark.parametrize("expr", ["-5", "2*-3", "1e-3", "2.5E+2", "(1+2)", "+", "5-"])
    def test_no_binary_additive(self, expr: str) -> None:
        assert find_binary_operator(expr, "+-") == -1

    def test_exponent_sign_then_binary(self) -> None:
        assert find_binary_operator("1e-3-1", "+-") == 4

    def test_multiplicative(self) -> None:
        assert find_binary_operator("8/4*2", "*/") == 3
        assert find_binary_operator("SUM(2*3)", "*/") == -1


class TestComparisons:
    def test_split(self) -> None:
        assert find_comparison("A1>=5") == ("A1", ">=", "5")
        assert find_comparison("A1 <> B1") == ("A1", "<>", "B1")
        assert find_comparison("A1<-5") == ("A1", "<", "-5")

    def test_ignores_nested(self) -> None:
        assert find_comparison("SUM(A1:A2)>3") == ("SUM(A1:A2)", ">", "3")
        assert find_comparison("AND(A1>1)") is None

    def test_no_operator(self) -> None:
        assert find_comparison("A1") is None


class TestRanges:
    def test_parse_normalizes_corners(self) -> None:
        assert parse_range("A1:B3") == ((0, 0), (2, 1))
        assert parse_range("B3:A1") == ((0, 0), (2, 1))
        assert parse_range("B1:A3") == ((0, 0), (2, 1))

    @pytest.mark.parametrize("bad", ["A1", "A1:", ":B2", "A1:B2:C3", "A1:ZZ", "1:2"])
    def test_parse_invalid(self, bad: str) -> None:
        assert parse_range(bad) is None

    def test_expand_row_major(self) -> None:
        assert expand_range("A1:B2") == [(0, 0), (0, 1), (1, 0), (1, 1)]

    def test_expand_invalid_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid range"):
            expand_range("bad")

    def test_shape(self) -> None:
        assert range_shape("A1:C5") == (5, 3)

    def test_top_level_colon(self) -> None:
        assert has_top_level_colon("A1:A2")
        assert not has_top_level_colon("SUM(A1:A2)")
