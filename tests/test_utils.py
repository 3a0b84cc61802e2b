"""Tests for gridcalc cell address helpers."""

from __future__ import annotations

import pytest
from openpyxl.utils import column_index_from_string, get_column_letter

from gridcalc._utils import a1_to_rowcol, column_index, column_letter, parse_cell_ref, rowcol_to_a1


class TestColumnLetters:
    @pytest.mark.parametrize(
        ("col", "letters"),
        [(0, "A"), (1, "B"), (25, "Z"), (26, "AA"), (51, "AZ"), (52, "BA"), (701, "ZZ"), (702, "AAA")],
    )
    def test_known_values(self, col: int, letters: str) -> None:
        assert column_letter(col) == letters
        assert column_index(letters) == col

    def test_matches_openpyxl(self) -> None:
        for col in range(2000):
            assert column_letter(col) == get_column_letter(col + 1)
            assert column_index(get_column_letter(col + 1)) == column_index_from_string(
                get_column_letter(col + 1)
            ) - 1

    def test_lowercase_letters(self) -> None:
        assert column_index("ab") == 27

    def test_negative_column_rejected(self) -> None:
        with pytest.raises(ValueError):
            column_letter(-1)

    @pytest.mark.parametrize("bad", ["", "A1", "1", "Ä"])
    def test_invalid_letters_rejected(self, bad: str) -> None:
        with pytest.raises(ValueError):
            column_index(bad)


class TestParseCellRef:
    def test_basic(self) -> None:
        assert parse_cell_ref("A1") == (0, 0)
        assert parse_cell_ref("B7") == (6, 1)
        assert parse_cell_ref("AA10") == (9, 26)

    def test_case_and_whitespace(self) -> None:
        assert parse_cell_ref(" b7 ") == (6, 1)

    @pytest.mark.parametrize("bad", ["", "A", "7", "1A", "A1B", "A0", "A1+1", "A 1", "$A$1", "A-1"])
    def test_rejects_malformed(self, bad: str) -> None:
        assert parse_cell_ref(bad) is None

    @pytest.mark.parametrize("row", [0, 1, 8, 9, 98, 99, 998, 9998, 9999])
    @pytest.mark.parametrize("col", [0, 1, 25, 26, 51, 52, 701, 702, 1999])
    def test_round_trip(self, row: int, col: int) -> None:
        assert parse_cell_ref(column_letter(col) + str(row + 1)) == (row, col)
        assert a1_to_rowcol(rowcol_to_a1(row, col)) == (row, col)


class TestA1Conversions:
    def test_rowcol_to_a1(self) -> None:
        assert rowcol_to_a1(0, 0) == "A1"
        assert rowcol_to_a1(99, 25) == "Z100"

    def test_a1_to_rowcol_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid A1 reference"):
            a1_to_rowcol("1A")

    def test_negative_row_rejected(self) -> None:
        with pytest.raises(ValueError):
            rowcol_to_a1(-1, 0)
