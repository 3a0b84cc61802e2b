"""Cell address helpers: ``"A1"`` labels <-> zero-based (row, col) pairs."""

from __future__ import annotations

import re

_A1_RE = re.compile(r"^([A-Z]+)([0-9]+)$")


def column_letter(col: int) -> str:
    """Zero-based column index -> letters (0 -> "A", 25 -> "Z", 26 -> "AA")."""
    if col < 0:
        raise ValueError(f"Column index must be >= 0, got {col}")
    letters = ""
    n = col + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def column_index(letters: str) -> int:
    """Column letters -> zero-based index ("A" -> 0, "AA" -> 26)."""
    letters = letters.strip().upper()
    if not letters or not letters.isalpha() or not letters.isascii():
        raise ValueError(f"Invalid column letters: {letters!r}")
    n = 0
    for ch in letters:
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n - 1


def parse_cell_ref(text: str) -> tuple[int, int] | None:
    """Parse ``"B7"`` (any case, surrounding whitespace ignored) into ``(6, 1)``.

    Returns None unless the label is a letter run followed by a digit run,
    with a row number of at least 1.
    """
    m = _A1_RE.match(text.strip().upper())
    if not m:
        return None
    row = int(m.group(2))
    if row < 1:
        return None
    return row - 1, column_index(m.group(1))


def a1_to_rowcol(text: str) -> tuple[int, int]:
    """Like :func:`parse_cell_ref` but raises ``ValueError`` on bad input."""
    parsed = parse_cell_ref(text)
    if parsed is None:
        raise ValueError(f"Invalid A1 reference: {text!r}")
    return parsed


def rowcol_to_a1(row: int, col: int) -> str:
    """Zero-based (row, col) -> ``"A1"`` label."""
    if row < 0:
        raise ValueError(f"Row index must be >= 0, got {row}")
    return f"{column_letter(col)}{row + 1}"
