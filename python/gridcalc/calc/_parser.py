"""String scanning helpers: argument splitting, call matching, ranges.

Formulas are never tokenized.  Every helper here works directly on the raw
expression text, tracking parenthesis depth only.  Quote characters are not
special, so a ``,`` or ``(`` inside a quoted literal counts like any other.
"""

from __future__ import annotations

import re

from gridcalc._utils import parse_cell_ref

# Function names: SUM(...), VLOOKUP(...)
_FUNC_RE = re.compile(r"^([A-Z][A-Z0-9_.]*)\s*\(", re.IGNORECASE)

# Comparison operators in the order they are tried.
COMPARISON_OPERATORS = (">=", "<=", "<>", ">", "<", "=")

# Characters after which a + or - is a sign rather than a binary operator.
_SIGN_CONTEXT = "(+-*/,<>="


# ---------------------------------------------------------------------------
# Parentheses and function calls
# ---------------------------------------------------------------------------


def find_matching_paren(expr: str, start: int) -> int:
    """Index of the ``')'`` matching the ``'('`` at *expr[start]*, or -1."""
    depth = 0
    for i in range(start, len(expr)):
        ch = expr[i]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
    return -1


def match_function_call(expr: str) -> tuple[str, str] | None:
    """If *expr* is exactly ``NAME(balanced_args)``, return ``(NAME, args)``.

    The name is upper-cased.  ``SUM(A1:A5)*2`` does not match because the
    closing parenthesis of the call is not the last character.
    """
    stripped = expr.strip()
    m = _FUNC_RE.match(stripped)
    if not m:
        return None
    open_idx = m.end() - 1
    close_idx = find_matching_paren(stripped, open_idx)
    if close_idx >= 0 and close_idx == len(stripped) - 1:
        return m.group(1).upper(), stripped[open_idx + 1 : close_idx]
    return None


def is_parenthesized(expr: str) -> bool:
    """True when *expr* is one ``( ... )`` group."""
    return expr.startswith("(") and find_matching_paren(expr, 0) == len(expr) - 1


# ---------------------------------------------------------------------------
# Argument splitting
# ---------------------------------------------------------------------------


def split_args(args: str) -> list[str]:
    """Split on commas at parenthesis depth 0.

    ``"A1, MAX(1,2)"`` -> ``["A1", " MAX(1,2)"]``.  Parts are not trimmed and
    an empty string yields ``[""]``.
    """
    parts: list[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(args):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(args[start:i])
            start = i + 1
    parts.append(args[start:])
    return parts


# ---------------------------------------------------------------------------
# Operator scanning
# ---------------------------------------------------------------------------


def _is_sign(expr: str, i: int) -> bool:
    """True when the ``+``/``-`` at *expr[i]* is unary or an exponent sign."""
    j = i - 1
    while j >= 0 and expr[j] == " ":
        j -= 1
    if j < 0 or expr[j] in _SIGN_CONTEXT:
        return True
    # 2.5e-1
    if expr[j] in ("e", "E") and j >= 1 and expr[j - 1].isdigit():
        k = j - 1
        while k >= 0 and (expr[k].isdigit() or expr[k] == "."):
            k -= 1
        return k < 0 or not expr[k].isalpha()
    return False


def find_binary_operator(expr: str, operators: str) -> int:
    """Index of the rightmost binary operator from *operators* at depth 0.

    Scanning right to left and splitting there makes chains such as
    ``10-3-2`` left-associative.  Returns -1 when there is none.
    """
    depth = 0
    for i in range(len(expr) - 1, 0, -1):
        ch = expr[i]
        if ch == ")":
            depth += 1
        elif ch == "(":
            depth -= 1
        elif depth == 0 and ch in operators:
            if ch in "+-" and _is_sign(expr, i):
                continue
            if expr[:i].strip() and expr[i + 1 :].strip():
                return i
    return -1


def _find_at_depth_zero(expr: str, needle: str) -> int:
    depth = 0
    for i, ch in enumerate(expr):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif depth == 0 and expr.startswith(needle, i):
            return i
    return -1


def find_comparison(cond: str) -> tuple[str, str, str] | None:
    """Split ``"A1>=5"`` into ``("A1", ">=", "5")``.

    Operators are tried in :data:`COMPARISON_OPERATORS` order and the first
    occurrence (outside parentheses) of the first operator present wins.
    """
    for op in COMPARISON_OPERATORS:
        pos = _find_at_depth_zero(cond, op)
        if pos >= 0:
            return cond[:pos].strip(), op, cond[pos + len(op) :].strip()
    return None


def has_top_level_colon(expr: str) -> bool:
    """``True`` when *expr* contains ``:`` at paren depth 0 (range ref)."""
    return _find_at_depth_zero(expr, ":") >= 0


# ---------------------------------------------------------------------------
# Ranges
# ---------------------------------------------------------------------------


def parse_range(range_ref: str) -> tuple[tuple[int, int], tuple[int, int]] | None:
    """``"B3:A1"`` -> ``((0, 0), (2, 1))``: normalized (top-left, bottom-right).

    Rows and columns are min/maxed independently so either pair of opposite
    corners denotes the same rectangle.  Returns None if either corner fails
    to parse.
    """
    parts = range_ref.split(":")
    if len(parts) != 2:
        return None
    start = parse_cell_ref(parts[0])
    end = parse_cell_ref(parts[1])
    if start is None or end is None:
        return None
    (r1, c1), (r2, c2) = start, end
    return (min(r1, r2), min(c1, c2)), (max(r1, r2), max(c1, c2))


def expand_range(range_ref: str) -> list[tuple[int, int]]:
    """Expand ``"A1:B2"`` into row-major ``[(0, 0), (0, 1), (1, 0), (1, 1)]``.

    Raises ValueError for a malformed range.
    """
    bounds = parse_range(range_ref)
    if bounds is None:
        raise ValueError(f"Invalid range: {range_ref!r}")
    (r_min, c_min), (r_max, c_max) = bounds
    return [
        (r, c)
        for r in range(r_min, r_max + 1)
        for c in range(c_min, c_max + 1)
    ]


def range_shape(range_ref: str) -> tuple[int, int]:
    """Return ``(n_rows, n_cols)`` for a range like ``"A1:C5"``."""
    bounds = parse_range(range_ref)
    if bounds is None:
        raise ValueError(f"Invalid range: {range_ref!r}")
    (r_min, c_min), (r_max, c_max) = bounds
    return r_max - r_min + 1, c_max - c_min + 1
