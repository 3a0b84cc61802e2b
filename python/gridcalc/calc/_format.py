"""Error sentinels and canonical number parsing/rendering.

Every evaluation result is a ``str``.  Numbers are rendered the way the grid
displays them: integral values without a fractional part, everything else in
plain positional notation (never exponent form).
"""

from __future__ import annotations

import math
import re
from decimal import Decimal

# ---------------------------------------------------------------------------
# ExcelError: sentinel strings returned in place of a value
# ---------------------------------------------------------------------------


class ExcelError(str):
    """A ``#``-prefixed sentinel string.

    Instances are plain strings as far as callers are concerned
    (``ExcelError.DIV0 == "#DIV/0!"``); the subclass only marks that a result
    came from a failed evaluation.  Use ``ExcelError.of(code)`` for the cached
    singletons and ``ExcelError.detail(msg)`` for ``#ERROR: <msg>``.
    """

    __slots__ = ()
    _cache: dict[str, ExcelError] = {}

    ERROR: ExcelError
    DIV0: ExcelError
    NUM: ExcelError
    NA: ExcelError
    CYCLE: ExcelError

    @classmethod
    def of(cls, code: str) -> ExcelError:
        canon = code.upper()
        if canon not in cls._cache:
            cls._cache[canon] = cls(canon)
        return cls._cache[canon]

    @classmethod
    def detail(cls, message: str) -> ExcelError:
        return cls(f"#ERROR: {message}")

    def __repr__(self) -> str:
        return f"ExcelError({str.__repr__(self)})"


# Singletons
ExcelError.ERROR = ExcelError.of("#ERROR")
ExcelError.DIV0 = ExcelError.of("#DIV/0!")
ExcelError.NUM = ExcelError.of("#NUM!")
ExcelError.NA = ExcelError.of("#N/A")
ExcelError.CYCLE = ExcelError.of("#CYCLE!")


def is_error(value: object) -> bool:
    """True for an ExcelError or any text starting with ``#``."""
    return isinstance(value, str) and value.startswith("#")


def as_error(text: str) -> ExcelError:
    """Wrap sentinel text read back from a cell as an ExcelError."""
    if isinstance(text, ExcelError):
        return text
    if text in ExcelError._cache:
        return ExcelError._cache[text]
    return ExcelError(text)


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")


def parse_number(text: str) -> float | None:
    """Parse decimal/scientific text into a float, or None.

    Only plain numeric notation is accepted: no thousands separators, no
    underscores, no ``inf``/``nan`` words, and nothing outside the float range.
    """
    text = text.strip()
    if not _NUMBER_RE.match(text):
        return None
    value = float(text)
    # 1e400 overflows to inf
    if math.isinf(value):
        return None
    return value


def format_number(value: float) -> str:
    """Render a float for display: ``60.0 -> "60"``, ``7.5 -> "7.5"``."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer():
        return str(int(value))
    # repr() is the shortest round-tripping form; Decimal drops the exponent.
    return format(Decimal(repr(value)), "f")


def format_fixed(value: float, places: int) -> str:
    return f"{value:.{places}f}"


def compare_numbers(left: float, op: str, right: float, epsilon: float) -> bool:
    """Apply a comparison operator; ``=`` and ``<>`` are epsilon-tolerant."""
    if op == ">=":
        return left >= right
    if op == "<=":
        return left <= right
    if op == "<>":
        return abs(left - right) > epsilon
    if op == ">":
        return left > right
    if op == "<":
        return left < right
    if op == "=":
        return abs(left - right) < epsilon
    raise ValueError(f"Unknown comparison operator: {op!r}")


def strip_quotes(text: str) -> str | None:
    """Inner text of a ``"..."`` or ``'...'`` literal, or None if unquoted."""
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
        return text[1:-1]
    return None
