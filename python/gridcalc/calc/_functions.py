"""Builtin function implementations and the function registry.

Builtins take the raw argument text rather than resolved values: each one
decides how to read its arguments (as numbers, text, ranges or conditions)
through the evaluator passed in.  The common signature is::

    fn(ev, args, row, col) -> str

where *args* are the top-level comma-split argument strings and (row, col) is
the cell the formula is evaluated for.  Two attribute markers change that:

``_raw_args``
    the function receives the unsplit argument text instead of a list.
``_mutates_grid``
    the function also receives the writable grid as a fifth argument.  No
    other builtin ever sees the grid's mutator.

Malformed arguments raise ``ValueError``; the evaluator turns that into
``#ERROR``.  Domain errors are returned directly as sentinels.
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import TYPE_CHECKING, Any, Callable

from gridcalc.calc._format import (
    ExcelError,
    compare_numbers,
    format_fixed,
    format_number,
    parse_number,
)
from gridcalc.calc._parser import COMPARISON_OPERATORS, has_top_level_colon, parse_range, range_shape

if TYPE_CHECKING:
    from gridcalc.calc._evaluator import FormulaEvaluator
    from gridcalc.calc._protocol import GridAccessor


# ---------------------------------------------------------------------------
# Catalogue: every builtin name, by category.
# ---------------------------------------------------------------------------

FUNCTION_CATEGORIES: dict[str, str] = {
    # Aggregate (10)
    "SUM": "aggregate",
    "AVG": "aggregate",
    "AVERAGE": "aggregate",
    "MIN": "aggregate",
    "MAX": "aggregate",
    "COUNT": "aggregate",
    "COUNTA": "aggregate",
    "PRODUCT": "aggregate",
    "MEDIAN": "aggregate",
    "CORREL": "aggregate",
    # Conditional aggregate (3)
    "COUNTIF": "conditional",
    "SUMIF": "conditional",
    "AVERAGEIF": "conditional",
    # Math (6)
    "ROUND": "math",
    "ABS": "math",
    "MOD": "math",
    "SQRT": "math",
    "POWER": "math",
    "INT": "math",
    # Logic (5)
    "IF": "logic",
    "IFERROR": "logic",
    "AND": "logic",
    "OR": "logic",
    "NOT": "logic",
    # Lookup (1)
    "VLOOKUP": "lookup",
    # Text (10)
    "CONCATENATE": "text",
    "CONCAT": "text",
    "LEFT": "text",
    "RIGHT": "text",
    "MID": "text",
    "LEN": "text",
    "TRIM": "text",
    "UPPER": "text",
    "LOWER": "text",
    "PROPER": "text",
    # System (1)
    "SHELL": "system",
}


def is_supported(func_name: str) -> bool:
    """Check if a function name is a builtin (case-insensitive)."""
    return func_name.upper() in FUNCTION_CATEGORIES


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def _arity(name: str, args: list[str], low: int, high: int | None = None) -> None:
    high = low if high is None else high
    if not low <= len(args) <= high:
        if low == high:
            raise ValueError(f"{name} requires exactly {low} argument(s)")
        raise ValueError(f"{name} requires {low} to {high} arguments")


def _number(ev: FormulaEvaluator, arg: str, row: int, col: int) -> float:
    value = ev.evaluate_number(arg, row, col)
    if value is None:
        raise ValueError(f"non-numeric argument {arg.strip()!r}")
    return value


def _integer(ev: FormulaEvaluator, arg: str, row: int, col: int) -> int:
    return int(_number(ev, arg, row, col))


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def _builtin_sum(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    return format_number(sum(ev.collect_numbers(args, row, col), 0.0))


def _builtin_avg(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    nums = ev.collect_numbers(args, row, col)
    if not nums:
        return ExcelError.ERROR
    return format_number(sum(nums) / len(nums))


def _builtin_min(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    nums = ev.collect_numbers(args, row, col)
    if not nums:
        return ExcelError.ERROR
    return format_number(min(nums))


def _builtin_max(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    nums = ev.collect_numbers(args, row, col)
    if not nums:
        return ExcelError.ERROR
    return format_number(max(nums))


def _builtin_count(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    """COUNT - counts numeric cells/arguments only."""
    return str(len(ev.collect_numbers(args, row, col)))


def _builtin_counta(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    """COUNTA - counts non-empty cells/arguments, text included."""
    return str(sum(1 for text in ev.collect_texts(args, row, col) if text))


def _builtin_product(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    nums = ev.collect_numbers(args, row, col)
    if not nums:
        return ExcelError.ERROR
    return format_number(math.prod(nums))


def _builtin_median(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    nums = sorted(ev.collect_numbers(args, row, col))
    if not nums:
        return ExcelError.ERROR
    mid = len(nums) // 2
    if len(nums) % 2:
        return format_number(nums[mid])
    return format_number((nums[mid - 1] + nums[mid]) / 2)


def _builtin_correl(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    """CORREL(range1, range2). Pearson correlation over pairs of numeric cells."""
    _arity("CORREL", args, 2)
    if not all(has_top_level_colon(a) for a in args):
        raise ValueError("CORREL requires two ranges")
    xs_text = ev.range_values(args[0])
    ys_text = ev.range_values(args[1])
    if len(xs_text) != len(ys_text):
        raise ValueError("CORREL ranges differ in size")

    pairs: list[tuple[float, float]] = []
    for xt, yt in zip(xs_text, ys_text):
        x, y = parse_number(xt), parse_number(yt)
        if x is not None and y is not None:
            pairs.append((x, y))
    if not pairs:
        return ExcelError.ERROR

    n = len(pairs)
    mean_x = sum(x for x, _ in pairs) / n
    mean_y = sum(y for _, y in pairs) / n
    sxy = sum((x - mean_x) * (y - mean_y) for x, y in pairs)
    sxx = sum((x - mean_x) ** 2 for x, _ in pairs)
    syy = sum((y - mean_y) ** 2 for _, y in pairs)
    if sxx == 0 or syy == 0:
        return ExcelError.DIV0
    return format_fixed(sxy / math.sqrt(sxx * syy), 6)


# ---------------------------------------------------------------------------
# Criteria matching (shared by COUNTIF, SUMIF, AVERAGEIF)
# ---------------------------------------------------------------------------


def _parse_criteria(criteria: str, epsilon: float) -> Callable[[str], bool]:
    """Turn criteria text into a predicate over evaluated cell text.

    Supports:
    - Operator prefix: ``">100"``, ``"<=50"``, ``"<>0"`` (numeric comparison;
      cells that are not numbers never match)
    - Wildcards: ``"app*"``, ``"?pple"`` - the ``*``/``?`` characters are
      removed and the remainder must occur somewhere in the cell text
    - Anything else: exact text match, or numeric equality when both sides
      are numbers
    """
    for op in COMPARISON_OPERATORS:
        if criteria.startswith(op):
            operand = criteria[len(op):].strip()
            threshold = parse_number(operand)
            if threshold is None:
                if op == "=":
                    return lambda v: v == operand
                if op == "<>":
                    return lambda v: v != operand
                return lambda v: False

            def _compare(v: str, op: str = op, t: float = threshold) -> bool:
                n = parse_number(v)
                return n is not None and compare_numbers(n, op, t, epsilon)

            return _compare

    if "*" in criteria or "?" in criteria:
        needle = criteria.replace("*", "").replace("?", "")
        return lambda v: needle in v

    target = parse_number(criteria)

    def _equals(v: str) -> bool:
        if v == criteria:
            return True
        if target is None:
            return False
        n = parse_number(v)
        return n is not None and abs(n - target) < epsilon

    return _equals


def _criteria_pairs(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> list[str]:
    """Values (from the value range) whose criteria cell matches."""
    crit_cells = ev.range_values(args[0])
    value_cells = ev.range_values(args[2]) if len(args) > 2 else crit_cells
    predicate = _parse_criteria(ev.evaluate_arg(args[1], row, col), ev.settings.epsilon)
    return [
        value_cells[i]
        for i, text in enumerate(crit_cells)
        if i < len(value_cells) and predicate(text)
    ]


def _builtin_countif(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    """COUNTIF(range, criteria)."""
    _arity("COUNTIF", args, 2)
    return str(len(_criteria_pairs(ev, args, row, col)))


def _builtin_sumif(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    """SUMIF(range, criteria, [sum_range])."""
    _arity("SUMIF", args, 2, 3)
    matched = _criteria_pairs(ev, args, row, col)
    nums = [n for n in map(parse_number, matched) if n is not None]
    return format_number(sum(nums, 0.0))


def _builtin_averageif(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    """AVERAGEIF(range, criteria, [average_range])."""
    _arity("AVERAGEIF", args, 2, 3)
    matched = _criteria_pairs(ev, args, row, col)
    nums = [n for n in map(parse_number, matched) if n is not None]
    if not nums:
        return ExcelError.DIV0
    return format_number(sum(nums) / len(nums))


# ---------------------------------------------------------------------------
# Math
# ---------------------------------------------------------------------------


def _builtin_round(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    """ROUND(number, [digits]). Halves round away from zero."""
    _arity("ROUND", args, 1, 2)
    value = _number(ev, args[0], row, col)
    digits = _integer(ev, args[1], row, col) if len(args) > 1 else 0
    with localcontext() as ctx:
        ctx.prec = 400
        rounded = Decimal(repr(value)).quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP)
    return format_number(float(rounded))


def _builtin_abs(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("ABS", args, 1)
    return format_number(abs(_number(ev, args[0], row, col)))


def _builtin_mod(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("MOD", args, 2)
    a = _number(ev, args[0], row, col)
    b = _number(ev, args[1], row, col)
    if b == 0:
        return ExcelError.DIV0
    # result has the sign of the divisor
    return format_number(a % b)


def _builtin_sqrt(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("SQRT", args, 1)
    value = _number(ev, args[0], row, col)
    if value < 0:
        return ExcelError.NUM
    return format_number(math.sqrt(value))


def _builtin_power(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("POWER", args, 2)
    base = _number(ev, args[0], row, col)
    exponent = _number(ev, args[1], row, col)
    try:
        result = math.pow(base, exponent)
    except (ValueError, OverflowError):
        # 0 ** negative, negative ** fractional, overflow
        return ExcelError.NUM
    if math.isnan(result) or math.isinf(result):
        return ExcelError.NUM
    return format_number(result)


def _builtin_int(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("INT", args, 1)
    return format_number(float(math.floor(_number(ev, args[0], row, col))))


# ---------------------------------------------------------------------------
# Logic
# ---------------------------------------------------------------------------


def _builtin_if(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("IF", args, 3)
    condition = ev.evaluate_condition(args[0], row, col)
    if condition is None:
        return ExcelError.ERROR
    return ev.evaluate_arg(args[1] if condition else args[2], row, col)


def _builtin_iferror(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("IFERROR", args, 2)
    value = ev.evaluate_formula("=" + args[0].strip(), row, col)
    if value.startswith("#"):
        return ev.evaluate_arg(args[1], row, col)
    return value


def _truth_text(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def _builtin_and(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    if not any(a.strip() for a in args):
        raise ValueError("AND requires at least 1 argument")
    for arg in args:
        truth = ev.truth_value(arg, row, col)
        if truth is None:
            return ExcelError.ERROR
        if not truth:
            return _truth_text(False)
    return _truth_text(True)


def _builtin_or(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    if not any(a.strip() for a in args):
        raise ValueError("OR requires at least 1 argument")
    for arg in args:
        truth = ev.truth_value(arg, row, col)
        if truth is None:
            return ExcelError.ERROR
        if truth:
            return _truth_text(True)
    return _truth_text(False)


def _builtin_not(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("NOT", args, 1)
    truth = ev.truth_value(args[0], row, col)
    if truth is None:
        return ExcelError.ERROR
    return _truth_text(not truth)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def _builtin_vlookup(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    """VLOOKUP(lookup_value, table_range, col_index, [range_lookup]).

    range_lookup: FALSE (or 0) = exact match, anything else (default) =
    approximate.  Approximate match expects the first column sorted ascending:
    it keeps the last key <= lookup_value and stops at the first larger key.
    The matched cell's text is returned as stored (or as evaluated).
    """
    _arity("VLOOKUP", args, 3, 4)
    table = args[1].strip()
    bounds = parse_range(table)
    if bounds is None:
        raise ValueError(f"VLOOKUP: invalid table range {table!r}")
    (r_min, c_min), (r_max, _) = bounds
    _, n_cols = range_shape(table)

    col_index = _integer(ev, args[2], row, col)
    if col_index < 1 or col_index > n_cols:
        raise ValueError(f"VLOOKUP: column index {col_index} outside 1..{n_cols}")

    exact = False
    if len(args) > 3:
        flag = ev.evaluate_arg(args[3], row, col).strip().upper()
        exact = flag == "FALSE" or parse_number(flag) == 0

    lookup = ev.evaluate_arg(args[0], row, col)
    lookup_num = parse_number(lookup)
    result_col = c_min + col_index - 1

    if exact:
        for r in range(r_min, r_max + 1):
            key = ev.reference_text(r, c_min)
            if not key:
                continue
            key_num = parse_number(key)
            if lookup_num is not None and key_num is not None:
                if abs(key_num - lookup_num) < ev.settings.epsilon:
                    return ev.reference_text(r, result_col)
            elif key == lookup:
                return ev.reference_text(r, result_col)
        return ExcelError.NA

    best: int | None = None
    for r in range(r_min, r_max + 1):
        key = ev.reference_text(r, c_min)
        if not key:
            continue
        if lookup_num is not None:
            key_num = parse_number(key)
            if key_num is None:
                continue
            if key_num > lookup_num:
                break
        elif key > lookup:
            break
        best = r
    if best is None:
        return ExcelError.NA
    return ev.reference_text(best, result_col)


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


def _builtin_concatenate(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    return "".join(ev.collect_texts(args, row, col))


def _builtin_left(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("LEFT", args, 1, 2)
    text = ev.evaluate_arg(args[0], row, col)
    n = _integer(ev, args[1], row, col) if len(args) > 1 else 1
    if n < 0:
        raise ValueError("LEFT: negative length")
    return text[:n]


def _builtin_right(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("RIGHT", args, 1, 2)
    text = ev.evaluate_arg(args[0], row, col)
    n = _integer(ev, args[1], row, col) if len(args) > 1 else 1
    if n < 0:
        raise ValueError("RIGHT: negative length")
    return text[-n:] if n > 0 else ""


def _builtin_mid(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("MID", args, 3)
    text = ev.evaluate_arg(args[0], row, col)
    start = _integer(ev, args[1], row, col)
    n = _integer(ev, args[2], row, col)
    if start < 1 or n < 0:
        raise ValueError("MID: start must be >= 1 and length >= 0")
    # 1-indexed
    return text[start - 1 : start - 1 + n]


def _builtin_len(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("LEN", args, 1)
    return str(len(ev.evaluate_arg(args[0], row, col)))


_SPACE_RUN_RE = re.compile(r" {2,}")


def _builtin_trim(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    """TRIM - strip leading/trailing spaces and collapse inner runs to one."""
    _arity("TRIM", args, 1)
    return _SPACE_RUN_RE.sub(" ", ev.evaluate_arg(args[0], row, col).strip(" "))


def _builtin_upper(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("UPPER", args, 1)
    return ev.evaluate_arg(args[0], row, col).upper()


def _builtin_lower(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("LOWER", args, 1)
    return ev.evaluate_arg(args[0], row, col).lower()


def _builtin_proper(ev: FormulaEvaluator, args: list[str], row: int, col: int) -> str:
    _arity("PROPER", args, 1)
    return ev.evaluate_arg(args[0], row, col).title()


# ---------------------------------------------------------------------------
# Grid-mutating builtins
# ---------------------------------------------------------------------------


def _builtin_shell(
    ev: FormulaEvaluator, raw_args: str, row: int, col: int, grid: GridAccessor,
) -> str:
    """SHELL(command). Runs *command*; output is written into the grid."""
    return ev.shell.execute(raw_args, grid, row, col)


_builtin_shell._raw_args = True  # type: ignore[attr-defined]
_builtin_shell._mutates_grid = True  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_BUILTINS: dict[str, Callable[..., Any]] = {
    "SUM": _builtin_sum,
    "AVG": _builtin_avg,
    "AVERAGE": _builtin_avg,
    "MIN": _builtin_min,
    "MAX": _builtin_max,
    "COUNT": _builtin_count,
    "COUNTA": _builtin_counta,
    "PRODUCT": _builtin_product,
    "MEDIAN": _builtin_median,
    "CORREL": _builtin_correl,
    "COUNTIF": _builtin_countif,
    "SUMIF": _builtin_sumif,
    "AVERAGEIF": _builtin_averageif,
    "ROUND": _builtin_round,
    "ABS": _builtin_abs,
    "MOD": _builtin_mod,
    "SQRT": _builtin_sqrt,
    "POWER": _builtin_power,
    "INT": _builtin_int,
    "IF": _builtin_if,
    "IFERROR": _builtin_iferror,
    "AND": _builtin_and,
    "OR": _builtin_or,
    "NOT": _builtin_not,
    "VLOOKUP": _builtin_vlookup,
    "CONCATENATE": _builtin_concatenate,
    "CONCAT": _builtin_concatenate,
    "LEFT": _builtin_left,
    "RIGHT": _builtin_right,
    "MID": _builtin_mid,
    "LEN": _builtin_len,
    "TRIM": _builtin_trim,
    "UPPER": _builtin_upper,
    "LOWER": _builtin_lower,
    "PROPER": _builtin_proper,
    "SHELL": _builtin_shell,
}


def mutates_grid(func: Callable[..., Any]) -> bool:
    """True when *func* is marked to receive the writable grid."""
    return getattr(func, "_mutates_grid", False)


class FunctionRegistry:
    """Name -> builtin table consulted by :class:`FormulaEvaluator`.

    Each evaluator owns a copy seeded from the builtins, so registering a
    function on one evaluator never affects another.  Registered functions
    follow the builtin calling convention ``fn(ev, args, row, col) -> str``
    and may set ``_raw_args`` or ``_mutates_grid`` like ``SHELL`` does.
    Names are case-insensitive.
    """

    def __init__(self) -> None:
        self._table: dict[str, Callable[..., Any]] = dict(_BUILTINS)

    def register(self, name: str, func: Callable[..., Any]) -> None:
        """Add or replace *name*; a builtin of the same name is shadowed."""
        if not callable(func):
            raise TypeError(f"{name}: function must be callable, got {type(func).__name__}")
        self._table[name.upper()] = func

    def get(self, name: str) -> Callable[..., Any] | None:
        return self._table.get(name.upper())

    def has(self, name: str) -> bool:
        return name.upper() in self._table

    @property
    def supported_functions(self) -> frozenset[str]:
        """Upper-case names of every callable function."""
        return frozenset(self._table)
