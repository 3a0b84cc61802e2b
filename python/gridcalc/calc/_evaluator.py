"""FormulaEvaluator: recursive string-driven evaluator for grid formulas.

There is no tokenizer and no AST.  A formula body is classified by shape
(function call, quoted literal, bare reference, arithmetic) and evaluated by
scanning its text directly, recursing into sub-expressions.  Results are
always display strings; failures come back as :class:`ExcelError` sentinels
and are never raised to the caller.

Nothing is cached: every reference is re-evaluated when it is read, so an
evaluation always reflects the grid as it is at that moment.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from gridcalc._utils import parse_cell_ref, rowcol_to_a1
from gridcalc.calc._format import (
    ExcelError,
    as_error,
    compare_numbers,
    format_number,
    parse_number,
    strip_quotes,
)
from gridcalc.calc._functions import FunctionRegistry, mutates_grid
from gridcalc.calc._parser import (
    expand_range,
    find_binary_operator,
    find_comparison,
    has_top_level_colon,
    is_parenthesized,
    match_function_call,
    split_args,
)
from gridcalc.calc._protocol import EvaluatorSettings, RangeStats
from gridcalc.calc._shell import ShellBridge

if TYPE_CHECKING:
    from gridcalc.calc._protocol import GridAccessor

logger = logging.getLogger(__name__)

# Every NAME( occurrence in a formula, nested calls included.
_CALL_NAME_RE = re.compile(r"([A-Za-z][A-Za-z0-9_.]*)\s*\(")


def _apply(left: float, op: str, right: float) -> float | ExcelError:
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if right == 0:
        return ExcelError.DIV0
    return left / right


class FormulaEvaluator:
    """Evaluates ``=``-prefixed formulas against a grid of cell text.

    Usage::

        grid = Grid()
        grid["A1"] = "10"
        grid["A2"] = "=A1*2"
        ev = FormulaEvaluator(grid)
        ev.evaluate_cell(1, 0)  # "20"
    """

    def __init__(
        self,
        grid: GridAccessor,
        settings: EvaluatorSettings | None = None,
        shell: ShellBridge | None = None,
    ) -> None:
        self._grid = grid
        self.settings = settings or EvaluatorSettings()
        self.shell = shell or ShellBridge(timeout=self.settings.shell_timeout)
        self._functions = FunctionRegistry()
        self._in_flight: set[tuple[int, int]] = set()

    @property
    def functions(self) -> FunctionRegistry:
        """The function table; ``functions.register(name, fn)`` adds one."""
        return self._functions

    @staticmethod
    def parse_cell_ref(text: str) -> tuple[int, int] | None:
        return parse_cell_ref(text)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def evaluate_cell(self, row: int, col: int) -> str:
        """Display text of the cell at zero-based (row, col).

        Non-formula text is returned unchanged.  A cell that is reached again
        while its own formula is still being evaluated yields ``#CYCLE!``.
        """
        text = self._grid.text_at(row, col)
        if not text.startswith("="):
            return text

        key = (row, col)
        if key in self._in_flight:
            logger.debug("Circular reference through %s", rowcol_to_a1(row, col))
            return ExcelError.CYCLE
        self._in_flight.add(key)
        try:
            return self.evaluate_formula(text, row, col)
        except RecursionError:
            logger.debug("Reference chain too deep at %s", rowcol_to_a1(row, col))
            return ExcelError.ERROR
        finally:
            self._in_flight.discard(key)

    def evaluate_formula(self, formula: str, row: int, col: int) -> str:
        """Evaluate *formula* on behalf of the cell at (row, col).

        Dispatch order (first match wins):

        1. Function call ``NAME(balanced_args)``
        2. Quoted literal, returned without its quotes
        3. Bare cell reference, returning the referenced cell's text
        4. Arithmetic expression
        """
        body = formula.strip()
        if body.startswith("="):
            body = body[1:].strip()
        if not body:
            return ExcelError.ERROR

        call = match_function_call(body)
        if call is not None:
            return self._call_function(call[0], call[1], row, col)

        literal = strip_quotes(body)
        if literal is not None:
            return literal

        ref = parse_cell_ref(body)
        if ref is not None:
            return self.value_text(self.reference_text(*ref))

        result = self._eval_arithmetic(body, row, col)
        if isinstance(result, str):
            return result
        return format_number(result)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _eval_arithmetic(self, expr: str, row: int, col: int) -> float | ExcelError:
        """Evaluate ``+ - * /`` arithmetic.

        Additive operators are split first, then multiplicative ones, each at
        the rightmost top-level position, so ``*``/``/`` bind tighter and
        chains associate to the left.
        """
        expr = expr.strip()
        if not expr:
            return ExcelError.ERROR

        for operators in ("+-", "*/"):
            idx = find_binary_operator(expr, operators)
            if idx < 0:
                continue
            left = self._eval_arithmetic(expr[:idx], row, col)
            if isinstance(left, str):
                return left
            right = self._eval_arithmetic(expr[idx + 1 :], row, col)
            if isinstance(right, str):
                return right
            return _apply(left, expr[idx], right)

        return self._eval_operand(expr, row, col)

    def _eval_operand(self, expr: str, row: int, col: int) -> float | ExcelError:
        num = parse_number(expr)
        if num is not None:
            return num

        if is_parenthesized(expr):
            return self._eval_arithmetic(expr[1:-1], row, col)

        call = match_function_call(expr)
        if call is not None:
            result = self._call_function(call[0], call[1], row, col)
            if result.startswith("#"):
                return as_error(result)
            num = parse_number(result)
            return ExcelError.ERROR if num is None else num

        if expr[0] in "+-":
            inner = self._eval_arithmetic(expr[1:], row, col)
            if isinstance(inner, str):
                return inner
            return -inner if expr[0] == "-" else inner

        ref = parse_cell_ref(expr)
        if ref is not None:
            text = self.reference_text(*ref)
            if text.startswith("#"):
                return as_error(text)
            num = parse_number(text)
            return ExcelError.ERROR if num is None else num

        return ExcelError.ERROR

    # ------------------------------------------------------------------
    # Cell and argument resolution (used by the builtins)
    # ------------------------------------------------------------------

    def reference_text(self, row: int, col: int) -> str:
        """Text of (row, col) as seen through a reference.

        Formulas are evaluated, except those calling a grid-mutating function:
        those read as empty and are never run from here.
        """
        raw = self._grid.text_at(row, col)
        if raw.startswith("=") and self._calls_grid_mutator(raw):
            return ""
        return self.evaluate_cell(row, col)

    def _calls_grid_mutator(self, formula: str) -> bool:
        for m in _CALL_NAME_RE.finditer(formula):
            func = self._functions.get(m.group(1))
            if func is not None and mutates_grid(func):
                return True
        return False

    @staticmethod
    def value_text(text: str) -> str:
        """Canonical form of a referenced value: numbers re-rendered."""
        num = parse_number(text)
        if num is None:
            return text
        return format_number(num)

    def evaluate_number(self, arg: str, row: int, col: int) -> float | None:
        """Numeric value of an argument (literal, reference, arithmetic or
        nested call), or None if it has none."""
        result = self._eval_arithmetic(arg, row, col)
        if isinstance(result, str):
            return None
        return result

    def evaluate_arg(self, arg: str, row: int, col: int) -> str:
        """Evaluate a non-numeric argument position.

        Quoted text is unwrapped; anything containing ``(`` is evaluated as a
        nested formula; a reference yields the cell's text exactly as
        evaluated; a number passes through unchanged; arithmetic is evaluated.  Text that is none of
        these is returned as-is.
        """
        text = arg.strip()
        literal = strip_quotes(text)
        if literal is not None:
            return literal
        if "(" in text:
            return self.evaluate_formula("=" + text, row, col)
        ref = parse_cell_ref(text)
        if ref is not None:
            return self.reference_text(*ref)
        if parse_number(text) is not None:
            return text

        result = self._eval_arithmetic(text, row, col)
        if isinstance(result, float):
            return format_number(result)
        if result is ExcelError.ERROR:
            return text
        return result

    def range_values(self, arg: str) -> list[str]:
        """Cell texts of a range (row-major) or of a single reference."""
        text = arg.strip()
        if has_top_level_colon(text):
            return [self.reference_text(r, c) for r, c in expand_range(text)]
        ref = parse_cell_ref(text)
        if ref is None:
            raise ValueError(f"Expected a range, got {text!r}")
        return [self.reference_text(*ref)]

    @staticmethod
    def _is_range_arg(text: str) -> bool:
        return has_top_level_colon(text) and "(" not in text and strip_quotes(text) is None

    def collect_numbers(self, args: list[str], row: int, col: int) -> list[float]:
        """Numeric values of aggregate arguments.

        Ranges contribute every cell that parses as a number; other arguments
        contribute their numeric value if they have one.  A malformed range
        raises ValueError.
        """
        nums: list[float] = []
        for arg in args:
            text = arg.strip()
            if not text:
                continue
            if self._is_range_arg(text):
                for r, c in expand_range(text):
                    num = parse_number(self.reference_text(r, c))
                    if num is not None:
                        nums.append(num)
                continue
            num = self.evaluate_number(text, row, col)
            if num is not None:
                nums.append(num)
        return nums

    def collect_texts(self, args: list[str], row: int, col: int) -> list[str]:
        """Text values of arguments, ranges expanded to their cell texts."""
        texts: list[str] = []
        for arg in args:
            text = arg.strip()
            if self._is_range_arg(text):
                texts.extend(self.reference_text(r, c) for r, c in expand_range(text))
            else:
                texts.append(self.evaluate_arg(text, row, col))
        return texts

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def evaluate_condition(self, cond: str, row: int, col: int) -> bool | None:
        """Truth of a condition such as ``A1>5``, or None if it can't be decided.

        Both sides of a comparison must evaluate to numbers.  Without an
        operator the value itself is tested (non-zero is true).
        """
        text = cond.strip()
        upper = text.upper()
        if upper == "TRUE":
            return True
        if upper == "FALSE":
            return False

        call = match_function_call(text)
        if call is not None:
            return self._truth_of_text(self._call_function(call[0], call[1], row, col))

        split = find_comparison(text)
        if split is not None:
            left_text, op, right_text = split
            left = self.evaluate_number(left_text, row, col)
            right = self.evaluate_number(right_text, row, col)
            if left is None or right is None:
                return None
            return compare_numbers(left, op, right, self.settings.epsilon)

        value = self.evaluate_number(text, row, col)
        if value is None:
            return None
        return abs(value) > self.settings.epsilon

    def _truth_of_text(self, text: str) -> bool | None:
        upper = text.strip().upper()
        if upper == "TRUE":
            return True
        if upper == "FALSE":
            return False
        num = parse_number(upper)
        if num is None:
            return None
        return abs(num) > self.settings.epsilon

    def truth_value(self, arg: str, row: int, col: int) -> bool | None:
        """Truth of an AND/OR/NOT argument.

        A decidable condition wins; otherwise the argument's text is true when
        it reads ``TRUE`` or ``1``.  None for an error value.
        """
        cond = self.evaluate_condition(arg, row, col)
        if cond is not None:
            return cond
        text = self.evaluate_arg(arg, row, col).strip()
        if text.startswith("#"):
            return None
        return text.upper() in ("TRUE", "1")

    # ------------------------------------------------------------------
    # Function dispatch
    # ------------------------------------------------------------------

    def _call_function(self, name: str, args_text: str, row: int, col: int) -> str:
        """Dispatch ``NAME(args_text)`` through the function table.

        Functions with ``_raw_args = True`` receive the unsplit argument text.
        Only functions with ``_mutates_grid = True`` receive the grid.
        """
        func = self._functions.get(name)
        if func is None:
            logger.debug("Unsupported function: %s", name)
            return ExcelError.ERROR

        writes = mutates_grid(func)
        if writes and not self.settings.allow_shell:
            logger.debug("%s refused: grid-mutating functions are disabled", name)
            return ExcelError.detail(f"{name} is disabled")

        args = args_text if getattr(func, "_raw_args", False) else split_args(args_text)
        try:
            if writes:
                return func(self, args, row, col, self._grid)
            return func(self, args, row, col)
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.debug("Error evaluating %s: %s", name, e)
            return ExcelError.ERROR

    # ------------------------------------------------------------------
    # Selection summary
    # ------------------------------------------------------------------

    def range_stats(self, first: tuple[int, int], last: tuple[int, int]) -> RangeStats | None:
        """Summarise the block between two (row, col) corners.

        Returns None for a single-cell selection or a block with no data.
        """
        if first == last:
            return None
        (r1, c1), (r2, c2) = first, last
        rows: set[int] = set()
        cells = 0
        numeric = 0
        total = 0.0
        for r in range(min(r1, r2), max(r1, r2) + 1):
            for c in range(min(c1, c2), max(c1, c2) + 1):
                if not self._grid.text_at(r, c):
                    continue
                cells += 1
                rows.add(r)
                num = parse_number(self.reference_text(r, c))
                if num is not None:
                    numeric += 1
                    total += num
        if cells == 0:
            return None
        return RangeStats(row_count=len(rows), cell_count=cells, numeric_count=numeric, total=total)
