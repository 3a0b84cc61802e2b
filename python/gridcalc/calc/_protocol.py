"""Grid protocols, evaluator settings and result dataclasses."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class GridReader(Protocol):
    """Read-only view of a grid of raw cell text."""

    row_count: int
    col_count: int

    def text_at(self, row: int, col: int) -> str:
        """Raw text at zero-based (row, col); ``""`` when the cell is empty."""
        ...


@runtime_checkable
class GridAccessor(GridReader, Protocol):
    """Grid the evaluator is given.  Only grid-mutating functions write to it."""

    def set_text(self, row: int, col: int, text: str) -> None:
        """Store *text*; empty text removes the cell."""
        ...


@dataclass(frozen=True)
class EvaluatorSettings:
    """Knobs for :class:`~gridcalc.calc.FormulaEvaluator`."""

    epsilon: float = sys.float_info.epsilon  # tolerance for = and <> and truthiness
    allow_shell: bool = True  # False makes SHELL return "#ERROR: SHELL is disabled"
    shell_timeout: float | None = None  # seconds; None waits for the command forever


@dataclass(frozen=True)
class RangeStats:
    """Summary of a selected block of cells."""

    row_count: int  # rows holding at least one non-empty cell
    cell_count: int  # non-empty cells
    numeric_count: int  # cells whose evaluated text is a number
    total: float  # sum of those numbers

    @property
    def average(self) -> float | None:
        if self.numeric_count == 0:
            return None
        return self.total / self.numeric_count
