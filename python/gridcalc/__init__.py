"""gridcalc - a text grid of cells with an Excel-style formula engine.

Usage::

    from gridcalc import Grid, FormulaEvaluator

    grid = Grid()
    grid["A1"] = "10"
    grid["A2"] = "20"
    grid["A3"] = "=SUM(A1:A2)*2"

    ev = FormulaEvaluator(grid)
    ev.evaluate_cell(2, 0)  # "60"

Cells hold raw text; text starting with ``=`` is a formula.  Rows and columns
are zero-based in the API and one-based / lettered in A1 references.
"""

from gridcalc._grid import DEFAULT_COLS, DEFAULT_ROWS, Grid
from gridcalc._utils import a1_to_rowcol, column_index, column_letter, parse_cell_ref, rowcol_to_a1
from gridcalc.calc import EvaluatorSettings, ExcelError, FormulaEvaluator

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "DEFAULT_COLS",
    "DEFAULT_ROWS",
    "EvaluatorSettings",
    "ExcelError",
    "FormulaEvaluator",
    "Grid",
    "a1_to_rowcol",
    "column_index",
    "column_letter",
    "parse_cell_ref",
    "rowcol_to_a1",
]
