"""gridcalc.calc - Formula evaluation engine for gridcalc grids."""

from gridcalc.calc._evaluator import FormulaEvaluator
from gridcalc.calc._format import ExcelError, is_error
from gridcalc.calc._functions import FUNCTION_CATEGORIES, FunctionRegistry, is_supported
from gridcalc.calc._parser import expand_range, split_args
from gridcalc.calc._protocol import EvaluatorSettings, GridAccessor, GridReader, RangeStats
from gridcalc.calc._shell import ShellBridge

__all__ = [
    "EvaluatorSettings",
    "ExcelError",
    "FUNCTION_CATEGORIES",
    "FormulaEvaluator",
    "FunctionRegistry",
    "GridAccessor",
    "GridReader",
    "RangeStats",
    "ShellBridge",
    "expand_range",
    "is_error",
    "is_supported",
    "split_args",
]
