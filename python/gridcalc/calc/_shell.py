"""SHELL(): run an OS command and write its output back into the grid.

The bridge moves through fixed stages for each call::

    idle -> spawn -> collect-output -> classify -> write-back

It is the only part of the engine that writes to the grid.  Output that looks
like a table (at least half of the non-blank lines hold more than one
whitespace-separated token) fills a block of cells starting at the invoking
cell; anything else lands verbatim in the invoking cell.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from typing import TYPE_CHECKING, Callable

from gridcalc._utils import rowcol_to_a1
from gridcalc.calc._format import ExcelError, strip_quotes

if TYPE_CHECKING:
    from gridcalc.calc._protocol import GridAccessor

logger = logging.getLogger(__name__)

OK = "OK"


def command_text(raw_args: str) -> str:
    """Command from the raw ``SHELL(...)`` argument text.

    One layer of matching quotes is removed (the inner text is kept as-is);
    unquoted text is trimmed.
    """
    inner = strip_quotes(raw_args)
    if inner is not None:
        return inner
    return raw_args.strip()


def shell_argv(command: str, platform: str = sys.platform) -> list[str]:
    """Argument vector running *command* through the platform shell."""
    if platform.startswith("win"):
        return ["cmd", "/C", command]
    return ["sh", "-c", command]


def split_table(output: str) -> list[list[str]] | None:
    """Rows of tokens if *output* looks tabular, else None.

    Blank lines are dropped from the returned rows.
    """
    rows = [line.split() for line in output.splitlines()]
    rows = [parts for parts in rows if parts]
    if not rows:
        return None
    multi_col = sum(1 for parts in rows if len(parts) > 1)
    if multi_col * 2 >= len(rows):
        return rows
    return None


class ShellBridge:
    """Runs ``SHELL`` commands for a :class:`FormulaEvaluator`.

    *runner* defaults to :func:`subprocess.run` and is replaceable so callers
    can intercept process creation.
    """

    def __init__(
        self,
        timeout: float | None = None,
        runner: Callable[..., subprocess.CompletedProcess[bytes]] | None = None,
    ) -> None:
        self.timeout = timeout
        self._runner = runner or subprocess.run

    def execute(self, raw_args: str, grid: GridAccessor, row: int, col: int) -> str:
        """Run the command named by *raw_args* on behalf of cell (row, col)."""
        command = command_text(raw_args)
        if not command:
            return ExcelError.ERROR

        cell = rowcol_to_a1(row, col)
        logger.debug("SHELL %s: spawn %r", cell, command)
        try:
            proc = self._runner(
                shell_argv(command),
                capture_output=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.debug("SHELL %s: timed out after %ss", cell, self.timeout)
            return ExcelError.detail(f"timed out after {self.timeout}s")
        except OSError as e:
            logger.debug("SHELL %s: spawn failed: %s", cell, e)
            return ExcelError.detail(str(e))

        logger.debug("SHELL %s: collect-output (exit status %s)", cell, proc.returncode)
        if proc.returncode != 0:
            stderr = _decode(proc.stderr).strip()
            return ExcelError.detail(stderr or f"exit status {proc.returncode}")

        output = _decode(proc.stdout).strip()
        if not output:
            return OK

        logger.debug("SHELL %s: classify", cell)
        table = split_table(output)
        if table is None:
            logger.debug("SHELL %s: write-back text (%d chars)", cell, len(output))
            grid.set_text(row, col, output)
            return OK

        logger.debug("SHELL %s: write-back table (%d rows)", cell, len(table))
        self.write_table(grid, table, row, col)
        return OK

    @staticmethod
    def write_table(grid: GridAccessor, table: list[list[str]], start_row: int, start_col: int) -> None:
        """Write *table* from (start_row, start_col), growing the grid to fit.

        The first row always overwrites.  Later rows only fill cells that are
        currently empty, so re-running a command does not clobber data typed
        below it.
        """
        max_cols = 0
        current_row = start_row
        for parts in table:
            max_cols = max(max_cols, len(parts))
            for offset, part in enumerate(parts):
                current_col = start_col + offset
                if current_row == start_row or not grid.text_at(current_row, current_col):
                    grid.set_text(current_row, current_col, part)
            current_row += 1

        if current_row > grid.row_count:
            grid.row_count = current_row
        if start_col + max_cols > grid.col_count:
            grid.col_count = start_col + max_cols


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")
