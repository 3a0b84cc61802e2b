"""Grid: in-memory sparse cell store with ``grid['A1']`` access."""

from __future__ import annotations

from collections.abc import Iterator

from gridcalc._utils import a1_to_rowcol

DEFAULT_ROWS = 100
DEFAULT_COLS = 26


class Grid:
    """Sparse grid of raw cell text.

    Absent cells read as ``""``; writing ``""`` removes the entry.  The
    ``row_count``/``col_count`` extent is what the editor displays and may be
    grown by callers (the ``SHELL`` function does so when it writes tables).
    """

    __slots__ = ("_cells", "row_count", "col_count")

    def __init__(self, row_count: int = DEFAULT_ROWS, col_count: int = DEFAULT_COLS) -> None:
        self._cells: dict[tuple[int, int], str] = {}
        self.row_count = row_count
        self.col_count = col_count

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    def text_at(self, row: int, col: int) -> str:
        return self._cells.get((row, col), "")

    def set_text(self, row: int, col: int, text: str) -> None:
        if text:
            self._cells[(row, col)] = text
        else:
            self._cells.pop((row, col), None)

    def __getitem__(self, key: str) -> str:
        """``grid['A1']`` -> raw text."""
        row, col = a1_to_rowcol(key)
        return self.text_at(row, col)

    def __setitem__(self, key: str, value: object) -> None:
        """``grid['A1'] = 42`` stores ``str(value)``; None clears the cell."""
        row, col = a1_to_rowcol(key)
        self.set_text(row, col, "" if value is None else str(value))

    def __len__(self) -> int:
        return len(self._cells)

    def __iter__(self) -> Iterator[tuple[int, int]]:
        return iter(sorted(self._cells))

    def clear(self) -> None:
        self._cells.clear()

    def data_bounds(self) -> tuple[int, int]:
        """Largest (row, col) index holding data, ``(0, 0)`` for an empty grid."""
        if not self._cells:
            return 0, 0
        return (
            max(r for r, _ in self._cells),
            max(c for _, c in self._cells),
        )

    # ------------------------------------------------------------------
    # Bulk load
    # ------------------------------------------------------------------

    def load_text(self, text: str) -> None:
        """Replace the contents with whitespace-separated text.

        Each non-blank line becomes one row; tokens split on runs of
        whitespace fill consecutive columns.  Blank lines are skipped without
        leaving an empty row.  This is the format of piped command output
        such as ``ls -l`` or ``ps``.
        """
        self._cells.clear()
        row = 0
        for line in text.splitlines():
            parts = line.split()
            if not parts:
                continue
            for col, part in enumerate(parts):
                self.set_text(row, col, part)
            row += 1

        max_row, max_col = self.data_bounds()
        self.row_count = max(max_row + 1, DEFAULT_ROWS)
        self.col_count = max(max_col + 1, DEFAULT_COLS)

    def __repr__(self) -> str:
        return f"<Grid {self.row_count}x{self.col_count} cells={len(self._cells)}>"
