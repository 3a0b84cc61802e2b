"""Tests for the SHELL function and its grid write-back."""

from __future__ import annotations

import logging
import subprocess
import sys

import pytest

from gridcalc import EvaluatorSettings, FormulaEvaluator, Grid
from gridcalc.calc._shell import OK, ShellBridge, command_text, shell_argv, split_table

posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="uses POSIX sh")


class FakeRunner:
    """Stands in for subprocess.run and records every call."""

    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> None:
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.calls: list[list[str]] = []

    def __call__(self, argv: list[str], **kwargs: object) -> subprocess.CompletedProcess[bytes]:
        self.calls.append(argv)
        return subprocess.CompletedProcess(argv, self.returncode, self.stdout, self.stderr)


def _raising_runner(exc: BaseException):
    def run(argv: list[str], **kwargs: object) -> subprocess.CompletedProcess[bytes]:
        raise exc

    return run


class TestHelpers:
    def test_command_text(self) -> None:
        assert command_text('"ls -l"') == "ls -l"
        assert command_text("  ls  ") == "ls"
        assert command_text("' a '") == " a "
        assert command_text('""') == ""

    def test_shell_argv(self) -> None:
        assert shell_argv("ls", platform="linux") == ["sh", "-c", "ls"]
        assert shell_argv("dir", platform="win32") == ["cmd", "/C", "dir"]

    def test_split_table(self) -> None:
        assert split_table("a 1\n\nb 2\n") == [["a", "1"], ["b", "2"]]
        assert split_table("a b\nc\n") == [["a", "b"], ["c"]]

    def test_split_table_rejects_mostly_single_tokens(self) -> None:
        assert split_table("one\ntwo\nthree x") is None
        assert split_table("hello") is None
        assert split_table("") is None


class TestShellBridge:
    def test_plain_output_goes_to_invoking_cell(self) -> None:
        grid = Grid()
        runner = FakeRunner(stdout=b"hello\nworld\n")
        assert ShellBridge(runner=runner).execute('"echo hi"', grid, 2, 1) == OK
        assert grid["B3"] == "hello\nworld"
        assert grid["B4"] == ""
        assert runner.calls == [shell_argv("echo hi")]

    def test_tabular_output_fills_block(self) -> None:
        grid = Grid()
        runner = FakeRunner(stdout=b"a 1\nb 2\n")
        assert ShellBridge(runner=runner).execute("cmd", grid, 0, 0) == OK
        assert (grid["A1"], grid["B1"], grid["A2"], grid["B2"]) == ("a", "1", "b", "2")

    def test_later_rows_only_fill_empty_cells(self) -> None:
        grid = Grid()
        grid["A1"] = "=SHELL(cmd)"
        grid["B1"] = "old"
        grid["A2"] = "keep"
        ShellBridge(runner=FakeRunner(stdout=b"a 1\nb 2\n")).execute("cmd", grid, 0, 0)
        assert grid["A1"] == "a"
        assert grid["B1"] == "1"
        assert grid["A2"] == "keep"
        assert grid["B2"] == "2"

    def test_grid_grows_to_fit(self) -> None:
        grid = Grid(row_count=1, col_count=1)
        ShellBridge(runner=FakeRunner(stdout=b"a b c\nd e f\n")).execute("cmd", grid, 0, 0)
        assert (grid.row_count, grid.col_count) == (2, 3)

    def test_grid_never_shrinks(self) -> None:
        grid = Grid()
        ShellBridge(runner=FakeRunner(stdout=b"a b\n")).execute("cmd", grid, 0, 0)
        assert (grid.row_count, grid.col_count) == (100, 26)

    def test_empty_output(self) -> None:
        grid = Grid()
        grid["A1"] = "=SHELL(true)"
        assert ShellBridge(runner=FakeRunner()).execute("true", grid, 0, 0) == OK
        assert grid["A1"] == "=SHELL(true)"

    def test_failure_reports_stderr(self) -> None:
        runner = FakeRunner(stderr=b"boom\n", returncode=1)
        assert ShellBridge(runner=runner).execute("cmd", Grid(), 0, 0) == "#ERROR: boom"

    def test_failure_without_stderr(self) -> None:
        runner = FakeRunner(returncode=3)
        assert ShellBridge(runner=runner).execute("cmd", Grid(), 0, 0) == "#ERROR: exit status 3"

    def test_spawn_failure(self) -> None:
        bridge = ShellBridge(runner=_raising_runner(FileNotFoundError(2, "No such file")))
        assert bridge.execute("cmd", Grid(), 0, 0).startswith("#ERROR: ")

    def test_timeout(self) -> None:
        bridge = ShellBridge(timeout=1, runner=_raising_runner(subprocess.TimeoutExpired("cmd", 1)))
        assert bridge.execute("cmd", Grid(), 0, 0) == "#ERROR: timed out after 1s"

    def test_empty_command(self) -> None:
        runner = FakeRunner()
        assert ShellBridge(runner=runner).execute('""', Grid(), 0, 0) == "#ERROR"
        assert ShellBridge(runner=runner).execute("   ", Grid(), 0, 0) == "#ERROR"
        assert runner.calls == []

    def test_stages_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="gridcalc.calc._shell"):
            ShellBridge(runner=FakeRunner(stdout=b"x\n")).execute("cmd", Grid(), 0, 0)
        assert "SHELL A1: spawn" in caplog.text
        assert "SHELL A1: write-back text" in caplog.text


class TestShellFormulas:
    def test_evaluating_shell_cell_runs_command(self) -> None:
        grid = Grid()
        grid["A1"] = '=SHELL("echo hi")'
        runner = FakeRunner(stdout=b"hi\n")
        ev = FormulaEvaluator(grid, shell=ShellBridge(runner=runner))
        assert ev.evaluate_cell(0, 0) == "OK"
        assert grid["A1"] == "hi"
        assert runner.calls == [shell_argv("echo hi")]

    def test_raw_argument_is_not_split(self) -> None:
        grid = Grid()
        grid["A1"] = "=SHELL(echo a,b)"
        runner = FakeRunner()
        FormulaEvaluator(grid, shell=ShellBridge(runner=runner)).evaluate_cell(0, 0)
        assert runner.calls == [shell_argv("echo a,b")]

    def test_referenced_shell_cell_is_not_run(self) -> None:
        grid = Grid()
        grid["A1"] = '=SHELL("echo hi")'
        grid["B1"] = "=LEN(A1)"
        grid["B2"] = "=A1"
        grid["B3"] = "=COUNTA(A1:A2)"
        grid["B4"] = '=IF(1,SHELL("echo nested"),0)'
        grid["B5"] = "=B4"
        runner = FakeRunner(stdout=b"hi\n")
        ev = FormulaEvaluator(grid, shell=ShellBridge(runner=runner))
        assert ev.evaluate_cell(0, 1) == "0"
        assert ev.evaluate_cell(1, 1) == ""
        assert ev.evaluate_cell(2, 1) == "0"
        assert ev.evaluate_cell(4, 1) == ""
        assert runner.calls == []
        assert grid["A1"] == '=SHELL("echo hi")'

    def test_disabled(self) -> None:
        grid = Grid()
        grid["A1"] = '=SHELL("echo hi")'
        runner = FakeRunner(stdout=b"hi\n")
        ev = FormulaEvaluator(
            grid, settings=EvaluatorSettings(allow_shell=False), shell=ShellBridge(runner=runner),
        )
        assert ev.evaluate_cell(0, 0) == "#ERROR: SHELL is disabled"
        assert runner.calls == []

    def test_timeout_setting_reaches_default_bridge(self) -> None:
        ev = FormulaEvaluator(Grid(), settings=EvaluatorSettings(shell_timeout=2.5))
        assert ev.shell.timeout == 2.5


@posix_only
class TestRealShell:
    def test_echo(self) -> None:
        grid = Grid()
        grid["A1"] = '=SHELL("echo hello")'
        assert FormulaEvaluator(grid).evaluate_cell(0, 0) == "OK"
        assert grid["A1"] == "hello"

    def test_table(self) -> None:
        grid = Grid()
        grid["C1"] = "=SHELL(\"printf 'a 1\\nb 2\\n'\")"
        assert FormulaEvaluator(grid).evaluate_cell(0, 2) == "OK"
        assert (grid["C1"], grid["D1"], grid["C2"], grid["D2"]) == ("a", "1", "b", "2")

    def test_exit_status(self) -> None:
        grid = Grid()
        grid["A1"] = '=SHELL("exit 3")'
        assert FormulaEvaluator(grid).evaluate_cell(0, 0) == "#ERROR: exit status 3"

    def test_stderr(self) -> None:
        grid = Grid()
        grid["A1"] = '=SHELL("echo oops >&2; exit 1")'
        assert FormulaEvaluator(grid).evaluate_cell(0, 0) == "#ERROR: oops"

    def test_timeout(self) -> None:
        grid = Grid()
        grid["A1"] = '=SHELL("sleep 5")'
        ev = FormulaEvaluator(grid, settings=EvaluatorSettings(shell_timeout=0.2))
        assert ev.evaluate_cell(0, 0) == "#ERROR: timed out after 0.2s"
