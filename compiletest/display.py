"""Console rendering for test failures, diffs and the run summary."""

from __future__ import annotations

import io
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .procio import ProcRes

console = Console(highlight=False)
_REPORT_CONSOLE: ContextVar[Console | None] = ContextVar("compiletest_report_console", default=None)
SEPARATOR = "-" * 42


def active_console() -> Console:
    """The per-test report buffer when one is open, else the terminal console."""
    buffer = _REPORT_CONSOLE.get()
    return buffer if buffer is not None else console


@contextmanager
def buffered_report() -> Iterator[Console]:
    """
    Collect everything printed in this context into one report.

    The buffer is bound to the current context, so each worker thread
    records only the output of the test it is running.
    """
    buffer = Console(
        file=io.StringIO(),
        record=True,
        highlight=False,
        width=console.width,
        color_system=console.color_system,
        force_terminal=console.is_terminal,
    )
    token = _REPORT_CONSOLE.set(buffer)
    try:
        yield buffer
    finally:
        _REPORT_CONSOLE.reset(token)


def print_report(report: str) -> None:
    if report:
        console.print(Text.from_ansi(report), end="")


def print_raw(text: str, style: str | None = None) -> None:
    active_console().print(Text(text, style=style or ""), markup=False, highlight=False)


def print_error(message: str, revision: str | None = None) -> None:
    if revision is not None:
        print_raw(f"\nerror in revision `{revision}`: {message}", style="red")
    else:
        print_raw(f"\nerror: {message}", style="red")


def print_proc_res(proc_res: ProcRes) -> None:
    print_raw(f"status: {proc_res.describe_status()}")
    print_raw(f"command: {proc_res.cmdline}")
    print_raw("stdout:")
    print_raw(SEPARATOR)
    print_raw(proc_res.stdout)
    print_raw(SEPARATOR)
    print_raw("stderr:")
    print_raw(SEPARATOR)
    print_raw(proc_res.stderr)
    print_raw(SEPARATOR)
    active_console().print()


def print_verbose_output(stdout: str, stderr: str) -> None:
    print_raw("------stdout------------------------------", style="dim")
    print_raw(stdout)
    print_raw("------stderr------------------------------", style="dim")
    print_raw(stderr)
    print_raw("------------------------------------------", style="dim")


def print_source_mismatch(expected: str, actual: str) -> None:
    print_raw(f"\nexpected:\n{SEPARATOR}\n{expected}\n{SEPARATOR}")
    print_raw(f"actual:\n{SEPARATOR}\n{actual}\n{SEPARATOR}\n")


def print_diff(kind: str, actual: str, expected: str, diff_lines: Iterable[str]) -> None:
    print_raw(f"normalized {kind}:\n{actual}\n")
    print_raw(f"expected {kind}:\n{expected}\n")
    print_raw(f"diff of {kind}:\n")
    for line in diff_lines:
        if line.startswith("+"):
            print_raw(line, style="green")
        elif line.startswith("-"):
            print_raw(line, style="red")
        else:
            print_raw(line)


def print_test_result(name: str, status: str, quiet: bool = False) -> None:
    if quiet:
        marks = {"passed": (".", None), "failed": ("F", "red"), "ignored": ("i", "yellow")}
        mark, style = marks.get(status, ("?", None))
        active_console().print(Text(mark, style=style or ""), end="")
        return
    results = {
        "passed": ("ok", "green"),
        "failed": ("FAILED", "red"),
        "ignored": ("ignored", "yellow"),
    }
    label, style = results.get(status, (status, None))
    line = Text(f"test {name} ... ")
    line.append(label, style=style or "")
    active_console().print(line)


def print_summary(rows: Iterable[tuple[str, str, str]], passed: int, failed: int, ignored: int) -> None:
    table = Table(title="compiletest", box=box.SIMPLE, show_lines=False)
    table.add_column("Test", style="bold")
    table.add_column("Result", justify="center")
    table.add_column("Details", style="dim", max_width=60)

    labels = {
        "passed": "[green]PASS[/green]",
        "failed": "[red]FAIL[/red]",
        "ignored": "[yellow]IGNORED[/yellow]",
    }
    for name, status, detail in rows:
        table.add_row(Text(name), labels.get(status, status), Text(detail))
    active_console().print(table)

    total = passed + failed + ignored
    color = "green" if failed == 0 else "red"
    active_console().print(
        Panel(
            f"{passed} passed; {failed} failed; {ignored} ignored; {total} total",
            style=f"bold {color}",
            expand=False,
        )
    )
