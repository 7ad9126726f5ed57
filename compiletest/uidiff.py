from __future__ import annotations

import difflib
from pathlib import Path

from . import display
from .errors import HarnessError


def diff_lines(expected: str, actual: str) -> list[str]:
    """Line diff with `-` for expected-only, `+` for actual-only, ` ` for both."""
    lines: list[str] = []
    for line in difflib.ndiff(expected.splitlines(), actual.splitlines()):
        if line.startswith("? "):
            continue
        lines.append(line[0] + line[2:])
    return lines


def load_expected_output(path: Path) -> str:
    if not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise HarnessError(f"failed to load expected output from `{path}`: {exc}") from exc


def compare_output(kind: str, actual: str, expected: str, output_file: Path) -> int:
    """
    Return 0 when `actual` equals `expected`, else report the difference,
    save `actual` to `output_file` for reference updates and return 1.
    """
    if actual == expected:
        return 0

    display.print_diff(kind, actual, expected, diff_lines(expected, actual))
    try:
        output_file.write_text(actual, encoding="utf-8")
    except OSError as exc:
        raise HarnessError(f"failed to write {kind} to `{output_file}`: {exc}") from exc

    display.print_raw(f"\nThe actual {kind} differed from the expected {kind}.")
    display.print_raw(f"Actual {kind} saved to {output_file}")
    return 1
