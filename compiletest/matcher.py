"""Pairing of actual compiler diagnostics with in-file expectations."""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, Field

from .expected import ErrorKind, ExpectedError


class MatchResult(BaseModel):
    unexpected: list[ExpectedError] = Field(default_factory=list)
    not_found: list[ExpectedError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.unexpected and not self.not_found


def is_unexpected_compiler_message(
    actual: ExpectedError,
    expect_help: bool,
    expect_note: bool,
) -> bool:
    """
    Errors and warnings must always be listed explicitly; helps and notes only
    once the test lists at least one of that kind. Suggestions and kind-less
    lines are never required.
    """
    match actual.kind:
        case ErrorKind.HELP:
            return expect_help
        case ErrorKind.NOTE:
            return expect_note
        case ErrorKind.ERROR | ErrorKind.WARNING:
            return True
        case _:
            return False


def match_errors(
    expected: Sequence[ExpectedError],
    actual: Sequence[ExpectedError],
) -> MatchResult:
    expect_help = any(error.kind == ErrorKind.HELP for error in expected)
    expect_note = any(error.kind == ErrorKind.NOTE for error in expected)

    found = [False] * len(expected)
    result = MatchResult()
    for actual_error in actual:
        index = next(
            (
                position
                for position, expected_error in enumerate(expected)
                if not found[position]
                and actual_error.line_num == expected_error.line_num
                and (expected_error.kind is None or actual_error.kind == expected_error.kind)
                and expected_error.msg in actual_error.msg
            ),
            None,
        )
        if index is not None:
            found[index] = True
        elif is_unexpected_compiler_message(actual_error, expect_help, expect_note):
            result.unexpected.append(actual_error)

    result.not_found = [error for position, error in enumerate(expected) if not found[position]]
    return result


def find_missing_patterns(patterns: Sequence[str], output: str) -> list[str]:
    """
    Scan `output` line by line for `patterns` in order.

    Each pattern must appear on a later line than the previous one; the
    patterns never reached are returned.
    """
    next_index = 0
    for line in output.splitlines():
        if next_index == len(patterns):
            break
        if patterns[next_index].strip() in line:
            next_index += 1
    return list(patterns[next_index:])
