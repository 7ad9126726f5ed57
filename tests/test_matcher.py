from __future__ import annotations

import json

from compiletest.diagnostics import parse_output
from compiletest.expected import ErrorKind, ExpectedError
from compiletest.matcher import find_missing_patterns, is_unexpected_compiler_message, match_errors


def expected(line: int, kind: ErrorKind | None, msg: str) -> ExpectedError:
    return ExpectedError(line_num=line, kind=kind, msg=msg)


def test_json_diagnostic_matches_expectation() -> None:
    output = json.dumps(
        {
            "message": "cannot find value `x` in this scope",
            "level": "error",
            "spans": [
                {
                    "file_name": "foo.rs",
                    "line_start": 4,
                    "line_end": 4,
                    "column_start": 13,
                    "column_end": 14,
                    "is_primary": True,
                }
            ],
            "children": [],
        }
    )
    actual = parse_output("foo.rs", output)
    result = match_errors([expected(4, ErrorKind.ERROR, "cannot find value")], actual)

    assert result.ok
    assert result.unexpected == []
    assert result.not_found == []


def test_each_expectation_matches_once() -> None:
    wanted = [expected(1, ErrorKind.ERROR, "boom")]
    actual = [expected(1, ErrorKind.ERROR, "boom one"), expected(1, ErrorKind.ERROR, "boom two")]
    result = match_errors(wanted, actual)
    assert result.not_found == []
    assert [error.msg for error in result.unexpected] == ["boom two"]


def test_earliest_unmatched_expectation_wins() -> None:
    wanted = [expected(2, None, "a"), expected(2, ErrorKind.ERROR, "a")]
    actual = [expected(2, ErrorKind.ERROR, "a")]
    result = match_errors(wanted, actual)
    assert result.not_found == [wanted[1]]


def test_missing_expectations_reported() -> None:
    wanted = [expected(3, ErrorKind.WARNING, "unused"), expected(5, ErrorKind.ERROR, "oops")]
    result = match_errors(wanted, [expected(3, ErrorKind.WARNING, "unused variable")])
    assert result.not_found == [wanted[1]]
    assert not result.ok


def test_helps_and_notes_only_required_when_listed() -> None:
    note = expected(1, ErrorKind.NOTE, "extra note")
    help_message = expected(1, ErrorKind.HELP, "extra help")
    error = expected(1, ErrorKind.ERROR, "real")

    result = match_errors([error], [error, note, help_message])
    assert result.ok

    result = match_errors([error, expected(9, ErrorKind.NOTE, "other")], [error, note])
    assert result.unexpected == [note]


def test_unexpected_message_rules() -> None:
    assert is_unexpected_compiler_message(expected(1, ErrorKind.ERROR, ""), False, False)
    assert is_unexpected_compiler_message(expected(1, ErrorKind.WARNING, ""), False, False)
    assert not is_unexpected_compiler_message(expected(1, ErrorKind.SUGGESTION, ""), True, True)
    assert not is_unexpected_compiler_message(expected(1, None, ""), True, True)
    assert is_unexpected_compiler_message(expected(1, ErrorKind.HELP, ""), True, False)
    assert not is_unexpected_compiler_message(expected(1, ErrorKind.NOTE, ""), True, False)


def test_error_patterns_scan_in_order() -> None:
    output = "error: first\nsecond and third\n"
    assert find_missing_patterns(["first", "  second "], output) == []
    assert find_missing_patterns(["second", "first"], output) == ["first"]
    assert find_missing_patterns(["second", "third"], output) == ["third"]
    assert find_missing_patterns([], output) == []
