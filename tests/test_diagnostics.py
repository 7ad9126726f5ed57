from __future__ import annotations

import json

import pytest
from compiletest.diagnostics import parse_output
from compiletest.errors import CompileOutcome
from compiletest.expected import ErrorKind

FILE = "/abs/tests/ui/foo.rs"


def span(line: int, *, primary: bool = True, file_name: str = FILE, **extra: object) -> dict[str, object]:
    return {
        "file_name": file_name,
        "line_start": line,
        "line_end": line,
        "column_start": 5,
        "column_end": 6,
        "is_primary": primary,
        **extra,
    }


def diagnostic(message: str, level: str = "error", **extra: object) -> dict[str, object]:
    return {"message": message, "level": level, "spans": [], "children": [], **extra}


def test_primary_span_becomes_error_with_code() -> None:
    output = json.dumps(
        diagnostic(
            "cannot find value `x` in this scope",
            code={"code": "E0425", "explanation": None},
            spans=[span(4, label="not found in this scope")],
        )
    )
    errors = parse_output(FILE, output)

    assert errors[0].line_num == 4
    assert errors[0].kind is ErrorKind.ERROR
    assert errors[0].msg == "4:5: 4:6: cannot find value `x` in this scope [E0425]"
    assert errors[1].kind is ErrorKind.NOTE
    assert errors[1].msg == "not found in this scope"


def test_children_inherit_parent_primary_span() -> None:
    output = json.dumps(
        diagnostic(
            "mismatched types",
            spans=[span(7)],
            children=[diagnostic("expected `u32`", level="note")],
        )
    )
    errors = parse_output(FILE, output)
    assert [(error.line_num, error.kind) for error in errors] == [
        (7, ErrorKind.ERROR),
        (7, ErrorKind.NOTE),
    ]


def test_other_files_and_plain_lines_are_skipped() -> None:
    other = json.dumps(diagnostic("elsewhere", spans=[span(1, file_name="/abs/other.rs")]))
    output = "\n".join(["warning: plain text line", other, ""])
    assert parse_output(FILE, output) == []


def test_multiline_message_and_suggestion() -> None:
    output = json.dumps(
        diagnostic(
            "first line\nsecond line",
            level="warning",
            spans=[span(2, suggested_replacement="let a = 1;\nlet b = 2;")],
        )
    )
    errors = parse_output(FILE, output)
    assert [(error.line_num, error.kind) for error in errors] == [
        (2, ErrorKind.WARNING),
        (2, None),
        (2, ErrorKind.SUGGESTION),
        (3, ErrorKind.SUGGESTION),
    ]
    assert errors[1].msg.endswith("second line")
    assert errors[3].msg == "let b = 2;"


def test_macro_backtrace_notes() -> None:
    expansion = {
        "span": span(10, primary=False),
        "macro_decl_name": "my_macro!",
    }
    output = json.dumps(diagnostic("bad macro", spans=[span(3, expansion=expansion)]))
    errors = parse_output(FILE, output)
    assert errors[-1].line_num == 10
    assert errors[-1].msg == "in this expansion of my_macro!"


def test_invalid_json_is_a_compile_outcome_failure() -> None:
    with pytest.raises(CompileOutcome, match="failed to decode compiler output as json"):
        parse_output(FILE, '{"message": 3}')
