"""Decode `--error-format json` compiler output into comparable errors."""

from __future__ import annotations

from pathlib import PurePath
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError

from .errors import CompileOutcome
from .expected import ErrorKind, ExpectedError

if TYPE_CHECKING:
    from .procio import ProcRes


class DiagnosticCode(BaseModel):
    code: str
    explanation: str | None = None


class DiagnosticSpanMacroExpansion(BaseModel):
    span: DiagnosticSpan
    macro_decl_name: str


class DiagnosticSpan(BaseModel):
    file_name: str
    line_start: int
    line_end: int
    column_start: int
    column_end: int
    is_primary: bool
    label: str | None = None
    suggested_replacement: str | None = None
    expansion: DiagnosticSpanMacroExpansion | None = None


class Diagnostic(BaseModel):
    message: str
    code: DiagnosticCode | None = None
    level: str
    spans: list[DiagnosticSpan] = Field(default_factory=list)
    children: list[Diagnostic] = Field(default_factory=list)
    rendered: str | None = None


DiagnosticSpanMacroExpansion.model_rebuild()
DiagnosticSpan.model_rebuild()
Diagnostic.model_rebuild()


def parse_output(
    file_name: str,
    output: str,
    proc_res: ProcRes | None = None,
) -> list[ExpectedError]:
    """Flatten every JSON diagnostic line of `output` that concerns `file_name`."""
    errors: list[ExpectedError] = []
    for line in output.splitlines():
        if not line.startswith("{"):
            continue
        try:
            diagnostic = Diagnostic.model_validate_json(line)
        except ValidationError as exc:
            raise CompileOutcome(
                "failed to decode compiler output as json: "
                + f"`{exc}`\nline: {line}\noutput: {output}",
                proc_res,
            ) from exc
        push_expected_errors(errors, diagnostic, [], file_name)
    return errors


def _same_file(left: str, right: str) -> bool:
    return PurePath(left) == PurePath(right)


def push_expected_errors(
    errors: list[ExpectedError],
    diagnostic: Diagnostic,
    default_spans: list[DiagnosticSpan],
    file_name: str,
) -> None:
    spans_in_this_file = [
        span for span in diagnostic.spans if _same_file(span.file_name, file_name)
    ]
    # Some diagnostics carry more than one primary span; only the first counts.
    primary_spans = [span for span in spans_in_this_file if span.is_primary][:1]
    if not primary_spans:
        primary_spans = default_spans

    def with_code(span: DiagnosticSpan, text: str) -> str:
        location = (
            f"{span.line_start}:{span.column_start}: "
            f"{span.line_end}:{span.column_end}: {text}"
        )
        if diagnostic.code is not None:
            return f"{location} [{diagnostic.code.code}]"
        return location

    message_lines = diagnostic.message.splitlines()
    if message_lines:
        kind = ErrorKind.parse(diagnostic.level)
        for span in primary_spans:
            errors.append(
                ExpectedError(
                    line_num=span.line_start,
                    kind=kind,
                    msg=with_code(span, message_lines[0]),
                )
            )
    for next_line in message_lines[1:]:
        for span in primary_spans:
            errors.append(
                ExpectedError(
                    line_num=span.line_start,
                    kind=None,
                    msg=with_code(span, next_line),
                )
            )

    for span in primary_spans:
        if span.suggested_replacement is None:
            continue
        for index, line in enumerate(span.suggested_replacement.splitlines()):
            errors.append(
                ExpectedError(
                    line_num=span.line_start + index,
                    kind=ErrorKind.SUGGESTION,
                    msg=line,
                )
            )

    for span in primary_spans:
        if span.expansion is not None:
            push_backtrace(errors, span.expansion, file_name)

    for span in spans_in_this_file:
        if span.label is not None:
            errors.append(
                ExpectedError(line_num=span.line_start, kind=ErrorKind.NOTE, msg=span.label)
            )

    for child in diagnostic.children:
        push_expected_errors(errors, child, primary_spans, file_name)


def push_backtrace(
    errors: list[ExpectedError],
    expansion: DiagnosticSpanMacroExpansion,
    file_name: str,
) -> None:
    if _same_file(expansion.span.file_name, file_name):
        errors.append(
            ExpectedError(
                line_num=expansion.span.line_start,
                kind=ErrorKind.NOTE,
                msg=f"in this expansion of {expansion.macro_decl_name}",
            )
        )
    if expansion.span.expansion is not None:
        push_backtrace(errors, expansion.span.expansion, file_name)
