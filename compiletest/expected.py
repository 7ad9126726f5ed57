"""
In-file expected diagnostics.

    let x = y;      //~ ERROR cannot find value `y`
    //~^ NOTE annotates the line above
    //~| HELP follows the anchor of the previous annotation
    //[rev]~ WARNING only for revision `rev`
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel

from .errors import ConfigError
from .logging import log_event


class ErrorKind(StrEnum):
    HELP = "help"
    ERROR = "error"
    NOTE = "note"
    SUGGESTION = "suggestion"
    WARNING = "warning"

    @classmethod
    def parse(cls, value: str) -> ErrorKind | None:
        token = value.upper().split(":", 1)[0]
        match token:
            case "HELP":
                return cls.HELP
            case "ERROR":
                return cls.ERROR
            case "NOTE":
                return cls.NOTE
            case "SUGGESTION":
                return cls.SUGGESTION
            case "WARN" | "WARNING":
                return cls.WARNING
            case _:
                return None


class ExpectedError(BaseModel):
    line_num: int
    kind: ErrorKind | None = None
    msg: str

    def describe_kind(self) -> str:
        return self.kind.value if self.kind is not None else "message"


def load_errors(testfile: Path, revision: str | None = None) -> list[ExpectedError]:
    """Collect every `//~` annotation of `testfile` that applies to `revision`."""
    tags = ["//~"]
    if revision is not None:
        tags.append(f"//[{revision}]~")

    errors: list[ExpectedError] = []
    last_anchor: int | None = None
    text = testfile.read_text(encoding="utf-8", errors="replace")
    for line_num, line in enumerate(text.splitlines(), start=1):
        for tag in tags:
            parsed = parse_expected(last_anchor, line_num, line, tag)
            if parsed is None:
                continue
            follows, error = parsed
            if not follows:
                last_anchor = error.line_num
            errors.append(error)
            break
    return errors


def parse_expected(
    last_anchor: int | None,
    line_num: int,
    line: str,
    tag: str,
) -> tuple[bool, ExpectedError] | None:
    start = line.find(tag)
    if start < 0:
        return None

    rest = line[start + len(tag) :]
    follows = rest.startswith("|")
    if follows:
        adjusts = 0
        rest = rest[1:]
    else:
        adjusts = len(rest) - len(rest.lstrip("^"))
        rest = rest[adjusts:]

    body = rest.strip()
    words = body.split(None, 1)
    kind = ErrorKind.parse(words[0]) if words else None
    if kind is not None:
        msg = words[1].strip() if len(words) > 1 else ""
    else:
        msg = body

    if follows:
        if last_anchor is None:
            raise ConfigError(
                f"line {line_num}: encountered //~| without preceding //~^ line"
            )
        anchor = last_anchor
    else:
        anchor = line_num - adjusts

    log_event(
        event="expected.loaded",
        level="debug",
        message=msg,
        line_num=anchor,
        kind=kind.value if kind is not None else None,
        tag=tag,
    )
    return follows, ExpectedError(line_num=anchor, kind=kind, msg=msg)
