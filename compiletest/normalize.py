from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path

JSON_ERROR_FORMATS = ("--error-format json", "--error-format pretty-json")


def uses_json_output(compile_flags: Sequence[str]) -> bool:
    joined = " ".join(compile_flags)
    return any(flag in joined for flag in JSON_ERROR_FORMATS)


def normalize_output(
    output: str,
    parent_dir: Path | str,
    *,
    json: bool = False,
    custom_rules: Iterable[tuple[str, str]] = (),
) -> str:
    """
    Strip path and platform detail from captured output.

    The test's directory becomes `$DIR`, Windows separators and line endings
    are unified, tabs are made visible, then the test's own `normalize-*`
    rules run in order.
    """
    parent_dir_str = str(parent_dir)
    if json:
        parent_dir_str = parent_dir_str.replace("\\", "\\\\")

    normalized = output.replace(parent_dir_str, "$DIR") if parent_dir_str else output
    if json:
        # Escaped newlines inside JSON strings are only read by humans.
        normalized = normalized.replace("\\n", "\n")

    normalized = (
        normalized.replace("\\\\", "\\")
        .replace("\\", "/")
        .replace("\r\n", "\n")
        .replace("\t", "\\t")
    )
    for source, replacement in custom_rules:
        normalized = normalized.replace(source, replacement)
    return normalized
