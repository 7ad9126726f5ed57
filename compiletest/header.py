"""
Directive scanning and parsing.

Directives live in comment lines at the top of a test file, before the first
`fn` or `mod` item:

    // compile-flags: -O
    // ignore-windows
    //[rev1] error-pattern: mismatched types

EarlyProps is the cheap pass the driver uses to register a test; TestProps is
the full per-revision property set used to run it.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field

from . import util
from .common import Config
from .errors import ConfigError, MalformedDirective
from .logging import log_event

CWD_VARIABLE = "{{cwd}}"
SRC_BASE_VARIABLE = "{{src-base}}"
BUILD_BASE_VARIABLE = "{{build-base}}"
AMBIENT_EXEC_ENV = ("RUST_TEST_NOCAPTURE", "RUST_TEST_THREADS")
FLAG_DIRECTIVES = {
    "build-aux-docs": "build_aux_docs",
    "force-host": "force_host",
    "check-stdout": "check_stdout",
    "no-prefer-dynamic": "no_prefer_dynamic",
    "pretty-expanded": "pretty_expanded",
    "pretty-compare-only": "pretty_compare_only",
    "must-compile-successfully": "must_compile_successfully",
    "check-test-line-numbers-match": "check_test_line_numbers_match",
    "run-pass": "run_pass",
    "incremental": "incremental",
}


def iter_header(testfile: Path, revision: str | None = None) -> Iterator[str]:
    """
    Yield every directive body of `testfile` that applies to `revision`.

    Untagged `// body` lines apply to every revision; `//[rev] body` lines
    only when `revision == rev`. Scanning stops at the first `fn`/`mod` line.
    Directories (run-make tests) have no header.
    """
    if testfile.is_dir():
        return
    with testfile.open(encoding="utf-8", errors="replace") as handle:
        for raw_line in handle:
            line = raw_line.strip()
            if line.startswith("fn") or line.startswith("mod"):
                return
            if line.startswith("//["):
                close_brace = line.find("]")
                if close_brace < 0:
                    raise MalformedDirective(
                        f"malformed condition directive: expected `//[foo]`, found `{line}`"
                    )
                line_revision = line[3:close_brace]
                if revision is not None and revision == line_revision:
                    yield line[close_brace + 1 :].lstrip()
            elif line.startswith("//"):
                yield line[2:].lstrip()


def expand_variables(value: str, config: Config) -> str:
    if CWD_VARIABLE in value:
        value = value.replace(CWD_VARIABLE, os.getcwd())
    if SRC_BASE_VARIABLE in value:
        value = value.replace(SRC_BASE_VARIABLE, str(config.src_base))
    if BUILD_BASE_VARIABLE in value:
        value = value.replace(BUILD_BASE_VARIABLE, str(config.build_base))
    return value


def parse_normalization_string(line: str) -> tuple[str, str] | None:
    """
    Find the next `"..."` in `line`.

    Returns the quoted content and the rest of the line after the closing
    quote, or None when a quote is missing. Escapes are not interpreted.
    """
    begin = line.find('"')
    if begin < 0:
        return None
    end = line.find('"', begin + 1)
    if end < 0:
        return None
    return line[begin + 1 : end], line[end + 1 :]


class DirectiveParser:
    """Matches single directive lines against the run configuration."""

    def __init__(self, config: Config):
        self.config = config

    def parse_name_directive(self, line: str, directive: str) -> bool:
        # Whole-word match: `ignore-x86` must not match `ignore-x86_64`.
        if not line.startswith(directive):
            return False
        rest = line[len(directive) :]
        return rest == "" or rest[0] in {" ", ":"}

    def parse_name_value_directive(self, line: str, directive: str) -> str | None:
        if not line.startswith(directive + ":"):
            return None
        value = line[len(directive) + 1 :].strip()
        log_event(
            event="directive.value",
            level="debug",
            message=f"{directive}: {value}",
        )
        return expand_variables(value, self.config)

    def parse_cfg_name_directive(self, line: str, prefix: str) -> bool:
        """True for `prefix-<tag>` lines whose tag matches this run."""
        if not line.startswith(prefix + "-"):
            return False
        rest = line[len(prefix) + 1 :]
        name = rest.replace(":", " ").split(" ", 1)[0]
        config = self.config
        return (
            name == "test"
            or util.matches_os(config.target, name)
            or name == util.get_arch(config.target)
            or name == util.get_pointer_width(config.target)
            or name == config.stage_id.split("-", 1)[0]
            or name == util.get_env(config.target)
            or (config.is_cross_compile and name == "cross-compile")
        )

    def parse_flag(self, line: str, directive: str) -> bool:
        """A flag is set by its bare name or by `name-<tag>` matching this run."""
        return self.parse_name_directive(line, directive) or self.parse_cfg_name_directive(
            line, directive
        )

    def parse_custom_normalization(self, line: str, prefix: str) -> tuple[str, str] | None:
        if not self.parse_cfg_name_directive(line, prefix):
            return None
        first = parse_normalization_string(line)
        if first is None:
            return None
        source, rest = first
        second = parse_normalization_string(rest)
        if second is None:
            return None
        return source, second[0]

    def parse_env(self, line: str, name: str) -> tuple[str, str] | None:
        value = self.parse_name_value_directive(line, name)
        if value is None:
            return None
        key, _, env_value = value.partition("=")
        return key, env_value

    def parse_revisions(self, line: str) -> list[str] | None:
        value = self.parse_name_value_directive(line, "revisions")
        if value is None:
            return None
        return value.split()

    def parse_pp_exact(self, line: str, testfile: Path) -> Path | None:
        value = self.parse_name_value_directive(line, "pp-exact")
        if value is not None:
            return Path(value)
        if self.parse_name_directive(line, "pp-exact"):
            return Path(testfile.name)
        return None

    def ignore_llvm(self, line: str) -> bool:
        config = self.config
        if config.system_llvm and line.startswith("no-system-llvm"):
            return True
        if config.llvm_version is None:
            return False
        if line.startswith("min-llvm-version"):
            min_version = _llvm_version_token(line)
            return config.llvm_version < min_version
        if line.startswith("min-system-llvm-version"):
            min_version = _llvm_version_token(line)
            return config.system_llvm and config.llvm_version < min_version
        return False


def _llvm_version_token(line: str) -> str:
    parts = line.rstrip().rsplit(" ", 1)
    if len(parts) < 2 or not parts[1]:
        raise ConfigError(f"Malformed llvm version directive: {line!r}")
    return parts[1]


class EarlyProps(BaseModel):
    """Properties which must be known before actually running the test."""

    ignore: bool = False
    should_fail: bool = False
    aux: list[str] = Field(default_factory=list)

    @classmethod
    def from_file(cls, config: Config, testfile: Path) -> EarlyProps:
        parser = DirectiveParser(config)
        props = cls()
        for line in iter_header(testfile, None):
            props.ignore = (
                props.ignore
                or parser.parse_flag(line, "ignore")
                or parser.ignore_llvm(line)
            )
            aux = parser.parse_name_value_directive(line, "aux-build")
            if aux is not None:
                props.aux.append(aux)
            props.should_fail = props.should_fail or parser.parse_flag(line, "should-fail")
        return props


class TestProps(BaseModel):
    __test__: ClassVar[bool] = False

    # Lines that should be expected, in order, in the checked output
    error_patterns: list[str] = Field(default_factory=list)
    # Extra flags to pass to the compiler
    compile_flags: list[str] = Field(default_factory=list)
    # Extra flags to pass when the compiled code is run
    run_flags: str | None = None
    # Auxiliary libraries to build before the test
    aux_builds: list[str] = Field(default_factory=list)
    rustc_env: list[tuple[str, str]] = Field(default_factory=list)
    exec_env: list[tuple[str, str]] = Field(default_factory=list)
    check_lines: list[str] = Field(default_factory=list)
    build_aux_docs: bool = False
    force_host: bool = False
    # Scan stdout for error patterns as well as stderr
    check_stdout: bool = False
    # Don't force a `-C prefer-dynamic` on the command line
    no_prefer_dynamic: bool = False
    pretty_expanded: bool = False
    # Only compare pretty output, don't typecheck it
    pretty_compare_only: bool = False
    pretty_mode: str = "normal"
    pp_exact: Path | None = None
    # Patterns which must not appear in the output of a compile-fail test
    forbid_output: list[str] = Field(default_factory=list)
    revisions: list[str] = Field(default_factory=list)
    # A compile-fail test that must actually compile without errors
    must_compile_successfully: bool = False
    check_test_line_numbers_match: bool = False
    # UI tests additionally run the compiled program
    run_pass: bool = False
    incremental: bool = False
    normalize_stdout: list[tuple[str, str]] = Field(default_factory=list)
    normalize_stderr: list[tuple[str, str]] = Field(default_factory=list)

    @classmethod
    def from_file(cls, testfile: Path, revision: str | None, config: Config) -> TestProps:
        props = cls()
        props.load_from(testfile, revision, config)
        return props

    def from_aux_file(self, testfile: Path, revision: str | None, config: Config) -> TestProps:
        return TestProps.from_file(testfile, revision, config)

    def load_from(self, testfile: Path, revision: str | None, config: Config) -> None:
        """
        Fold every directive of `testfile` for `revision` into these props.

        Boolean properties only ever flip to True, so directive order only
        matters for the list-valued ones.
        """
        parser = DirectiveParser(config)
        pretty_mode_seen = False
        for line in iter_header(testfile, revision):
            if (pattern := parser.parse_name_value_directive(line, "error-pattern")) is not None:
                self.error_patterns.append(pattern)

            if (flags := parser.parse_name_value_directive(line, "compile-flags")) is not None:
                self.compile_flags.extend(flags.split())

            if (revisions := parser.parse_revisions(line)) is not None:
                self.revisions.extend(revisions)

            if self.run_flags is None:
                self.run_flags = parser.parse_name_value_directive(line, "run-flags")

            if self.pp_exact is None:
                self.pp_exact = parser.parse_pp_exact(line, testfile)

            if not pretty_mode_seen:
                mode = parser.parse_name_value_directive(line, "pretty-mode")
                if mode is not None:
                    self.pretty_mode = mode
                    pretty_mode_seen = True

            for directive, attribute in FLAG_DIRECTIVES.items():
                if not getattr(self, attribute) and parser.parse_flag(line, directive):
                    setattr(self, attribute, True)

            if (aux := parser.parse_name_value_directive(line, "aux-build")) is not None:
                self.aux_builds.append(aux)

            if (exec_env := parser.parse_env(line, "exec-env")) is not None:
                self.exec_env.append(exec_env)

            if (rustc_env := parser.parse_env(line, "rustc-env")) is not None:
                self.rustc_env.append(rustc_env)

            if (check_line := parser.parse_name_value_directive(line, "check")) is not None:
                self.check_lines.append(check_line)

            if (forbidden := parser.parse_name_value_directive(line, "forbid-output")) is not None:
                self.forbid_output.append(forbidden)

            if (rule := parser.parse_custom_normalization(line, "normalize-stdout")) is not None:
                self.normalize_stdout.append(rule)
            if (rule := parser.parse_custom_normalization(line, "normalize-stderr")) is not None:
                self.normalize_stderr.append(rule)

        for key in AMBIENT_EXEC_ENV:
            value = os.environ.get(key)
            if value is None:
                continue
            if not any(existing == key for existing, _ in self.exec_env):
                self.exec_env.append((key, value))

        log_event(
            event="directives.parsed",
            level="debug",
            message=str(testfile),
            revision=revision,
            revisions=self.revisions or None,
            aux_builds=self.aux_builds or None,
        )
