"""Exception taxonomy for the harness.

Everything a single test can fail with derives from HarnessError. The driver
catches HarnessError per case and turns it into a failed outcome; any other
exception is a bug in the harness itself and propagates.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .procio import ProcRes


class HarnessError(Exception):
    """Base class for errors that terminate a single test."""


class ConfigError(HarnessError):
    """A directive or configuration value could not be interpreted."""


class MalformedDirective(ConfigError):
    pass


class MissingFile(HarnessError):
    pass


class ProcessSpawnError(HarnessError):
    def __init__(self, message: str, *, cmdline: str):
        super().__init__(message)
        self.cmdline = cmdline


class TestFailure(HarnessError):
    """The test ran but its outcome contradicts the declared expectations."""

    __test__ = False

    def __init__(self, message: str, proc_res: ProcRes | None = None):
        super().__init__(message)
        self.proc_res = proc_res


class CompileOutcome(TestFailure):
    pass


class AuxBuildFailed(TestFailure):
    def __init__(self, message: str, aux_file: str, proc_res: ProcRes | None = None):
        super().__init__(message, proc_res)
        self.aux_file = aux_file


class DiagnosticMismatch(TestFailure):
    def __init__(
        self,
        message: str,
        proc_res: ProcRes | None = None,
        *,
        unexpected: int = 0,
        not_found: int = 0,
    ):
        super().__init__(message, proc_res)
        self.unexpected = unexpected
        self.not_found = not_found


class OutputMismatch(TestFailure):
    def __init__(self, message: str, proc_res: ProcRes | None = None, *, errors: int = 0):
        super().__init__(message, proc_res)
        self.errors = errors


class InternalCompilerError(TestFailure):
    pass


class AnalyzerFailure(TestFailure):
    """The external analysis tool (exit status 100) rejected the program."""
