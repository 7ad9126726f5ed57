from .common import Config, Mode, TestPaths
from .driver import RunSummary, TestOutcome, run_tests
from .errors import (
    AnalyzerFailure,
    AuxBuildFailed,
    CompileOutcome,
    ConfigError,
    DiagnosticMismatch,
    HarnessError,
    InternalCompilerError,
    MalformedDirective,
    MissingFile,
    OutputMismatch,
    ProcessSpawnError,
    TestFailure,
)
from .expected import ErrorKind, ExpectedError, load_errors
from .header import EarlyProps, TestProps
from .runtest import TestCx, run

__all__ = [
    "Config",
    "Mode",
    "TestPaths",
    "EarlyProps",
    "TestProps",
    "ErrorKind",
    "ExpectedError",
    "load_errors",
    "TestCx",
    "run",
    "run_tests",
    "RunSummary",
    "TestOutcome",
    "HarnessError",
    "ConfigError",
    "MalformedDirective",
    "MissingFile",
    "ProcessSpawnError",
    "TestFailure",
    "CompileOutcome",
    "AuxBuildFailed",
    "DiagnosticMismatch",
    "OutputMismatch",
    "InternalCompilerError",
    "AnalyzerFailure",
]
