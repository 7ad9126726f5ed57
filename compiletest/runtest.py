"""
Per-test execution.

`run` drives one test file through every revision it declares. A TestCx is
the state for one (test, revision) pair; mode dispatch happens in
`TestCx.run_revision`. Auxiliary libraries are built by nested TestCx values
that share the primary's config and revision.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import NoReturn

from . import display, util
from .commands import (
    ANALYZER_FAILURE_STATUS,
    RUNTIME_FAILURE_STATUS,
    CommandBuilder,
    aux_crate_type,
    lib_path_env,
)
from .common import Config, Mode, TestPaths
from .diagnostics import parse_output
from .discovery import stamp_path
from .errors import (
    AnalyzerFailure,
    AuxBuildFailed,
    CompileOutcome,
    DiagnosticMismatch,
    HarnessError,
    InternalCompilerError,
    MissingFile,
    OutputMismatch,
    TestFailure,
)
from .expected import ErrorKind, ExpectedError, load_errors
from .header import TestProps
from .logging import log_context, log_event
from .matcher import find_missing_patterns, match_errors
from .normalize import normalize_output, uses_json_output
from .procio import ProcCommand, ProcRes, run_command
from .uidiff import compare_output, load_expected_output

ICE_MARKER = "error: internal compiler error"


def run(config: Config, testpaths: TestPaths) -> None:
    """Run every revision of one test, then write its stamp file."""
    if util.is_android_target(config.target) and not config.android_device_available:
        raise HarnessError("android device not available")

    base_props = TestProps.from_file(testpaths.file, None, config)
    base_cx = TestCx(config, base_props, testpaths)

    if not base_props.revisions:
        base_cx.run_revision()
    else:
        for revision in base_props.revisions:
            with log_context(revision=revision):
                revision_props = TestProps.from_file(testpaths.file, revision, config)
                TestCx(config, revision_props, testpaths, revision).run_revision()

    stamp = stamp_path(config, testpaths)
    stamp.parent.mkdir(parents=True, exist_ok=True)
    stamp.touch()


class TestCx:
    __test__ = False

    def __init__(
        self,
        config: Config,
        props: TestProps,
        testpaths: TestPaths,
        revision: str | None = None,
    ):
        self.config = config
        self.props = props
        self.testpaths = testpaths
        self.revision = revision
        self.commands = CommandBuilder(config, props, testpaths, revision)

    def run_revision(self) -> None:
        match self.config.mode:
            case Mode.COMPILE_FAIL:
                self.run_cfail_test()
            case Mode.RUN_FAIL:
                self.run_rfail_test()
            case Mode.RUN_PASS:
                self.run_rpass_test()
            case Mode.PRETTY:
                self.run_pretty_test()
            case Mode.RUN_MAKE:
                self.run_rmake_test()
            case Mode.UI:
                self.run_ui_test()

    # -- modes ---------------------------------------------------------------

    def run_cfail_test(self) -> None:
        proc_res = self.compile_test()

        if self.props.must_compile_successfully:
            if not proc_res.success:
                self.fatal_proc_rec(
                    "test compilation failed although it shouldn't!",
                    proc_res,
                    CompileOutcome,
                )
        else:
            if proc_res.success:
                self.fatal_proc_rec(
                    f"{self.config.mode} test compiled successfully!",
                    proc_res,
                    CompileOutcome,
                )
            self.check_correct_failure_status(proc_res)

        output_to_check = self.get_output(proc_res)
        expected_errors = load_errors(self.testpaths.file, self.revision)
        if expected_errors:
            if self.props.error_patterns:
                self.fatal("both error pattern and expected errors specified")
            self.check_expected_errors(expected_errors, proc_res)
        else:
            self.check_error_patterns(output_to_check, proc_res)

        self.check_no_compiler_crash(proc_res)
        self.check_forbid_output(output_to_check, proc_res)

    def run_rfail_test(self) -> None:
        proc_res = self.compile_test()
        if not proc_res.success:
            self.fatal_proc_rec("compilation failed!", proc_res, CompileOutcome)

        proc_res = self.exec_compiled_test()
        if proc_res.status == ANALYZER_FAILURE_STATUS:
            self.fatal_proc_rec("run-fail test isn't valgrind-clean!", proc_res, AnalyzerFailure)

        output_to_check = self.get_output(proc_res)
        self.check_correct_failure_status(proc_res)
        self.check_error_patterns(output_to_check, proc_res)

    def run_rpass_test(self) -> None:
        proc_res = self.compile_test()
        if not proc_res.success:
            self.fatal_proc_rec("compilation failed!", proc_res, CompileOutcome)

        if load_errors(self.testpaths.file, self.revision):
            self.fatal("run-pass tests with expected warnings should be moved to ui/")

        proc_res = self.exec_compiled_test()
        if not proc_res.success:
            self.fatal_proc_rec("test run failed!", proc_res)

    def run_pretty_test(self) -> None:
        if self.props.pp_exact is not None:
            self.logv("testing for exact pretty-printing")
        else:
            self.logv("testing for converging pretty-printing")

        rounds = 1 if self.props.pp_exact is not None else 2
        srcs = [self.testpaths.file.read_text(encoding="utf-8", errors="replace")]

        for round_index in range(rounds):
            self.logv(f"pretty-printing round {round_index} revision {self.revision!r}")
            proc_res = self.print_source(srcs[round_index], self.props.pretty_mode)
            if not proc_res.success:
                self.fatal_proc_rec(
                    f"pretty-printing failed in round {round_index} revision {self.revision!r}",
                    proc_res,
                )
            srcs.append(proc_res.stdout)

        if self.props.pp_exact is not None:
            reference = self.testpaths.file.parent / self.props.pp_exact
            try:
                expected = reference.read_text(encoding="utf-8")
            except OSError as exc:
                raise MissingFile(f"pp-exact reference `{reference}` unreadable: {exc}") from exc
        else:
            expected = srcs[-2]
        actual = srcs[-1]

        if self.props.pp_exact is not None:
            # Line endings only matter against a checked-in reference.
            actual = actual.replace("\r", "")
            expected = expected.replace("\r", "")

        self.compare_source(expected, actual)

        if self.props.pretty_compare_only:
            return

        proc_res = self.typecheck_source(actual)
        if not proc_res.success:
            self.fatal_proc_rec("pretty-printed source does not typecheck", proc_res)

        if not self.props.pretty_expanded:
            return

        proc_res = self.print_source(srcs[rounds], "expanded")
        if not proc_res.success:
            self.fatal_proc_rec("pretty-printing (expanded) failed", proc_res)

        proc_res = self.typecheck_source(proc_res.stdout)
        if not proc_res.success:
            self.fatal_proc_rec("pretty-printed source (expanded) does not typecheck", proc_res)

    def run_rmake_test(self) -> None:
        # TODO: run-make tests for cross targets need a remote runner for `make`.
        if self.config.host != self.config.target:
            return

        cwd = Path.cwd()
        tmpdir = cwd / self.commands.output_base_name()
        if tmpdir.exists():
            shutil.rmtree(tmpdir)
        tmpdir.mkdir(parents=True)

        command = self.commands.make_make_command(cwd, tmpdir)
        proc_res = run_command(command)
        if not proc_res.success:
            self.fatal_proc_rec("make failed", proc_res)

    def run_ui_test(self) -> None:
        proc_res = self.compile_test()

        expected_stderr = load_expected_output(self.expected_output_path("stderr"))
        expected_stdout = load_expected_output(self.expected_output_path("stdout"))

        normalized_stdout = self.normalize_output(proc_res.stdout, self.props.normalize_stdout)
        normalized_stderr = self.normalize_output(proc_res.stderr, self.props.normalize_stderr)

        errors = 0
        errors += compare_output(
            "stdout", normalized_stdout, expected_stdout, self.commands.make_out_name("stdout")
        )
        errors += compare_output(
            "stderr", normalized_stderr, expected_stderr, self.commands.make_out_name("stderr")
        )

        if errors > 0:
            relative_path = self.testpaths.relative_dir / self.testpaths.file.name
            display.print_raw("To update references, run this command from build directory:")
            display.print_raw(
                f"{self.config.src_base}/update-references.sh "
                f"'{self.config.build_base}' '{relative_path}'"
            )
            self.error(f"{errors} errors occurred comparing output.")
            display.print_proc_res(proc_res)
            raise OutputMismatch(
                f"{errors} errors occurred comparing output.",
                proc_res,
                errors=errors,
            )

        if self.props.run_pass:
            proc_res = self.exec_compiled_test()
            if not proc_res.success:
                self.fatal_proc_rec("test run failed!", proc_res)

    # -- checks --------------------------------------------------------------

    def get_output(self, proc_res: ProcRes) -> str:
        if self.props.check_stdout:
            return proc_res.stdout + proc_res.stderr
        return proc_res.stderr

    def check_correct_failure_status(self, proc_res: ProcRes) -> None:
        if proc_res.status != RUNTIME_FAILURE_STATUS:
            self.fatal_proc_rec(
                f"failure produced the wrong error: {proc_res.describe_status()}",
                proc_res,
            )

    def check_error_patterns(self, output_to_check: str, proc_res: ProcRes) -> None:
        if not self.props.error_patterns:
            if self.props.must_compile_successfully:
                return
            self.fatal(f"no error pattern specified in {str(self.testpaths.file)!r}")

        missing = find_missing_patterns(self.props.error_patterns, output_to_check)
        if not missing:
            return
        if len(missing) == 1:
            self.fatal_proc_rec(f"error pattern '{missing[0]}' not found!", proc_res)
        for pattern in missing:
            self.error(f"error pattern '{pattern}' not found!")
        self.fatal_proc_rec("multiple error patterns not found", proc_res)

    def check_no_compiler_crash(self, proc_res: ProcRes) -> None:
        if any(ICE_MARKER in line for line in proc_res.stderr.splitlines()):
            self.fatal_proc_rec(
                "compiler encountered internal error",
                proc_res,
                InternalCompilerError,
            )

    def check_forbid_output(self, output_to_check: str, proc_res: ProcRes) -> None:
        for pattern in self.props.forbid_output:
            if pattern in output_to_check:
                self.fatal_proc_rec("forbidden pattern found in compiler output", proc_res)

    def check_expected_errors(self, expected_errors: list[ExpectedError], proc_res: ProcRes) -> None:
        if proc_res.success and any(error.kind == ErrorKind.ERROR for error in expected_errors):
            self.fatal_proc_rec("process did not return an error status", proc_res, CompileOutcome)

        # Diagnostics always name files with forward slashes.
        file_name = str(self.testpaths.file).replace("\\", "/")
        actual_errors = parse_output(file_name, proc_res.stderr, proc_res)
        result = match_errors(expected_errors, actual_errors)
        if result.ok:
            return

        for error in result.unexpected:
            self.error(
                f"{file_name}:{error.line_num}: unexpected {error.describe_kind()}: '{error.msg}'"
            )
        for error in result.not_found:
            self.error(
                f"{file_name}:{error.line_num}: expected {error.describe_kind()} not found: {error.msg}"
            )

        message = (
            f"{len(result.unexpected)} unexpected errors found, "
            f"{len(result.not_found)} expected errors not found"
        )
        self.error(message)
        display.print_raw(f"status: {proc_res.describe_status()}\ncommand: {proc_res.cmdline}")
        if result.unexpected:
            display.print_raw("unexpected errors (from JSON output):")
            for error in result.unexpected:
                display.print_raw(f"  {error!r}")
        if result.not_found:
            display.print_raw("not found errors (from test file):")
            for error in result.not_found:
                display.print_raw(f"  {error!r}")
        raise DiagnosticMismatch(
            message,
            proc_res,
            unexpected=len(result.unexpected),
            not_found=len(result.not_found),
        )

    def compare_source(self, expected: str, actual: str) -> None:
        if expected == actual:
            return
        self.error("pretty-printed source does not match expected source")
        display.print_source_mismatch(expected, actual)
        raise OutputMismatch("pretty-printed source does not match expected source", errors=1)

    # -- compiling and running -----------------------------------------------

    def compile_test(self) -> ProcRes:
        return self.compose_and_run_compiler(self.commands.make_test_compile_args())

    def exec_compiled_test(self) -> ProcRes:
        return self.compose_and_run(
            self.commands.make_exec_command(),
            self.config.run_lib_path,
            self.commands.aux_output_dir_name(),
        )

    def print_source(self, src: str, pretty_type: str) -> ProcRes:
        return self.compose_and_run(
            self.commands.make_print_args(pretty_type),
            self.config.compile_lib_path,
            self.commands.aux_output_dir_name(),
            src,
        )

    def typecheck_source(self, src: str) -> ProcRes:
        out_dir = self.commands.make_out_name("pretty-out")
        shutil.rmtree(out_dir, ignore_errors=True)
        out_dir.mkdir(parents=True)
        return self.compose_and_run_compiler(self.commands.make_typecheck_args(out_dir), src)

    def compute_aux_test_paths(self, rel_ab: str) -> TestPaths:
        """`aux-build: foo/bar.rs` names a file under the test's `auxiliary` directory."""
        test_ab = self.testpaths.file.parent / "auxiliary" / rel_ab
        if not test_ab.exists():
            self.error(f"aux-build `{test_ab}` source not found")
            raise MissingFile(f"aux-build `{test_ab}` source not found")
        return TestPaths(
            file=test_ab,
            base=self.testpaths.base,
            relative_dir=(self.testpaths.relative_dir / "auxiliary" / rel_ab).parent,
        )

    def build_auxiliaries(self) -> None:
        aux_dir = self.commands.aux_output_dir_name()
        if self.props.aux_builds:
            aux_dir.mkdir(parents=True, exist_ok=True)

        for rel_ab in self.props.aux_builds:
            aux_testpaths = self.compute_aux_test_paths(rel_ab)
            aux_props = self.props.from_aux_file(aux_testpaths.file, self.revision, self.config)
            aux_cx = TestCx(self.config, aux_props, aux_testpaths, self.revision)
            crate_type = aux_crate_type(self.config, aux_props)
            command = aux_cx.commands.make_aux_compile_args(aux_testpaths.file, aux_dir, crate_type)

            log_event(
                event="aux.build",
                message=str(aux_testpaths.file),
                crate_type=crate_type,
                out_dir=str(aux_dir),
            )
            aux_res = aux_cx.compose_and_run(command, self.config.compile_lib_path, aux_dir)
            if not aux_res.success:
                message = f"auxiliary build of {str(aux_testpaths.file)!r} failed to compile: "
                self.error(message)
                display.print_proc_res(aux_res)
                raise AuxBuildFailed(message, str(aux_testpaths.file), aux_res)

    def compose_and_run_compiler(self, command: ProcCommand, stdin: str | None = None) -> ProcRes:
        self.build_auxiliaries()
        command.envs(self.props.rustc_env)
        return self.compose_and_run(
            command,
            self.config.compile_lib_path,
            self.commands.aux_output_dir_name(),
            stdin,
        )

    def compose_and_run(
        self,
        command: ProcCommand,
        lib_path: Path | str,
        aux_path: Path | str | None = None,
        stdin: str | None = None,
    ) -> ProcRes:
        # The loader must find both the toolchain's and the test's libraries.
        command.envs([lib_path_env(lib_path, aux_path)])
        self.logv(f"executing {command.cmdline()}")
        result = run_command(command, stdin)
        self.dump_output(result.stdout, result.stderr)
        return result

    # -- outputs -------------------------------------------------------------

    def expected_output_path(self, kind: str) -> Path:
        extension = f"{self.revision}.{kind}" if self.revision is not None else kind
        return self.testpaths.file.with_suffix(f".{extension}")

    def normalize_output(self, output: str, custom_rules: list[tuple[str, str]]) -> str:
        return normalize_output(
            output,
            self.testpaths.file.parent,
            json=uses_json_output(self.props.compile_flags),
            custom_rules=custom_rules,
        )

    def dump_output(self, out: str, err: str) -> None:
        prefix = f"{self.revision}." if self.revision is not None else ""
        self.dump_output_file(out, f"{prefix}out")
        self.dump_output_file(err, f"{prefix}err")
        if self.config.verbose:
            display.print_verbose_output(out, err)

    def dump_output_file(self, out: str, extension: str) -> None:
        outfile = self.commands.make_out_name(extension)
        outfile.parent.mkdir(parents=True, exist_ok=True)
        outfile.write_text(out, encoding="utf-8")

    # -- reporting -----------------------------------------------------------

    def logv(self, message: str) -> None:
        log_event(event="test.step", level="debug", message=message)
        if self.config.verbose:
            display.print_raw(message)

    def error(self, message: str) -> None:
        display.print_error(message, self.revision)

    def fatal(self, message: str, error: type[HarnessError] = TestFailure) -> NoReturn:
        self.error(message)
        raise error(message)

    def fatal_proc_rec(
        self,
        message: str,
        proc_res: ProcRes,
        error: type[TestFailure] = TestFailure,
    ) -> NoReturn:
        self.error(message)
        display.print_proc_res(proc_res)
        raise error(message, proc_res)
