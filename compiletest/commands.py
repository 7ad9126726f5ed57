"""
Invocation builders for every phase of a test.

Nothing here spawns processes; each method returns a ProcCommand (or an
argument list) for runtest to execute.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel

from . import util
from .common import Config, Mode, TestPaths
from .errors import MissingFile
from .header import TestProps
from .procio import ProcCommand

RUNTIME_FAILURE_STATUS = 101
ANALYZER_FAILURE_STATUS = 100
WASM_SHIM = Path("src/etc/wasm32-shim.js")


class TargetLocation(BaseModel):
    path: Path
    is_dir: bool = False


def lib_path_env(lib_path: Path | str, aux_path: Path | str | None = None) -> tuple[str, str]:
    """Dylib search variable with `lib_path` and `aux_path` ahead of the current value."""
    var = util.dylib_env_var()
    entries = [str(lib_path)]
    if aux_path is not None:
        entries.append(str(aux_path))
    existing = os.environ.get(var)
    if existing:
        entries.extend(existing.split(os.pathsep))
    return var, os.pathsep.join(entries)


def aux_crate_type(config: Config, aux_props: TestProps) -> str | None:
    """
    Auxiliaries are dynamic libraries unless the target cannot load them.

    musl, wasm32 and emscripten fall back to a plain library; a `force-host`
    auxiliary on musl stays dynamic since the host supports dylibs.
    """
    if aux_props.no_prefer_dynamic:
        return None
    target = config.target
    if util.lacks_dylib_support(target) and not (aux_props.force_host and "musl" in target):
        return "lib"
    return "dylib"


class CommandBuilder:
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

    # -- output locations ----------------------------------------------------

    def output_testname(self, filepath: Path) -> str:
        return filepath.stem

    def output_base_name(self) -> Path:
        """`<build_base>/<relative_dir>/<stem>.<stage_id>`."""
        directory = self.config.build_base / self.testpaths.relative_dir
        return directory / f"{self.output_testname(self.testpaths.file)}.{self.config.stage_id}"

    def make_out_name(self, extension: str) -> Path:
        base = self.output_base_name()
        return base.with_name(f"{base.name}.{extension}")

    def aux_output_dir_name(self) -> Path:
        base = self.output_base_name()
        return base.with_name(f"{base.name}{self.config.mode.disambiguator()}.aux")

    def incremental_dir(self) -> Path | None:
        if not self.props.incremental:
            return None
        return self.make_out_name("inc")

    def make_exe_name(self, platform: str | None = None) -> Path:
        exe = self.output_base_name()
        target = self.config.target
        if "emscripten" in target:
            return exe.with_name(exe.name + ".js")
        if "wasm32" in target:
            return exe.with_name(exe.name + ".wasm")
        suffix = util.exe_suffix(platform)
        if suffix:
            return exe.with_name(exe.name + suffix)
        return exe

    # -- compiler invocations ------------------------------------------------

    def target_triple(self) -> str:
        return self.config.host if self.props.force_host else self.config.target

    def compiler(self) -> ProcCommand:
        return ProcCommand(program=str(self.config.compiler_path))

    def make_compile_args(self, input_file: Path, output: TargetLocation) -> ProcCommand:
        config = self.config
        props = self.props
        command = self.compiler().arg(input_file, "-L", config.build_base)

        custom_target = any(flag.startswith("--target") for flag in props.compile_flags)
        if not custom_target:
            command.arg(f"--target={self.target_triple()}")

        if self.revision is not None:
            command.arg("--cfg", self.revision)

        incremental_dir = self.incremental_dir()
        if incremental_dir is not None:
            command.arg("-Z", f"incremental={incremental_dir}")
            command.arg("-Z", "incremental-verify-ich")
            command.arg("-Z", "incremental-queries")

        # Error patterns match the human-readable output; expected errors are
        # matched against JSON diagnostics.
        if config.mode is Mode.COMPILE_FAIL and not props.error_patterns:
            command.arg("--error-format", "json")

        if config.target != "wasm32-unknown-unknown" and not props.no_prefer_dynamic:
            command.arg("-C", "prefer-dynamic")

        if output.is_dir:
            command.arg("--out-dir", output.path)
        else:
            command.arg("-o", output.path)

        if props.force_host:
            command.arg(*util.split_maybe_args(config.host_compiler_flags))
        else:
            command.arg(*util.split_maybe_args(config.target_compiler_flags))

        if config.linker is not None:
            command.arg(f"-Clinker={config.linker}")

        command.arg(*props.compile_flags)
        return command

    def make_test_compile_args(self) -> ProcCommand:
        command = self.make_compile_args(
            self.testpaths.file,
            TargetLocation(path=self.make_exe_name()),
        )
        command.arg("-L", self.aux_output_dir_name())
        if self.config.mode in {Mode.COMPILE_FAIL, Mode.UI}:
            # These suites are full of deliberately unused code.
            command.arg("-A", "unused")
        return command

    def make_aux_compile_args(self, aux_file: Path, aux_dir: Path, crate_type: str | None) -> ProcCommand:
        command = self.make_compile_args(aux_file, TargetLocation(path=aux_dir, is_dir=True))
        if crate_type is not None:
            command.arg("--crate-type", crate_type)
        command.arg("-L", aux_dir)
        return command

    def make_print_args(self, pretty_type: str) -> ProcCommand:
        command = self.compiler().arg(
            "-",
            "-Z",
            f"unpretty={pretty_type}",
            "--target",
            self.config.target,
            "-L",
            self.aux_output_dir_name(),
        )
        command.arg(*util.split_maybe_args(self.config.target_compiler_flags))
        command.arg(*self.props.compile_flags)
        return command.envs(self.props.exec_env)

    def make_typecheck_args(self, out_dir: Path) -> ProcCommand:
        command = self.compiler().arg(
            "-",
            "-Zno-trans",
            "--out-dir",
            out_dir,
            f"--target={self.target_triple()}",
            "-L",
            self.config.build_base,
            "-L",
            self.aux_output_dir_name(),
        )
        if self.revision is not None:
            command.arg("--cfg", self.revision)
        command.arg(*util.split_maybe_args(self.config.target_compiler_flags))
        command.arg(*self.props.compile_flags)
        return command

    # -- running the compiled program ----------------------------------------

    def make_run_args(self) -> list[str]:
        """Program followed by its arguments; the program is element 0."""
        config = self.config
        args = util.split_maybe_args(config.runtool)

        if "emscripten" in config.target or "wasm32" in config.target:
            if config.nodejs is None:
                raise MissingFile("no NodeJS binary found (--nodejs)")
            args.append(config.nodejs)
            if "wasm32" in config.target:
                args.append(str(config.src_root() / WASM_SHIM))

        args.append(str(self.make_exe_name()))
        args.extend(util.split_maybe_args(self.props.run_flags))
        return args

    def make_exec_command(self) -> ProcCommand:
        run_args = self.make_run_args()
        aux_dir = self.aux_output_dir_name()
        if self.config.remote_test_client is not None:
            return self.make_remote_args(run_args, aux_dir)
        return ProcCommand(
            program=run_args[0],
            args=run_args[1:],
            cwd=self.output_base_name().parent,
        ).envs(self.props.exec_env)

    def make_remote_args(self, run_args: list[str], aux_dir: Path) -> ProcCommand:
        """
        `program arg1 arg2` becomes `client run program:lib1:lib2 arg1 arg2`;
        the client uploads every colon-separated file before running.
        """
        assert self.config.remote_test_client is not None
        program = run_args[0]
        if aux_dir.is_dir():
            for entry in sorted(aux_dir.iterdir()):
                if entry.is_file():
                    program += f":{entry}"
        return ProcCommand(
            program=str(self.config.remote_test_client),
            args=["run", program, *run_args[1:]],
        ).envs(self.props.exec_env)

    # -- run-make ------------------------------------------------------------

    def make_make_command(self, cwd: Path, tmpdir: Path) -> ProcCommand:
        config = self.config
        if config.doc_generator_path is None:
            raise MissingFile("run-make tests need --doc-generator-path")
        src_root = cwd / config.src_root()
        make = config.make_path or util.make_program(config.host)

        command = ProcCommand(program=make, cwd=self.testpaths.file)
        command.envs(
            [
                ("TARGET", config.target),
                ("PYTHON", config.python),
                ("S", str(src_root)),
                ("RUST_BUILD_STAGE", config.stage_id),
                ("RUSTC", str(cwd / config.compiler_path)),
                ("RUSTDOC", str(cwd / config.doc_generator_path)),
                ("TMPDIR", str(tmpdir)),
                ("LD_LIB_PATH_ENVVAR", util.dylib_env_var()),
                ("HOST_RPATH_DIR", str(cwd / config.compile_lib_path)),
                ("TARGET_RPATH_DIR", str(cwd / config.run_lib_path)),
                ("LLVM_COMPONENTS", config.llvm_components),
                ("LLVM_CXXFLAGS", config.llvm_cxxflags),
            ]
        )
        if config.linker is not None:
            command.envs([("RUSTC_LINKER", config.linker)])

        # Flags from the outer environment must not leak into test builds.
        command.env_remove.append("RUSTFLAGS")

        if "msvc" in config.target:
            # `lib.exe` lives next to `cl.exe`; MSYS mangles `/flag` arguments.
            lib = Path(config.cc).parent / "lib.exe"
            cflags = " ".join(part.replace("/", "-") for part in config.cflags.split(" "))
            command.envs(
                [
                    ("IS_MSVC", "1"),
                    ("IS_WINDOWS", "1"),
                    ("MSVC_LIB", f"'{lib}' -nologo"),
                    ("CC", f"'{config.cc}' {cflags}"),
                    ("CXX", config.cxx),
                ]
            )
        else:
            command.envs(
                [
                    ("CC", f"{config.cc} {config.cflags}"),
                    ("CXX", f"{config.cxx} {config.cflags}"),
                    ("AR", config.ar),
                ]
            )
            if "windows" in config.target:
                command.envs([("IS_WINDOWS", "1")])
        return command
