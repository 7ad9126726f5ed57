from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

from .common import Config, Mode
from .driver import run_tests
from .util import make_program

JOBS_ENV = "COMPILETEST_JOBS"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="compiletest",
        description="Compile and run directive-annotated compiler test cases.",
    )
    parser.add_argument("--mode", required=True, choices=[mode.value for mode in Mode])
    parser.add_argument("--src-base", type=Path, required=True, help="directory containing the tests")
    parser.add_argument("--build-base", type=Path, required=True, help="directory to deposit test outputs")
    parser.add_argument("--compiler-path", type=Path, required=True)
    parser.add_argument("--doc-generator-path", type=Path, default=None)
    parser.add_argument("--compile-lib-path", type=Path, default=Path())
    parser.add_argument("--run-lib-path", type=Path, default=Path())
    parser.add_argument("--stage-id", default="stage1", help="the target-stage identifier")
    parser.add_argument("--target", required=True)
    parser.add_argument("--host", required=True)
    parser.add_argument(
        "--host-flags",
        default=None,
        help="compiler flags for the host, passed as `--host-flags=-C...`",
    )
    parser.add_argument(
        "--target-flags",
        default=None,
        help="compiler flags for the target, passed as `--target-flags=-C...`",
    )
    parser.add_argument("--runtool", default=None, help="wrapper to run compiled programs under")
    parser.add_argument("--linker", default=None)
    parser.add_argument("--nodejs", default=None, help="node binary for emscripten and wasm32 tests")
    parser.add_argument("--remote-test-client", type=Path, default=None)
    parser.add_argument("--python", default="python3")
    parser.add_argument("--make", default=None, help="make program for run-make tests")
    parser.add_argument("--system-llvm", action="store_true")
    parser.add_argument("--llvm-version", default=None)
    parser.add_argument("--llvm-components", default="")
    parser.add_argument("--llvm-cxxflags", default="")
    parser.add_argument("--cc", default="cc")
    parser.add_argument("--cxx", default="c++")
    parser.add_argument("--cflags", default="")
    parser.add_argument("--ar", default="ar")
    parser.add_argument("--android-device-available", action="store_true")
    parser.add_argument("--verbose", action="store_true", help="dump command lines and outputs")
    parser.add_argument("--quiet", action="store_true", help="print one character per test")
    parser.add_argument("--exact", action="store_true", help="filters match exactly")
    parser.add_argument("--ignored", action="store_true", help="run only tests marked as ignored")
    parser.add_argument(
        "--jobs",
        type=int,
        default=int(os.environ[JOBS_ENV]) if os.environ.get(JOBS_ENV) else None,
    )
    parser.add_argument("--test-suffix", default=".rs")
    parser.add_argument("filter", nargs="?", default=None)
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    return Config(
        mode=Mode(args.mode),
        compiler_path=args.compiler_path,
        src_base=args.src_base,
        build_base=args.build_base,
        compile_lib_path=args.compile_lib_path,
        run_lib_path=args.run_lib_path,
        stage_id=args.stage_id,
        target=args.target,
        host=args.host,
        doc_generator_path=args.doc_generator_path,
        python=args.python,
        make_path=args.make or make_program(args.host),
        remote_test_client=args.remote_test_client,
        nodejs=args.nodejs,
        host_compiler_flags=args.host_flags,
        target_compiler_flags=args.target_flags,
        runtool=args.runtool,
        linker=args.linker,
        system_llvm=args.system_llvm,
        llvm_version=args.llvm_version,
        llvm_components=args.llvm_components,
        llvm_cxxflags=args.llvm_cxxflags,
        cc=args.cc,
        cxx=args.cxx,
        cflags=args.cflags,
        ar=args.ar,
        verbose=args.verbose,
        quiet=args.quiet,
        filter=args.filter,
        filter_exact=args.exact,
        run_ignored=args.ignored,
        android_device_available=args.android_device_available,
        test_suffix=args.test_suffix,
        jobs=args.jobs,
    )


def main(argv: list[str] | None = None) -> None:
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file)
    else:
        load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = config_from_args(args)
    except ValidationError as error:
        parser.error(str(error))

    if not config.src_base.is_dir():
        parser.error(f"--src-base `{config.src_base}` is not a directory")

    summary = run_tests(config)
    sys.exit(0 if summary.ok else 1)


if __name__ == "__main__":
    main()
