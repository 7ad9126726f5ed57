"""Walk the source tree and turn test files into TestPaths."""

from __future__ import annotations

from pathlib import Path

from .common import Config, Mode, TestPaths
from .logging import log_event

IGNORE_DIR_MARKER = "compiletest-ignore-dir"
AUXILIARY_DIR = "auxiliary"
MAKEFILE = "Makefile"
# Common editor temp-file prefixes.
INVALID_PREFIXES = (".", "#", "~")


def is_test(file_name: str, suffix: str = ".rs") -> bool:
    if not file_name.endswith(suffix):
        return False
    return not file_name.startswith(INVALID_PREFIXES)


def is_run_make_test(config: Config, path: Path) -> bool:
    return config.mode is Mode.RUN_MAKE and (path / MAKEFILE).is_file()


def collect_tests(config: Config) -> list[TestPaths]:
    log_event(event="discovery.start", level="debug", message=str(config.src_base))
    tests: list[TestPaths] = []
    collect_tests_from_dir(config, config.src_base, config.src_base, Path(), tests)
    log_event(event="discovery.complete", message=str(config.src_base), tests=len(tests))
    return tests


def collect_tests_from_dir(
    config: Config,
    base: Path,
    directory: Path,
    relative_dir: Path,
    tests: list[TestPaths],
) -> None:
    """
    Append every test below `directory` to `tests`.

    Build directories are created here, before any test runs, so concurrent
    tests never race to create them. `auxiliary` directories are not searched
    but still get a build directory for auxiliary output.
    """
    entries = sorted(directory.iterdir())
    if any(entry.name == IGNORE_DIR_MARKER for entry in entries):
        return

    (config.build_base / relative_dir).mkdir(parents=True, exist_ok=True)

    for entry in entries:
        if entry.is_file() and is_test(entry.name, config.test_suffix):
            log_event(event="discovery.test", level="debug", message=str(entry))
            tests.append(TestPaths(file=entry, base=base, relative_dir=relative_dir))
        elif entry.is_dir():
            relative_path = relative_dir / entry.name
            if entry.name == AUXILIARY_DIR:
                (config.build_base / relative_path).mkdir(parents=True, exist_ok=True)
            elif is_run_make_test(config, entry):
                (config.build_base / relative_path).mkdir(parents=True, exist_ok=True)
                tests.append(TestPaths(file=entry, base=base, relative_dir=relative_dir))
            else:
                collect_tests_from_dir(config, base, entry, relative_path, tests)


def make_test_name(config: Config, testpaths: TestPaths) -> str:
    """`[mode] <suite>/<relative dir>/<file>`, e.g. `[ui] ui/foo/bar.rs`."""
    path = Path(config.src_base.name) / testpaths.relative_dir / testpaths.file.name
    return f"[{config.mode}] {path.as_posix()}"


def stamp_path(config: Config, testpaths: TestPaths) -> Path:
    build_base = config.build_base
    if build_base.exists():
        build_base = build_base.resolve()
    return build_base / f"{testpaths.file.name}-{config.stage_id}.stamp"
