from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class Mode(StrEnum):
    COMPILE_FAIL = "compile-fail"
    RUN_FAIL = "run-fail"
    RUN_PASS = "run-pass"
    PRETTY = "pretty"
    RUN_MAKE = "run-make"
    UI = "ui"

    def disambiguator(self) -> str:
        # Pretty tests share their sources with every other suite, so their
        # auxiliary output directories need a distinct name.
        if self is Mode.PRETTY:
            return ".pretty"
        return ""


class Config(BaseModel):
    """Run-wide configuration, built once and shared read-only by every test."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: Mode
    compiler_path: Path
    src_base: Path
    build_base: Path
    compile_lib_path: Path = Path()
    run_lib_path: Path = Path()
    stage_id: str = "stage1"
    target: str
    host: str

    doc_generator_path: Path | None = None
    python: str = "python3"
    make_path: str | None = None
    remote_test_client: Path | None = None
    nodejs: str | None = None

    host_compiler_flags: str | None = None
    target_compiler_flags: str | None = None
    runtool: str | None = None
    linker: str | None = None

    system_llvm: bool = False
    llvm_version: str | None = None
    llvm_components: str = ""
    llvm_cxxflags: str = ""
    cc: str = "cc"
    cxx: str = "c++"
    cflags: str = ""
    ar: str = "ar"

    verbose: bool = False
    quiet: bool = False
    filter: str | None = None
    filter_exact: bool = False
    run_ignored: bool = False
    android_device_available: bool = False
    test_suffix: str = ".rs"
    jobs: int | None = Field(default=None, ge=1)

    def src_root(self) -> Path:
        """Return the checkout root for a `<root>/src/test/<suite>` layout."""
        return self.src_base.parent.parent.parent

    @property
    def is_cross_compile(self) -> bool:
        return self.target != self.host


class TestPaths(BaseModel):
    model_config = ConfigDict(frozen=True)
    __test__: ClassVar[bool] = False

    file: Path
    base: Path
    relative_dir: Path = Path()
