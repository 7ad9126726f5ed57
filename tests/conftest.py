from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import TypeAlias

import pytest
from compiletest.common import Config, Mode

LINUX = "x86_64-unknown-linux-gnu"

ConfigFactory: TypeAlias = Callable[..., Config]


@pytest.fixture
def make_config(tmp_path: Path) -> ConfigFactory:
    def factory(**overrides: object) -> Config:
        values: dict[str, object] = {
            "mode": Mode.UI,
            "compiler_path": Path("rustc"),
            "src_base": tmp_path / "src" / "test" / "ui",
            "build_base": tmp_path / "build",
            "target": LINUX,
            "host": LINUX,
        }
        values.update(overrides)
        return Config(**values)

    return factory


@pytest.fixture
def write_test(tmp_path: Path) -> Callable[..., Path]:
    def writer(name: str, *lines: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return writer


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("RUST_TEST_NOCAPTURE", "RUST_TEST_THREADS", "COMPILETEST_LOG_PATH"):
        monkeypatch.delenv(key, raising=False)
