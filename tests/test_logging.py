from __future__ import annotations

import json
from pathlib import Path

import pytest
from compiletest.logging import (
    LOG_PATH_ENV,
    get_log_context,
    log_context,
    log_event,
)


def test_context_is_merged_and_restored() -> None:
    with log_context(test="[ui] ui/foo.rs", mode="ui"):
        with log_context(revision="a"):
            record = log_event(event="test.start", message="hello", extra=1, skipped=None)
        assert get_log_context() == {"test": "[ui] ui/foo.rs", "mode": "ui"}
    assert get_log_context() == {}

    assert record["event"] == "test.start"
    assert record["component"] == "compiletest"
    assert record["revision"] == "a"
    assert record["extra"] == 1
    assert "skipped" not in record


def test_events_written_as_json_lines(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    log_path = tmp_path / "logs" / "run.jsonl"
    monkeypatch.setenv(LOG_PATH_ENV, str(log_path))

    log_event(event="command.start", message="rustc foo.rs", cwd=tmp_path)
    log_event(event="command.complete", level="error", exit_code=1)

    records = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert [record["event"] for record in records] == ["command.start", "command.complete"]
    assert records[0]["cwd"] == str(tmp_path)
    assert records[1]["level"] == "error"


def test_none_in_context_unbinds_a_field() -> None:
    with log_context(test="[ui] ui/foo.rs", revision="a"):
        with log_context(revision=None):
            record = log_event(event="test.step")
            assert get_log_context() == {"test": "[ui] ui/foo.rs"}
        assert get_log_context()["revision"] == "a"
    assert "revision" not in record
    assert record["test"] == "[ui] ui/foo.rs"
