"""
Child process plumbing.

Both pipes are drained concurrently into ProcOutput buffers. A buffer holds
everything until it grows past HEAD_LEN + TAIL_LEN bytes, then keeps the first
HEAD_LEN bytes, a rolling window of the last TAIL_LEN bytes and a count of
what was dropped in between.
"""

from __future__ import annotations

import contextlib
import os
import shlex
import subprocess
import threading
import time
from pathlib import Path
from typing import IO

from pydantic import BaseModel, Field

from .errors import ProcessSpawnError
from .logging import log_event

HEAD_LEN = 160 * 1024
TAIL_LEN = 256 * 1024
READ_CHUNK = 64 * 1024


class ProcOutput:
    def __init__(self) -> None:
        self.head = bytearray()
        self.skipped = 0
        # None while the output is still held in full.
        self.tail: bytearray | None = None

    @property
    def abbreviated(self) -> bool:
        return self.tail is not None

    def extend(self, data: bytes) -> None:
        if self.tail is None:
            self.head.extend(data)
            new_len = len(self.head)
            if new_len <= HEAD_LEN + TAIL_LEN:
                return
            self.tail = bytearray(self.head[new_len - TAIL_LEN :])
            self.skipped = new_len - HEAD_LEN - TAIL_LEN
            del self.head[HEAD_LEN:]
            return

        self.skipped += len(data)
        if len(data) >= TAIL_LEN:
            self.tail[:] = data[len(data) - TAIL_LEN :]
        else:
            # Rotate the window so the newest bytes sit at the end.
            del self.tail[: len(data)]
            self.tail.extend(data)

    def into_bytes(self) -> bytes:
        if self.tail is None:
            return bytes(self.head)
        marker = f"\n\n<<<<<< SKIPPED {self.skipped} BYTES >>>>>>\n\n".encode()
        return bytes(self.head) + marker + bytes(self.tail)


class ProcRes(BaseModel):
    status: int
    stdout: str = ""
    stderr: str = ""
    cmdline: str = ""

    @property
    def success(self) -> bool:
        return self.status == 0

    def describe_status(self) -> str:
        if self.status < 0:
            return f"signal: {-self.status}"
        return f"exit code: {self.status}"


class ProcCommand(BaseModel):
    """A fully assembled child invocation."""

    program: str
    args: list[str] = Field(default_factory=list)
    env: list[tuple[str, str]] = Field(default_factory=list)
    env_remove: list[str] = Field(default_factory=list)
    cwd: Path | None = None

    def arg(self, *values: object) -> ProcCommand:
        self.args.extend(str(value) for value in values)
        return self

    def envs(self, pairs: list[tuple[str, str]]) -> ProcCommand:
        self.env.extend(pairs)
        return self

    def cmdline(self) -> str:
        parts = [shlex.quote(self.program), *(shlex.quote(arg) for arg in self.args)]
        env_prefix = [f"{key}={shlex.quote(value)}" for key, value in self.env]
        return " ".join([*env_prefix, *parts])

    def child_env(self) -> dict[str, str]:
        env = dict(os.environ)
        for key in self.env_remove:
            _ = env.pop(key, None)
        for key, value in self.env:
            env[key] = value
        return env


def _drain(stream: IO[bytes], sink: ProcOutput) -> None:
    while True:
        chunk = stream.read1(READ_CHUNK)
        if not chunk:
            break
        sink.extend(chunk)
    stream.close()


def _feed(stream: IO[bytes], data: bytes) -> None:
    # The child may exit without reading its input.
    with contextlib.suppress(BrokenPipeError):
        if data:
            stream.write(data)
    with contextlib.suppress(BrokenPipeError):
        stream.close()


def read2_abbreviated(
    process: subprocess.Popen[bytes],
    stdin_data: bytes | None = None,
) -> tuple[int, bytes, bytes]:
    """Wait for `process`, capturing both pipes with head/tail abbreviation."""
    stdout = ProcOutput()
    stderr = ProcOutput()
    assert process.stdout is not None and process.stderr is not None

    threads = [
        threading.Thread(target=_drain, args=(process.stdout, stdout), daemon=True),
        threading.Thread(target=_drain, args=(process.stderr, stderr), daemon=True),
    ]
    if process.stdin is not None:
        threads.append(
            threading.Thread(
                target=_feed,
                args=(process.stdin, stdin_data or b""),
                daemon=True,
            )
        )
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    status = process.wait()
    return status, stdout.into_bytes(), stderr.into_bytes()


def run_command(command: ProcCommand, stdin: str | None = None) -> ProcRes:
    cmdline = command.cmdline()
    started = time.monotonic()
    log_event(
        event="command.start",
        message=cmdline,
        cwd=str(command.cwd) if command.cwd is not None else None,
    )
    try:
        process = subprocess.Popen(
            [command.program, *command.args],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=command.cwd,
            env=command.child_env(),
        )
    except OSError as exc:
        log_event(event="command.spawn_failed", level="error", message=cmdline, error=str(exc))
        raise ProcessSpawnError(f"failed to exec `{cmdline}`: {exc}", cmdline=cmdline) from exc

    status, stdout_bytes, stderr_bytes = read2_abbreviated(
        process,
        stdin.encode() if stdin is not None else None,
    )
    result = ProcRes(
        status=status,
        stdout=stdout_bytes.decode(errors="replace"),
        stderr=stderr_bytes.decode(errors="replace"),
        cmdline=cmdline,
    )
    stdout_text = result.stdout.strip()
    stderr_text = result.stderr.strip()
    log_event(
        event="command.complete",
        level="error" if not result.success else "info",
        message=cmdline,
        exit_code=status,
        duration_ms=int((time.monotonic() - started) * 1000),
        stdout_tail=stdout_text[-800:] if stdout_text else None,
        stderr_tail=stderr_text[-800:] if stderr_text else None,
    )
    return result
