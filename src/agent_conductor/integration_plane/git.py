"""Async git subprocess runner with hard and rolling-inactivity timeouts."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Final

DEFAULT_GIT_TIMEOUT_SECONDS: Final[float] = 60.0
_READ_CHUNK_BYTES: Final[int] = 4096


class GitCommandError(RuntimeError):
    """Raised when a git subprocess exits non-zero or times out."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int | None,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class GitResult:
    """Normalized result of one git invocation."""

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def git_environment(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    """Inherited environment with credential prompting disabled."""

    env = os.environ.copy()
    env.update(overrides or {})
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_ASKPASS", "")
    env.setdefault("GCM_INTERACTIVE", "never")
    return env


async def run_git(
    args: Sequence[str],
    *,
    cwd: Path | str,
    check: bool = True,
    timeout_seconds: float | None = DEFAULT_GIT_TIMEOUT_SECONDS,
    inactivity_timeout_seconds: float | None = None,
    env: Mapping[str, str] | None = None,
) -> GitResult:
    """
    Run ``git *args`` in ``cwd`` and capture its output.

    ``timeout_seconds`` bounds total wall time. ``inactivity_timeout_seconds``
    kills the process if neither stdout nor stderr produced output for that long,
    which suits long clones that report progress.
    """

    command = ("git", *args)
    process = await asyncio.create_subprocess_exec(
        *command,
        cwd=str(cwd),
        env=git_environment(env),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    loop = asyncio.get_running_loop()
    started = loop.time()
    last_activity = started
    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []

    async def drain(reader: asyncio.StreamReader | None, sink: list[bytes]) -> None:
        nonlocal last_activity
        if reader is None:
            return
        while True:
            chunk = await reader.read(_READ_CHUNK_BYTES)
            if not chunk:
                return
            sink.append(chunk)
            last_activity = loop.time()

    readers = asyncio.gather(
        drain(process.stdout, stdout_chunks),
        drain(process.stderr, stderr_chunks),
        process.wait(),
    )
    timeout_reason: str | None = None
    try:
        while not readers.done():
            deadlines: list[float] = []
            if timeout_seconds is not None:
                deadlines.append(started + timeout_seconds)
            if inactivity_timeout_seconds is not None:
                deadlines.append(last_activity + inactivity_timeout_seconds)
            remaining = min(deadlines) - loop.time() if deadlines else None
            if remaining is not None and remaining <= 0:
                if timeout_seconds is not None and loop.time() >= started + timeout_seconds:
                    timeout_reason = f"timed out after {timeout_seconds}s"
                else:
                    timeout_reason = f"timed out after {inactivity_timeout_seconds}s without output"
                break
            await asyncio.wait({readers}, timeout=remaining)
    finally:
        if not readers.done():
            with suppress(ProcessLookupError):
                process.kill()
            readers.cancel()
            with suppress(asyncio.CancelledError):
                await readers
            await process.wait()
    if timeout_reason is None:
        readers.result()

    stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
    stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
    if timeout_reason is not None:
        raise GitCommandError(
            command=command,
            returncode=process.returncode,
            stdout=stdout,
            stderr=f"{stderr.strip()}\ngit {args[0] if args else ''} {timeout_reason}".strip(),
        )

    returncode = process.returncode if process.returncode is not None else -1
    if check and returncode != 0:
        raise GitCommandError(command=command, returncode=returncode, stdout=stdout, stderr=stderr)
    return GitResult(command=command, returncode=returncode, stdout=stdout, stderr=stderr)


__all__ = [
    "DEFAULT_GIT_TIMEOUT_SECONDS",
    "GitCommandError",
    "GitResult",
    "git_environment",
    "run_git",
]
