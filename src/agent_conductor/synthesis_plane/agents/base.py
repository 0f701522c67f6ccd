"""
agent-conductor — agent adapter contract and the shared CLI subprocess driver.

Purpose
- Define the uniform execute/abort/probe contract every provider variant implements.
- Drive one external agent executable per execution: shell-free argv, explicit
  environment, line-by-line output parsing, wall-clock timeout, and two-phase abort.

Security
- Never inherits nested agent-session markers into the child environment.
- Never connects standard input, so an interactive prompt cannot hang a run.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import re
import shutil
import signal
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Final

from agent_conductor.constants import (
    ALLOW_COMMITS_ENV_VAR,
    DEFAULT_JOB_TIMEOUT_SECONDS,
    DEFAULT_TOKEN_CEILING,
    NESTED_SESSION_ENV_VARS,
    TOKEN_BUDGET_ENV_VAR,
)
from agent_conductor.domain.models import ExecutionResult
from agent_conductor.errors import AgentError
from agent_conductor.synthesis_plane.agents.events import AgentEvent, ErrorEvent, OutputEvent
from agent_conductor.synthesis_plane.agents.protocol import ProtocolParser
from agent_conductor.synthesis_plane.agents.stream import AsyncEventQueue

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE: Final[str] = "execution was cancelled"

_STREAM_LINE_LIMIT: Final[int] = 1024 * 1024
_FAILURE_TAIL_LINES: Final[int] = 20
_PROBE_TIMEOUT_SECONDS: Final[float] = 5.0
_VERSION_RE: Final[re.Pattern[str]] = re.compile(r"(\d+\.\d+\.\d+)")


@dataclass(frozen=True, slots=True)
class AgentAvailability:
    """Result of a side-effect-free availability probe."""

    available: bool
    version: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ExecuteParams:
    """Inputs for one agent execution."""

    execution_id: str
    working_directory: Path
    prompt: str
    target_files: tuple[str, ...] = ()
    token_budget: int = DEFAULT_TOKEN_CEILING
    allow_commits: bool = False
    timeout_seconds: float = DEFAULT_JOB_TIMEOUT_SECONDS
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.execution_id.strip():
            raise ValueError("execution_id must not be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.token_budget <= 0:
            raise ValueError("token_budget must be > 0")


@dataclass(slots=True)
class AgentHandle:
    """Live binding to one external agent process."""

    execution_id: str
    provider_id: str
    pid: int | None
    events: AsyncEventQueue[AgentEvent]
    result: asyncio.Future[ExecutionResult]


class AgentAdapter(ABC):
    """Uniform contract implemented by every provider variant."""

    provider_id: ClassVar[str]
    display_name: ClassVar[str]

    @abstractmethod
    async def check_availability(self) -> AgentAvailability:
        """Probe whether the provider can run, without side effects."""

    @abstractmethod
    async def execute(self, params: ExecuteParams) -> AgentHandle:
        """Start an execution and return its live handle."""

    @abstractmethod
    async def abort(self, execution_id: str) -> None:
        """Terminate a running execution; unknown ids are ignored."""

    def estimate_tokens(self, text: str) -> int:
        if not text:
            return 0
        return max(1, math.ceil(len(text) / 4))


@dataclass(slots=True)
class _RunningExecution:
    process: asyncio.subprocess.Process
    cancelled: bool = False


class CliAgentAdapter(AgentAdapter):
    """Shared driver for agent CLIs that stream line-oriented output."""

    default_binary: ClassVar[str]
    abort_grace_seconds: ClassVar[float] = 2.0
    probe_falls_back_to_path: ClassVar[bool] = True

    def __init__(
        self,
        *,
        binary: str | None = None,
        model: str | None = None,
        base_env: Mapping[str, str] | None = None,
        probe_timeout_seconds: float = _PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self._binary = binary or self.default_binary
        self._model = model
        self._base_env = base_env
        self._probe_timeout_seconds = probe_timeout_seconds
        self._running: dict[str, _RunningExecution] = {}

    @property
    def binary(self) -> str:
        return self._binary

    @property
    def running_ids(self) -> tuple[str, ...]:
        return tuple(self._running)

    @abstractmethod
    def build_command(self, params: ExecuteParams) -> list[str]:
        """Return the full argv (binary first) for ``params``."""

    def build_environment(self, overrides: Mapping[str, str] | None = None) -> dict[str, str]:
        """Inherited environment plus ``overrides``, minus nested-session markers."""

        env = dict(os.environ if self._base_env is None else self._base_env)
        env.update(overrides or {})
        for name in NESTED_SESSION_ENV_VARS:
            env.pop(name, None)
        return env

    async def check_availability(self) -> AgentAvailability:
        try:
            process = await asyncio.create_subprocess_exec(
                self._binary,
                "--version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_environment(),
                start_new_session=True,
            )
        except OSError as exc:
            return self._path_fallback(f"{self._binary} could not be started: {exc}")

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._probe_timeout_seconds
            )
        except TimeoutError:
            await terminate_process(process, grace_seconds=0.5)
            return self._path_fallback(
                f"{self._binary} --version timed out after {self._probe_timeout_seconds}s"
            )

        output = stdout.decode("utf-8", errors="replace").strip()
        if process.returncode == 0:
            return AgentAvailability(available=True, version=_parse_version(output))
        detail = stderr.decode("utf-8", errors="replace").strip()
        return self._path_fallback(
            detail or f"{self._binary} --version exited with code {process.returncode}"
        )

    async def execute(self, params: ExecuteParams) -> AgentHandle:
        if params.execution_id in self._running:
            raise AgentError(
                f"execution already running: {params.execution_id}",
                job_id=params.execution_id,
            )

        argv = self.build_command(params)
        env = self.build_environment(
            {
                **params.env,
                TOKEN_BUDGET_ENV_VAR: str(params.token_budget),
                ALLOW_COMMITS_ENV_VAR: "true" if params.allow_commits else "false",
            }
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(params.working_directory),
                env=env,
                limit=_STREAM_LINE_LIMIT,
                start_new_session=True,
            )
        except OSError as exc:
            raise AgentError(
                f"unable to start {self.provider_id} ({self._binary}): {exc}",
                job_id=params.execution_id,
            ) from exc

        running = _RunningExecution(process=process)
        self._running[params.execution_id] = running
        events: AsyncEventQueue[AgentEvent] = AsyncEventQueue()
        logger.info(
            "agent process started",
            extra={
                "provider": self.provider_id,
                "execution_id": params.execution_id,
                "pid": process.pid,
            },
        )
        result = asyncio.ensure_future(self._supervise(params, running, events))
        return AgentHandle(
            execution_id=params.execution_id,
            provider_id=self.provider_id,
            pid=process.pid,
            events=events,
            result=result,
        )

    async def abort(self, execution_id: str) -> None:
        running = self._running.get(execution_id)
        if running is None:
            return
        running.cancelled = True
        logger.info(
            "aborting agent process",
            extra={"provider": self.provider_id, "execution_id": execution_id},
        )
        await terminate_process(running.process, grace_seconds=self.abort_grace_seconds)

    async def _supervise(
        self,
        params: ExecuteParams,
        running: _RunningExecution,
        events: AsyncEventQueue[AgentEvent],
    ) -> ExecutionResult:
        process = running.process
        parser = ProtocolParser(error_label=self.provider_id)
        stderr_tail: deque[str] = deque(maxlen=_FAILURE_TAIL_LINES)
        stdout_tail: deque[str] = deque(maxlen=_FAILURE_TAIL_LINES)
        started = time.monotonic()

        async def pump(reader: asyncio.StreamReader | None, stream: str) -> None:
            if reader is None:
                return
            tail = stderr_tail if stream == "stderr" else stdout_tail
            while True:
                try:
                    raw = await reader.readline()
                except ValueError:
                    events.push(OutputEvent(content="[output line exceeded limit]", stream=stream))
                    continue
                if not raw:
                    return
                text = raw.decode("utf-8", errors="replace")
                if text.strip():
                    tail.append(text.strip())
                for event in parser.parse_line(text, stream):
                    events.push(event)

        def finish(*, success: bool, error: str | None) -> ExecutionResult:
            return ExecutionResult(
                success=success,
                exit_code=process.returncode,
                total_tokens_used=parser.total_tokens,
                files_changed=parser.files_changed,
                duration_seconds=time.monotonic() - started,
                error=error,
            )

        try:
            try:
                await asyncio.wait_for(
                    asyncio.gather(
                        pump(process.stdout, "stdout"),
                        pump(process.stderr, "stderr"),
                        process.wait(),
                    ),
                    timeout=params.timeout_seconds,
                )
            except TimeoutError:
                await terminate_process(process, grace_seconds=0.0)
                if running.cancelled:
                    return finish(success=False, error=CANCELLED_MESSAGE)
                message = (
                    f"{self.provider_id} execution timed out after {params.timeout_seconds}s"
                )
                events.push(ErrorEvent(message=message, recoverable=True))
                return finish(success=False, error=message)

            if running.cancelled:
                return finish(success=False, error=CANCELLED_MESSAGE)
            if process.returncode == 0:
                return finish(success=True, error=None)
            return finish(
                success=False,
                error=_failure_message(self.provider_id, process.returncode, stderr_tail, stdout_tail),
            )
        except asyncio.CancelledError:
            running.cancelled = True
            await asyncio.shield(terminate_process(process, grace_seconds=0.0))
            raise
        except Exception as exc:
            events.push(ErrorEvent(message=str(exc), recoverable=False))
            events.fail(exc)
            raise
        finally:
            self._running.pop(params.execution_id, None)
            events.close()
            logger.info(
                "agent process exited",
                extra={
                    "provider": self.provider_id,
                    "execution_id": params.execution_id,
                    "exit_code": process.returncode,
                },
            )

    def _path_fallback(self, error: str) -> AgentAvailability:
        if self.probe_falls_back_to_path and shutil.which(self._binary) is not None:
            return AgentAvailability(available=True)
        return AgentAvailability(available=False, error=error)


async def terminate_process(
    process: asyncio.subprocess.Process,
    *,
    grace_seconds: float,
) -> None:
    """
    Stop ``process`` and wait for it to exit.

    Sends SIGTERM to the process group first and escalates to SIGKILL once
    ``grace_seconds`` elapse. The escalation timer is cancelled as soon as the
    process exits, so it never keeps the event loop busy.
    """

    if process.returncode is not None:
        return
    if grace_seconds <= 0:
        _signal_process(process, signal.SIGKILL)
        await process.wait()
        return

    loop = asyncio.get_running_loop()
    _signal_process(process, signal.SIGTERM)
    kill_timer = loop.call_later(grace_seconds, _signal_process, process, signal.SIGKILL)
    try:
        await process.wait()
    finally:
        kill_timer.cancel()


def _signal_process(process: asyncio.subprocess.Process, signum: int) -> None:
    if process.returncode is not None:
        return
    with suppress(ProcessLookupError, PermissionError):
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signum)
        else:
            process.send_signal(signum)


def _failure_message(
    provider_id: str,
    exit_code: int | None,
    stderr_tail: deque[str],
    stdout_tail: deque[str],
) -> str:
    if stderr_tail:
        return "\n".join(stderr_tail)
    if stdout_tail:
        return "\n".join(stdout_tail)
    return f"{provider_id} process exited with code {exit_code}"


def _parse_version(output: str) -> str | None:
    match = _VERSION_RE.search(output)
    if match is not None:
        return match.group(1)
    first_line = output.splitlines()[0].strip() if output else ""
    return first_line or None


__all__ = [
    "CANCELLED_MESSAGE",
    "AgentAdapter",
    "AgentAvailability",
    "AgentHandle",
    "CliAgentAdapter",
    "ExecuteParams",
    "terminate_process",
]
