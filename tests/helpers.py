"""Plain helpers shared by test modules (importable via ``pythonpath``)."""

from __future__ import annotations

import asyncio
import os
import re
import stat
import subprocess
import sys
import textwrap
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

from agent_conductor.domain.models import ExecutionResult, WorkItem
from agent_conductor.synthesis_plane.agents import (
    CANCELLED_MESSAGE,
    AgentAdapter,
    AgentAvailability,
    AgentEvent,
    AgentHandle,
    AsyncEventQueue,
    ExecuteParams,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from pathlib import Path

_TASK_ID_RE = re.compile(r"^Task ID: (\S+)$", re.MULTILINE)


def make_item(item_id: str = "item-1", **overrides: object) -> WorkItem:
    fields: dict[str, object] = {"id": item_id, "title": f"Fix {item_id}"}
    fields.update(overrides)
    return WorkItem(**fields)  # type: ignore[arg-type]


def git(cwd: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        env=env,
        text=True,
        capture_output=True,
        check=False,
    )
    if check and completed.returncode != 0:
        msg = (
            f"git command failed: git {' '.join(args)}\n"
            f"stdout:\n{completed.stdout}\nstderr:\n{completed.stderr}"
        )
        raise AssertionError(msg)
    return completed


def commit_file(worktree: Path, rel_path: str, content: str, message: str) -> str:
    path = worktree / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    git(worktree, "add", "--all")
    git(worktree, "commit", "-m", message)
    return git(worktree, "rev-parse", "HEAD").stdout.strip()


def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script that stands in for an agent CLI."""

    path.write_text(
        f"#!{sys.executable}\n" + textwrap.dedent(body).lstrip("\n"),
        encoding="utf-8",
    )
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@dataclass(frozen=True)
class Step:
    """One scripted agent execution."""

    events: tuple[AgentEvent, ...] = ()
    success: bool = True
    error: str | None = None
    exit_code: int | None = 0
    tokens: int = 0
    files: tuple[str, ...] = ()
    delay_seconds: float = 0.0
    block: bool = False


FAIL_CRASH = Step(success=False, error="agent crashed: segmentation fault", exit_code=1)


class FakeAgentAdapter(AgentAdapter):
    """
    In-memory adapter replaying scripted steps per work item.

    The work item is recovered from the ``Task ID:`` line of the prompt. Items
    without a script left run ``default``.
    """

    provider_id: ClassVar[str] = "fake"
    display_name: ClassVar[str] = "Fake agent"

    def __init__(
        self,
        scripts: Mapping[str, Iterable[Step]] | None = None,
        *,
        default: Step | None = None,
        available: bool = True,
    ) -> None:
        self._scripts = {key: list(steps) for key, steps in (scripts or {}).items()}
        self._default = default or Step()
        self._available = available
        self._abort_signals: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []
        self.params: list[ExecuteParams] = []
        self.aborted: list[str] = []
        self.active = 0
        self.peak = 0

    async def check_availability(self) -> AgentAvailability:
        if self._available:
            return AgentAvailability(available=True, version="1.0.0")
        return AgentAvailability(available=False, error="fake agent disabled")

    async def execute(self, params: ExecuteParams) -> AgentHandle:
        match = _TASK_ID_RE.search(params.prompt)
        item_id = match.group(1) if match else params.execution_id
        self.calls.append(item_id)
        self.params.append(params)
        steps = self._scripts.get(item_id)
        step = steps.pop(0) if steps else self._default

        events: AsyncEventQueue[AgentEvent] = AsyncEventQueue()
        aborted = asyncio.Event()
        self._abort_signals[params.execution_id] = aborted
        result = asyncio.ensure_future(self._play(params.execution_id, step, events, aborted))
        return AgentHandle(
            execution_id=params.execution_id,
            provider_id=self.provider_id,
            pid=None,
            events=events,
            result=result,
        )

    async def abort(self, execution_id: str) -> None:
        self.aborted.append(execution_id)
        signal = self._abort_signals.get(execution_id)
        if signal is not None:
            signal.set()

    async def _play(
        self,
        execution_id: str,
        step: Step,
        events: AsyncEventQueue[AgentEvent],
        aborted: asyncio.Event,
    ) -> ExecutionResult:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            for event in step.events:
                events.push(event)
                await asyncio.sleep(0)
            if step.block:
                await aborted.wait()
            elif step.delay_seconds > 0:
                try:
                    await asyncio.wait_for(aborted.wait(), timeout=step.delay_seconds)
                except TimeoutError:
                    pass
            if aborted.is_set():
                return ExecutionResult(
                    success=False,
                    exit_code=-15,
                    total_tokens_used=step.tokens,
                    error=CANCELLED_MESSAGE,
                )
            return ExecutionResult(
                success=step.success,
                exit_code=step.exit_code,
                total_tokens_used=step.tokens,
                files_changed=step.files,
                error=step.error,
            )
        finally:
            self.active -= 1
            self._abort_signals.pop(execution_id, None)
            events.close()


class OtherAgentAdapter(FakeAgentAdapter):
    provider_id: ClassVar[str] = "other"
    display_name: ClassVar[str] = "Other fake agent"
