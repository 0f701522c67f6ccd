"""
agent-conductor — unit tests for the job scheduler

What this test file should cover
- Bounded parallelism and priority-ordered admission.
- Retry policy, circuit breaking, and provider rotation.
- Token ceiling enforcement, commit outcomes, and the publish guard.
- Run-wide aborts: operator abort, sandbox loss, and repository preparation failure.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Callable
from pathlib import Path
from typing import ClassVar

import pytest
from helpers import (
    FAIL_CRASH,
    FakeAgentAdapter,
    OtherAgentAdapter,
    Step,
    make_item,
    write_script,
)

from agent_conductor.control_plane.retry import BackoffConfig
from agent_conductor.control_plane.scheduler import (
    JobScheduler,
    SchedulerLimits,
    stage_for_event,
)
from agent_conductor.domain.models import JobStatus, LinkedIssue, WorkItem
from agent_conductor.errors import (
    AgentError,
    ConfigurationError,
    ErrorKind,
    RepositoryError,
    SandboxError,
)
from agent_conductor.integration_plane.guard import PublishDecision
from agent_conductor.integration_plane.sandbox import CommitOutcome, Sandbox
from agent_conductor.observability.events import EventBus, EventType
from agent_conductor.synthesis_plane.agents import (
    CliAgentAdapter,
    ErrorEvent,
    ExecuteParams,
    FileAction,
    FileEditEvent,
    OutputEvent,
    TokenEvent,
    ToolUseEvent,
)


class FakeSandboxes:
    def __init__(
        self,
        root: Path,
        *,
        fail_with: Exception | None = None,
        release_error: str | None = None,
    ) -> None:
        self._root = root
        self._fail_with = fail_with
        self._release_error = release_error
        self.acquired: list[str] = []
        self.released: list[str] = []

    async def acquire(
        self,
        base_branch: str,
        job_id: str,
        *,
        branch_name: str | None = None,
    ) -> Sandbox:
        if self._fail_with is not None:
            raise self._fail_with
        branch = branch_name or f"oac/{job_id}"
        path = self._root / job_id / str(len(self.acquired))
        path.mkdir(parents=True)
        self.acquired.append(branch)
        return Sandbox(
            path=path,
            branch_name=branch,
            base_branch=base_branch,
            start_point=base_branch,
            job_id=job_id,
            _manager=self,  # type: ignore[arg-type]
        )

    async def release(self, sandbox: Sandbox) -> str | None:
        self.released.append(sandbox.branch_name)
        return self._release_error


class FakeGuard:
    def __init__(self, decision: PublishDecision) -> None:
        self._decision = decision
        self.checked: list[str] = []

    async def check_before_publish(self, item: WorkItem) -> PublishDecision:
        self.checked.append(item.id)
        return self._decision


def committing(files: tuple[str, ...] = ("src/app.py",)) -> Callable[..., object]:
    async def commit(sandbox: Sandbox, item: WorkItem) -> CommitOutcome:
        if not files:
            return CommitOutcome(has_changes=False)
        return CommitOutcome(has_changes=True, commit_sha="abc123", files_changed=files)

    return commit


def make_scheduler(
    tmp_path: Path,
    adapters: list[FakeAgentAdapter] | None = None,
    *,
    sandboxes: FakeSandboxes | None = None,
    **overrides: object,
) -> JobScheduler:
    limits = overrides.pop("limits", None) or SchedulerLimits(backoff=BackoffConfig.immediate())
    return JobScheduler(
        adapters=adapters or [FakeAgentAdapter()],
        sandboxes=sandboxes or FakeSandboxes(tmp_path),
        limits=limits,  # type: ignore[arg-type]
        commit=overrides.pop("commit", committing()),  # type: ignore[arg-type]
        random_fn=lambda: 0.0,
        **overrides,  # type: ignore[arg-type]
    )


def _limits(**fields: object) -> SchedulerLimits:
    fields.setdefault("backoff", BackoffConfig.immediate())
    return SchedulerLimits(**fields)  # type: ignore[arg-type]


async def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


async def test_run_completes_every_job_and_releases_sandboxes(tmp_path: Path) -> None:
    sandboxes = FakeSandboxes(tmp_path)
    scheduler = make_scheduler(tmp_path, sandboxes=sandboxes)
    jobs = scheduler.enqueue([make_item("a"), make_item("b"), make_item("c")])

    summary = await scheduler.run()

    assert summary.succeeded
    assert summary.counts["completed"] == 3
    assert [report.job_id for report in summary.jobs] == [job.id for job in jobs]
    assert all(report.published for report in summary.jobs)
    assert all(report.commit_sha == "abc123" for report in summary.jobs)
    assert all(report.files_changed == ("src/app.py",) for report in summary.jobs)
    assert sorted(sandboxes.released) == sorted(sandboxes.acquired)
    assert len(sandboxes.released) == 3

    types = [event.type for event in scheduler.events.replay()]
    assert types[0] is EventType.RUN_STARTED
    assert types[-1] is EventType.RUN_COMPLETED
    assert types.count(EventType.EXECUTION_STARTED) == 3
    assert types.count(EventType.EXECUTION_COMPLETED) == 3


async def test_parallelism_never_exceeds_concurrency(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter(default=Step(delay_seconds=0.05))
    scheduler = make_scheduler(tmp_path, [adapter], limits=_limits(concurrency=2))
    scheduler.enqueue([make_item(f"item-{index}") for index in range(6)])

    summary = await scheduler.run()

    assert summary.counts["completed"] == 6
    assert adapter.peak == 2
    assert summary.peak_concurrency == 2


async def test_admission_is_by_priority_then_arrival(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter()
    scheduler = make_scheduler(tmp_path, [adapter], limits=_limits(concurrency=1))
    scheduler.enqueue(
        [
            make_item("low", priority=10),
            make_item("high-1", priority=90),
            make_item("mid", priority=50),
            make_item("high-2", priority=90),
        ]
    )

    await scheduler.run()

    assert adapter.calls == ["high-1", "high-2", "mid", "low"]


async def test_retryable_failure_is_retried_with_a_fresh_sandbox(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter(
        {"a": [Step(success=False, error="Error: 429 rate limit exceeded", exit_code=1)]}
    )
    sandboxes = FakeSandboxes(tmp_path)
    scheduler = make_scheduler(tmp_path, [adapter], sandboxes=sandboxes)
    [job] = scheduler.enqueue([make_item("a")])

    summary = await scheduler.run()

    assert job.status is JobStatus.COMPLETED
    assert job.attempts == 2
    assert summary.jobs[0].attempts == 2
    assert [branch.rsplit("-", 1)[1] for branch in sandboxes.acquired] == ["a1", "a2"]
    assert sandboxes.released == sandboxes.acquired
    [retry] = scheduler.events.replay(event_type=EventType.EXECUTION_RETRYING)
    assert retry.payload["kind"] == "rate_limited"
    assert retry.job_id == job.id


async def test_non_retryable_failure_fails_immediately(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter({"a": [FAIL_CRASH]})
    scheduler = make_scheduler(tmp_path, [adapter], limits=_limits(max_attempts=3))
    [job] = scheduler.enqueue([make_item("a")])

    summary = await scheduler.run()

    assert job.status is JobStatus.FAILED
    assert job.attempts == 1
    assert adapter.calls == ["a"]
    report = summary.jobs[0]
    assert report.error_kind is ErrorKind.EXECUTION_FAILED
    assert report.diagnostic == "agent crashed: segmentation fault"
    assert not summary.succeeded


async def test_retries_stop_at_max_attempts(tmp_path: Path) -> None:
    timeout = Step(success=False, error="claude-code execution timed out after 5s", exit_code=None)
    adapter = FakeAgentAdapter({"a": [timeout, timeout, timeout]})
    scheduler = make_scheduler(tmp_path, [adapter], limits=_limits(max_attempts=2))
    [job] = scheduler.enqueue([make_item("a")])

    summary = await scheduler.run()

    assert job.status is JobStatus.FAILED
    assert job.attempts == 2
    assert summary.jobs[0].error_kind is ErrorKind.TIMEOUT
    assert len(scheduler.events.replay(event_type=EventType.EXECUTION_FAILED)) == 1


async def test_token_ceiling_aborts_the_agent_at_ninety_percent(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter(
        {
            "a": [
                Step(
                    events=(TokenEvent(400, 100, 500), TokenEvent(600, 350, 950)),
                    block=True,
                )
            ]
        }
    )
    scheduler = make_scheduler(tmp_path, [adapter], limits=_limits(max_attempts=3))
    [job] = scheduler.enqueue([make_item("a")], token_ceilings={"a": 1000})

    summary = await scheduler.run()

    assert job.status is JobStatus.FAILED
    assert job.attempts == 1
    assert adapter.params[0].token_budget == 1000
    assert adapter.aborted == [adapter.params[0].execution_id]
    report = summary.jobs[0]
    assert report.error_kind is ErrorKind.TOKEN_LIMIT
    assert report.tokens_used == 950
    assert scheduler.breaker_for("fake").consecutive_failures == 0


async def test_usage_below_the_abort_ratio_is_left_alone(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter({"a": [Step(events=(TokenEvent(0, 0, 899),), tokens=899)]})
    scheduler = make_scheduler(tmp_path, [adapter])
    [job] = scheduler.enqueue([make_item("a", metadata={"token_budget": 1000})])

    await scheduler.run()

    assert job.status is JobStatus.COMPLETED
    assert job.token_ceiling == 1000
    assert adapter.aborted == []


async def test_observed_events_are_merged_into_the_result(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter(
        {
            "a": [
                Step(
                    events=(
                        OutputEvent("working"),
                        TokenEvent(10, 5, 15),
                        FileEditEvent(FileAction.CREATE, "docs/new.md"),
                    ),
                    tokens=12,
                )
            ]
        }
    )
    scheduler = make_scheduler(tmp_path, [adapter])
    scheduler.enqueue([make_item("a")])

    summary = await scheduler.run()

    report = summary.jobs[0]
    assert report.tokens_used == 15
    assert report.files_changed == ("docs/new.md", "src/app.py")
    stages = [
        event.payload["stage"]
        for event in scheduler.events.replay(event_type=EventType.EXECUTION_PROGRESS)
    ]
    assert stages == ["stdout", "tokens", "file:create"]


async def test_publish_guard_hit_completes_without_publishing(tmp_path: Path) -> None:
    guard = FakeGuard(
        PublishDecision(
            publish=False,
            reason="open pull request already references issue #12",
            existing_url="https://github.com/acme/widgets/pull/3",
        )
    )
    scheduler = make_scheduler(tmp_path, guard=guard)
    [job] = scheduler.enqueue([make_item("a", linked_issue=LinkedIssue(number=12))])

    summary = await scheduler.run()

    assert job.status is JobStatus.COMPLETED
    assert job.published is False
    assert summary.jobs[0].publish_skip_reason == "open pull request already references issue #12"
    assert guard.checked == ["a"]
    [skipped] = scheduler.events.replay(event_type=EventType.PUBLISH_SKIPPED)
    assert skipped.payload["existing_url"] == "https://github.com/acme/widgets/pull/3"


async def test_publish_guard_clear_marks_job_published(tmp_path: Path) -> None:
    guard = FakeGuard(PublishDecision(publish=True, reason="no open contribution found"))
    scheduler = make_scheduler(tmp_path, guard=guard)
    [job] = scheduler.enqueue([make_item("a")])

    await scheduler.run()

    assert job.published is True
    assert job.publish_skip_reason is None


async def test_clean_tree_skips_publication_and_guard(tmp_path: Path) -> None:
    guard = FakeGuard(PublishDecision(publish=True, reason="unused"))
    scheduler = make_scheduler(tmp_path, guard=guard, commit=committing(()))
    [job] = scheduler.enqueue([make_item("a")])

    await scheduler.run()

    assert job.status is JobStatus.COMPLETED
    assert job.published is False
    assert job.publish_skip_reason == "no changes to publish"
    assert job.commit_sha is None
    assert guard.checked == []


async def test_commit_hook_failure_fails_job_without_retry(tmp_path: Path) -> None:
    async def broken_commit(sandbox: Sandbox, item: WorkItem) -> CommitOutcome:
        raise OSError("disk full")

    adapter = FakeAgentAdapter()
    scheduler = make_scheduler(
        tmp_path, [adapter], commit=broken_commit, limits=_limits(max_attempts=3)
    )
    [job] = scheduler.enqueue([make_item("a")])

    await scheduler.run()

    assert job.status is JobStatus.FAILED
    assert job.attempts == 1


async def test_cleanup_errors_are_recorded_without_changing_status(tmp_path: Path) -> None:
    sandboxes = FakeSandboxes(tmp_path, release_error="worktree prune failed")
    scheduler = make_scheduler(tmp_path, sandboxes=sandboxes)
    [job] = scheduler.enqueue([make_item("a")])

    summary = await scheduler.run()

    assert job.status is JobStatus.COMPLETED
    assert summary.jobs[0].cleanup_error == "worktree prune failed"


async def test_sandbox_loss_aborts_the_whole_run(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter()
    sandboxes = FakeSandboxes(
        tmp_path, fail_with=SandboxError("unable to create worktree: disk full")
    )
    scheduler = make_scheduler(
        tmp_path, [adapter], sandboxes=sandboxes, limits=_limits(concurrency=1)
    )
    first, second, third = scheduler.enqueue([make_item("a"), make_item("b"), make_item("c")])

    summary = await scheduler.run()

    assert first.status is JobStatus.FAILED
    assert second.status is JobStatus.ABORTED
    assert third.status is JobStatus.ABORTED
    assert adapter.calls == []
    assert summary.abort_reason is not None
    assert summary.abort_reason.startswith("sandbox acquisition failed")
    assert summary.abort_kind is ErrorKind.EXECUTION_FAILED
    assert not summary.succeeded


async def test_unsafe_branch_configuration_fails_only_the_job(tmp_path: Path) -> None:
    sandboxes = FakeSandboxes(
        tmp_path, fail_with=ConfigurationError("base_branch contains unsupported characters")
    )
    scheduler = make_scheduler(tmp_path, sandboxes=sandboxes)
    first, second = scheduler.enqueue([make_item("a"), make_item("b")])

    summary = await scheduler.run()

    assert first.status is JobStatus.FAILED
    assert second.status is JobStatus.FAILED
    assert summary.abort_reason is None
    assert summary.jobs[0].error_kind is ErrorKind.VALIDATION


async def test_repository_preparation_failure_aborts_before_dispatch(tmp_path: Path) -> None:
    async def prepare() -> None:
        raise RepositoryError("remote unreachable")

    adapter = FakeAgentAdapter()
    scheduler = make_scheduler(tmp_path, [adapter], prepare=prepare)
    jobs = scheduler.enqueue([make_item("a"), make_item("b")])

    summary = await scheduler.run()

    assert [job.status for job in jobs] == [JobStatus.ABORTED, JobStatus.ABORTED]
    assert adapter.calls == []
    assert summary.abort_reason == "repository preparation failed: remote unreachable"
    assert summary.abort_kind is ErrorKind.NETWORK


async def test_preparation_runs_once_before_agents(tmp_path: Path) -> None:
    order: list[str] = []
    adapter = FakeAgentAdapter()

    async def prepare() -> None:
        order.append("prepare")

    scheduler = make_scheduler(tmp_path, [adapter], prepare=prepare)
    scheduler.enqueue([make_item("a"), make_item("b")])

    await scheduler.run()

    assert order == ["prepare"]
    assert len(adapter.calls) == 2


async def test_operator_abort_terminates_live_agents_and_queued_jobs(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter(default=Step(block=True))
    scheduler = make_scheduler(tmp_path, [adapter], limits=_limits(concurrency=1))
    running, queued = scheduler.enqueue([make_item("a"), make_item("b")])

    run_task = asyncio.ensure_future(scheduler.run())
    await _wait_until(lambda: adapter.active == 1)
    await scheduler.abort("operator stop")
    summary = await asyncio.wait_for(run_task, timeout=5)

    assert running.status is JobStatus.ABORTED
    assert queued.status is JobStatus.ABORTED
    assert adapter.calls == ["a"]
    assert len(adapter.aborted) == 1
    assert summary.abort_reason == "operator stop"
    assert summary.abort_kind is ErrorKind.CANCELLED
    assert summary.counts["aborted"] == 2
    aborted_events = scheduler.events.replay(event_type=EventType.EXECUTION_ABORTED)
    assert {event.job_id for event in aborted_events} == {running.id, queued.id}


async def test_agent_spawned_while_abort_runs_is_terminated(tmp_path: Path) -> None:
    entered = asyncio.Event()
    gate = asyncio.Event()

    class SlowStartAdapter(FakeAgentAdapter):
        async def execute(self, params):  # type: ignore[no-untyped-def]
            entered.set()
            await gate.wait()
            return await super().execute(params)

    adapter = SlowStartAdapter(default=Step(block=True))
    scheduler = make_scheduler(tmp_path, [adapter], limits=_limits(concurrency=1))
    [job] = scheduler.enqueue([make_item("a")])

    run_task = asyncio.ensure_future(scheduler.run())
    await asyncio.wait_for(entered.wait(), timeout=5)
    await scheduler.abort("operator stop")
    gate.set()
    summary = await asyncio.wait_for(run_task, timeout=5)

    assert job.status is JobStatus.ABORTED
    assert adapter.aborted == [f"{job.id}-a1"]
    assert adapter.active == 0
    assert summary.counts["running"] == 0


class SigtermIgnoringAgent(CliAgentAdapter):
    provider_id: ClassVar[str] = "stubborn"
    display_name: ClassVar[str] = "Stubborn agent"
    default_binary: ClassVar[str] = "stubborn-agent"
    abort_grace_seconds: ClassVar[float] = 0.2

    def build_command(self, params: ExecuteParams) -> list[str]:
        return [self.binary]


def _process_exited(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    return False


@pytest.mark.integration
async def test_abort_kills_every_running_agent_process(tmp_path: Path) -> None:
    script = write_script(
        tmp_path / "agent.py",
        """
        import os, pathlib, signal, time
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        pathlib.Path("agent.pid").write_text(str(os.getpid()))
        time.sleep(60)
        """,
    )
    sandboxes_root = tmp_path / "sandboxes"
    scheduler = make_scheduler(
        tmp_path,
        [SigtermIgnoringAgent(binary=str(script))],  # type: ignore[list-item]
        sandboxes=FakeSandboxes(sandboxes_root),
        limits=_limits(concurrency=3),
    )
    jobs = scheduler.enqueue([make_item(f"item-{index}") for index in range(3)])

    def pid_files() -> list[Path]:
        return sorted(sandboxes_root.rglob("agent.pid"))

    run_task = asyncio.ensure_future(scheduler.run())
    await _wait_until(
        lambda: len(pid_files()) == 3 and all(path.read_text() for path in pid_files()),
        timeout=10,
    )
    pids = [int(path.read_text()) for path in pid_files()]
    assert scheduler.counts()["running"] == 3

    started = time.monotonic()
    await scheduler.abort("operator stop")
    summary = await asyncio.wait_for(run_task, timeout=10)

    assert time.monotonic() - started < 5
    assert scheduler.counts()["running"] == 0
    assert all(_process_exited(pid) for pid in pids)
    assert [job.status for job in jobs] == [JobStatus.ABORTED] * 3
    assert summary.peak_concurrency == 3


async def test_jobs_enqueued_after_abort_are_aborted(tmp_path: Path) -> None:
    scheduler = make_scheduler(tmp_path)
    await scheduler.abort()

    [job] = scheduler.enqueue([make_item("late")])

    assert job.status is JobStatus.ABORTED


async def test_second_concurrent_run_is_rejected(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter(default=Step(block=True))
    scheduler = make_scheduler(tmp_path, [adapter])
    scheduler.enqueue([make_item("a")])

    run_task = asyncio.ensure_future(scheduler.run())
    await _wait_until(lambda: scheduler.is_running and adapter.active == 1)
    with pytest.raises(RuntimeError, match="already running"):
        await scheduler.run()
    await scheduler.abort()
    await asyncio.wait_for(run_task, timeout=5)

    assert not scheduler.is_running


async def test_circuit_breaker_stops_dispatching_to_a_failing_provider(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter(default=FAIL_CRASH)
    scheduler = make_scheduler(tmp_path, [adapter], limits=_limits(concurrency=1))
    jobs = scheduler.enqueue([make_item(f"item-{index}") for index in range(4)])

    summary = await scheduler.run()

    assert len(adapter.calls) == 3
    assert [job.status for job in jobs] == [JobStatus.FAILED] * 4
    assert summary.jobs[3].error_kind is ErrorKind.RESOURCE_EXHAUSTED
    assert scheduler.breaker_for("fake").consecutive_failures == 3


async def test_providers_are_used_in_rotation(tmp_path: Path) -> None:
    first = FakeAgentAdapter()
    second = OtherAgentAdapter()
    scheduler = make_scheduler(tmp_path, [first, second], limits=_limits(concurrency=1))
    jobs = scheduler.enqueue([make_item("a"), make_item("b"), make_item("c")])

    await scheduler.run()

    assert [job.provider_id for job in jobs] == ["fake", "other", "fake"]
    assert first.calls == ["a", "c"]
    assert second.calls == ["b"]


async def test_adapter_start_failure_is_classified(tmp_path: Path) -> None:
    class BrokenAdapter(FakeAgentAdapter):
        async def execute(self, params):  # type: ignore[no-untyped-def]
            raise AgentError("unable to start fake: No such file or directory")

    scheduler = make_scheduler(tmp_path, [BrokenAdapter()])
    [job] = scheduler.enqueue([make_item("a")])

    await scheduler.run()

    assert job.status is JobStatus.FAILED
    assert job.error is not None
    assert job.error.kind is ErrorKind.EXECUTION_FAILED


async def test_execute_params_come_from_the_item_and_limits(tmp_path: Path) -> None:
    adapter = FakeAgentAdapter()
    scheduler = make_scheduler(
        tmp_path,
        [adapter],
        limits=_limits(concurrency=1, allow_commits=True, job_timeout_seconds=120.0),
    )
    scheduler.enqueue(
        [
            make_item("a", target_files=("src/a.py",)),
            make_item("b", metadata={"timeout_seconds": 30}),
        ]
    )

    await scheduler.run()

    first, second = adapter.params
    assert first.allow_commits is True
    assert first.target_files == ("src/a.py",)
    assert first.timeout_seconds == 120.0
    assert "Task ID: a" in first.prompt
    assert second.timeout_seconds == 30
    assert first.execution_id.endswith("-a1")


def test_duplicate_active_work_items_are_rejected(tmp_path: Path) -> None:
    scheduler = make_scheduler(tmp_path)
    scheduler.enqueue([make_item("a")])

    with pytest.raises(ConfigurationError, match="already admitted: a"):
        scheduler.enqueue([make_item("a")])
    with pytest.raises(ConfigurationError, match="already admitted: b"):
        scheduler.enqueue([make_item("b"), make_item("b")])


def test_non_positive_token_ceiling_override_is_rejected(tmp_path: Path) -> None:
    scheduler = make_scheduler(tmp_path)

    with pytest.raises(ConfigurationError, match="token ceiling"):
        scheduler.enqueue([make_item("a")], token_ceilings={"a": 0})


def test_scheduler_requires_distinct_adapters(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="at least one"):
        JobScheduler(adapters=[], sandboxes=FakeSandboxes(tmp_path))
    with pytest.raises(ConfigurationError, match="duplicate"):
        JobScheduler(
            adapters=[FakeAgentAdapter(), FakeAgentAdapter()],
            sandboxes=FakeSandboxes(tmp_path),
        )


@pytest.mark.parametrize(
    "fields",
    [
        {"concurrency": 0},
        {"max_attempts": 0},
        {"job_timeout_seconds": 0},
        {"token_ceiling": 0},
        {"base_branch": " "},
        {"branch_prefix": ""},
    ],
)
def test_scheduler_limits_validation(fields: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        SchedulerLimits(**fields)  # type: ignore[arg-type]


def test_unknown_job_lookup() -> None:
    scheduler = JobScheduler(adapters=[FakeAgentAdapter()], sandboxes=FakeSandboxes(Path(".")))

    with pytest.raises(KeyError, match="unknown job"):
        scheduler.get_job("missing")


@pytest.mark.parametrize(
    ("event", "stage"),
    [
        (OutputEvent("x", stream="stderr"), "stderr"),
        (TokenEvent(1, 1, 2), "tokens"),
        (FileEditEvent(FileAction.DELETE, "a.py"), "file:delete"),
        (ToolUseEvent("Bash"), "tool:Bash"),
        (ErrorEvent("bad", recoverable=False), "agent-error"),
        (ErrorEvent("meh"), "agent-warning"),
    ],
)
def test_stage_for_event(event: object, stage: str) -> None:
    assert stage_for_event(event) == stage  # type: ignore[arg-type]


async def test_custom_event_bus_receives_lifecycle(tmp_path: Path) -> None:
    bus = EventBus()
    seen: list[EventType] = []
    bus.subscribe(EventType.EXECUTION_COMPLETED, lambda event: seen.append(event.type))
    scheduler = make_scheduler(tmp_path, events=bus)
    scheduler.enqueue([make_item("a")])

    await scheduler.run()

    assert scheduler.events is bus
    assert seen == [EventType.EXECUTION_COMPLETED]
