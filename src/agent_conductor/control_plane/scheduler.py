"""
agent-conductor — job scheduler

Purpose
- Admit work items as jobs and drive each one through sandbox acquisition, agent
  execution, commit, duplicate check, and cleanup with bounded parallelism.

Functional requirements
- At most ``concurrency`` jobs run at once; admission is by descending priority
  with ties broken by admission order.
- Every failure is classified once. Retryable kinds are re-attempted with backoff
  until ``max_attempts``; all other kinds fail the job immediately.
- A job whose cumulative token usage reaches the abort ratio of its ceiling is
  stopped and fails with ``token_limit``.
- Losing the base repository or the ability to create sandboxes aborts the whole
  run rather than failing jobs one by one.
- Sandboxes are always released, whatever the outcome; cleanup problems are
  recorded on the job and never change its status.
- One ``run`` at a time per scheduler.
"""

from __future__ import annotations

import asyncio
import logging
import random as random_module
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from heapq import heappop, heappush
from typing import TYPE_CHECKING, Any, Protocol

from agent_conductor.constants import (
    DEFAULT_BASE_BRANCH,
    DEFAULT_BRANCH_PREFIX,
    DEFAULT_CONCURRENCY,
    DEFAULT_JOB_TIMEOUT_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TOKEN_CEILING,
    TOKEN_CEILING_ABORT_RATIO,
)
from agent_conductor.control_plane.prompt import build_task_prompt
from agent_conductor.control_plane.retry import (
    BackoffConfig,
    CircuitBreaker,
    ClockFn,
    RandomFn,
    compute_backoff_delay,
)
from agent_conductor.domain.models import ExecutionResult, Job, JobError, JobStatus
from agent_conductor.errors import (
    AgentError,
    ConductorError,
    ConfigurationError,
    ErrorKind,
    RepositoryError,
    SandboxError,
    classify_error,
    truncate_diagnostic,
)
from agent_conductor.integration_plane.sandbox import (
    CommitOutcome,
    build_branch_name,
    commit_sandbox_changes,
)
from agent_conductor.observability.events import EventBus, EventType
from agent_conductor.observability.logging import correlation_scope
from agent_conductor.synthesis_plane.agents.base import ExecuteParams
from agent_conductor.synthesis_plane.agents.events import (
    ErrorEvent,
    FileEditEvent,
    OutputEvent,
    TokenEvent,
    ToolUseEvent,
)
from agent_conductor.utils.concurrency import BoundedSemaphore, CancellationToken

if TYPE_CHECKING:
    from agent_conductor.domain.models import WorkItem
    from agent_conductor.integration_plane.guard import PublishDecision
    from agent_conductor.integration_plane.sandbox import Sandbox
    from agent_conductor.synthesis_plane.agents.base import AgentAdapter, AgentHandle
    from agent_conductor.synthesis_plane.agents.events import AgentEvent

logger = logging.getLogger(__name__)


class SandboxProvider(Protocol):
    async def acquire(
        self,
        base_branch: str,
        job_id: str,
        *,
        branch_name: str | None = None,
    ) -> Sandbox: ...

    async def release(self, sandbox: Sandbox) -> str | None: ...


class PublishGuard(Protocol):
    async def check_before_publish(self, item: WorkItem) -> PublishDecision: ...


CommitFn = Callable[["Sandbox", "WorkItem"], Awaitable[CommitOutcome]]
PrepareFn = Callable[[], Awaitable[object]]


@dataclass(frozen=True, slots=True)
class SchedulerLimits:
    """Run-wide execution limits."""

    concurrency: int = DEFAULT_CONCURRENCY
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    job_timeout_seconds: float = DEFAULT_JOB_TIMEOUT_SECONDS
    token_ceiling: int = DEFAULT_TOKEN_CEILING
    base_branch: str = DEFAULT_BASE_BRANCH
    branch_prefix: str = DEFAULT_BRANCH_PREFIX
    allow_commits: bool = False
    backoff: BackoffConfig = field(default_factory=BackoffConfig)

    def __post_init__(self) -> None:
        if self.concurrency <= 0:
            raise ValueError("concurrency must be > 0")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if self.job_timeout_seconds <= 0:
            raise ValueError("job_timeout_seconds must be > 0")
        if self.token_ceiling <= 0:
            raise ValueError("token_ceiling must be > 0")
        if not self.base_branch.strip():
            raise ValueError("base_branch must not be empty")
        if not self.branch_prefix.strip():
            raise ValueError("branch_prefix must not be empty")


@dataclass(frozen=True, slots=True)
class JobReport:
    """Per-job line of a run summary."""

    job_id: str
    work_item_id: str
    status: JobStatus
    attempts: int
    provider_id: str | None = None
    branch_name: str | None = None
    commit_sha: str | None = None
    tokens_used: int = 0
    files_changed: tuple[str, ...] = ()
    error_kind: ErrorKind | None = None
    diagnostic: str | None = None
    published: bool = False
    publish_skip_reason: str | None = None
    cleanup_error: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobReport:
        result = job.result
        return cls(
            job_id=job.id,
            work_item_id=job.item.id,
            status=job.status,
            attempts=job.attempts,
            provider_id=job.provider_id,
            branch_name=job.branch_name,
            commit_sha=job.commit_sha,
            tokens_used=0 if result is None else result.total_tokens_used,
            files_changed=() if result is None else result.files_changed,
            error_kind=None if job.error is None else job.error.kind,
            diagnostic=None if job.error is None else truncate_diagnostic(job.error.message),
            published=job.published,
            publish_skip_reason=job.publish_skip_reason,
            cleanup_error=job.cleanup_error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "work_item_id": self.work_item_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "provider_id": self.provider_id,
            "branch_name": self.branch_name,
            "commit_sha": self.commit_sha,
            "tokens_used": self.tokens_used,
            "files_changed": list(self.files_changed),
            "error_kind": None if self.error_kind is None else self.error_kind.value,
            "diagnostic": self.diagnostic,
            "published": self.published,
            "publish_skip_reason": self.publish_skip_reason,
            "cleanup_error": self.cleanup_error,
        }


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Outcome of one ``run`` call."""

    counts: Mapping[str, int]
    jobs: tuple[JobReport, ...]
    duration_seconds: float
    peak_concurrency: int
    abort_reason: str | None = None
    abort_kind: ErrorKind | None = None

    @property
    def succeeded(self) -> bool:
        return self.abort_reason is None and all(
            report.status is JobStatus.COMPLETED for report in self.jobs
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "counts": dict(self.counts),
            "jobs": [report.to_dict() for report in self.jobs],
            "duration_seconds": round(self.duration_seconds, 3),
            "peak_concurrency": self.peak_concurrency,
            "abort_reason": self.abort_reason,
            "abort_kind": None if self.abort_kind is None else self.abort_kind.value,
        }


class TokenCeilingReached(AgentError):
    """Raised when an execution is stopped for exceeding its token ceiling."""

    default_kind = ErrorKind.TOKEN_LIMIT


class _RunAborted(Exception):
    """Internal signal: the attempt ended because the run is being aborted."""


class JobScheduler:
    """Runs admitted jobs against a pool of agent adapters."""

    def __init__(
        self,
        *,
        adapters: Sequence[AgentAdapter],
        sandboxes: SandboxProvider,
        limits: SchedulerLimits | None = None,
        events: EventBus | None = None,
        guard: PublishGuard | None = None,
        commit: CommitFn = commit_sandbox_changes,
        prepare: PrepareFn | None = None,
        random_fn: RandomFn = random_module.random,
        clock: ClockFn = time.monotonic,
    ) -> None:
        if not adapters:
            raise ConfigurationError("at least one agent adapter is required")
        provider_ids = [adapter.provider_id for adapter in adapters]
        if len(set(provider_ids)) != len(provider_ids):
            raise ConfigurationError(f"duplicate agent providers: {provider_ids}")
        self._adapters = tuple(adapters)
        self._sandboxes = sandboxes
        self._limits = limits or SchedulerLimits()
        self._events = events or EventBus()
        self._guard = guard
        self._commit = commit
        self._prepare = prepare
        self._random_fn = random_fn
        self._clock = clock
        self._breakers = {
            adapter.provider_id: CircuitBreaker(clock=clock) for adapter in self._adapters
        }
        self._next_adapter = 0

        self._jobs: dict[str, Job] = {}
        self._heap: list[tuple[int, int, str]] = []
        self._sequence = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._live: dict[str, tuple[AgentAdapter, AgentHandle]] = {}
        self._cancel = CancellationToken()
        self._semaphore: BoundedSemaphore | None = None
        self._wakeup: asyncio.Event | None = None
        self._running = False
        self._abort_reason: str | None = None
        self._abort_kind: ErrorKind | None = None

    @property
    def limits(self) -> SchedulerLimits:
        return self._limits

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def jobs(self) -> tuple[Job, ...]:
        return tuple(sorted(self._jobs.values(), key=lambda job: job.sequence))

    @property
    def is_running(self) -> bool:
        return self._running

    def get_job(self, job_id: str) -> Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise KeyError(f"unknown job: {job_id}") from None

    def breaker_for(self, provider_id: str) -> CircuitBreaker:
        return self._breakers[provider_id]

    def enqueue(
        self,
        items: Iterable[WorkItem],
        *,
        token_ceilings: Mapping[str, int] | None = None,
    ) -> list[Job]:
        """Admit ``items`` as queued jobs; returns them in admission order."""

        ceilings = dict(token_ceilings or {})
        active_items = {job.item.id for job in self._jobs.values() if not job.status.is_terminal}
        admitted: list[Job] = []
        for item in items:
            if item.id in active_items:
                raise ConfigurationError(f"work item already admitted: {item.id}")
            ceiling = ceilings.get(item.id, _metadata_positive_int(item, "token_budget"))
            ceiling = self._limits.token_ceiling if ceiling is None else ceiling
            if ceiling <= 0:
                raise ConfigurationError(f"token ceiling for {item.id} must be > 0")

            job = Job(
                id=uuid.uuid4().hex,
                item=item,
                sequence=self._sequence,
                max_attempts=self._limits.max_attempts,
                token_ceiling=ceiling,
            )
            self._sequence += 1
            self._jobs[job.id] = job
            active_items.add(item.id)
            if self._cancel.is_cancelled:
                job.transition(JobStatus.ABORTED)
            else:
                self._push(job)
            admitted.append(job)
        if self._wakeup is not None:
            self._wakeup.set()
        return admitted

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        return counts

    def summary(self, *, duration_seconds: float = 0.0) -> RunSummary:
        return RunSummary(
            counts=self.counts(),
            jobs=tuple(JobReport.from_job(job) for job in self.jobs),
            duration_seconds=duration_seconds,
            peak_concurrency=0 if self._semaphore is None else self._semaphore.peak,
            abort_reason=self._abort_reason,
            abort_kind=self._abort_kind,
        )

    async def run(self) -> RunSummary:
        """Drain the queue and return a summary once every job is terminal."""

        if self._running:
            raise RuntimeError("scheduler is already running")
        self._running = True
        started = self._clock()
        self._semaphore = BoundedSemaphore(self._limits.concurrency)
        self._wakeup = asyncio.Event()
        try:
            await self._events.emit(EventType.RUN_STARTED, jobs=len(self._heap))
            if self._prepare is not None and not self._cancel.is_cancelled:
                try:
                    await self._prepare()
                except ConductorError as exc:
                    await self._abort_run(f"repository preparation failed: {exc.detail}", exc.kind)
            await self._dispatch_loop()
            if self._tasks:
                await asyncio.gather(*tuple(self._tasks), return_exceptions=True)
        finally:
            self._running = False

        summary = self.summary(duration_seconds=self._clock() - started)
        await self._events.emit(
            EventType.RUN_COMPLETED,
            counts=dict(summary.counts),
            abort_reason=summary.abort_reason,
        )
        logger.info(
            "run finished",
            extra={"counts": dict(summary.counts), "abort_reason": summary.abort_reason},
        )
        return summary

    async def abort(self, reason: str = "run aborted") -> None:
        """Stop everything: queued jobs are aborted and live agents are terminated."""

        await self._abort_run(reason, ErrorKind.CANCELLED)
        pending = tuple(self._tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _dispatch_loop(self) -> None:
        assert self._semaphore is not None and self._wakeup is not None
        while not self._cancel.is_cancelled:
            if self._heap and self._semaphore.available > 0:
                job = self._jobs[heappop(self._heap)[2]]
                if job.status is not JobStatus.QUEUED and job.status is not JobStatus.RETRYING:
                    continue
                await self._semaphore.acquire()
                self._spawn(self._run_attempt(job))
                continue
            if not self._heap and not self._tasks:
                return
            self._wakeup.clear()
            await self._wakeup.wait()

    def _spawn(self, coroutine: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coroutine)
        self._tasks.add(task)

        def _done(finished: asyncio.Task[None]) -> None:
            self._tasks.discard(finished)
            if self._wakeup is not None:
                self._wakeup.set()

        task.add_done_callback(_done)

    def _push(self, job: Job) -> None:
        heappush(self._heap, (-job.item.priority, job.sequence, job.id))

    async def _run_attempt(self, job: Job) -> None:
        assert self._semaphore is not None
        try:
            with correlation_scope(job_id=job.id, work_item_id=job.item.id):
                await self._attempt(job)
        finally:
            self._semaphore.release()

    async def _attempt(self, job: Job) -> None:
        job.attempts += 1
        job.transition(JobStatus.RUNNING)
        job.error = None

        adapter = self._select_adapter()
        if adapter is None:
            await self._finish_failure(
                job,
                JobError(
                    kind=ErrorKind.RESOURCE_EXHAUSTED,
                    message="no agent provider available: all circuit breakers are open",
                    retryable=False,
                ),
            )
            return
        job.provider_id = adapter.provider_id

        try:
            job.branch_name = build_branch_name(
                item_id=job.item.id,
                job_id=job.id,
                attempt=job.attempts,
                prefix=self._limits.branch_prefix,
            )
        except ConfigurationError as exc:
            await self._finish_failure(job, _job_error(exc))
            return

        await self._events.emit(
            EventType.EXECUTION_STARTED,
            job.id,
            work_item_id=job.item.id,
            provider=adapter.provider_id,
            attempt=job.attempts,
            branch=job.branch_name,
        )

        try:
            sandbox = await self._sandboxes.acquire(
                self._limits.base_branch, job.id, branch_name=job.branch_name
            )
        except ConfigurationError as exc:
            await self._finish_failure(job, _job_error(exc))
            return
        except (SandboxError, RepositoryError, OSError) as exc:
            error = _job_error(exc)
            await self._finish_failure(job, error, allow_retry=False)
            await self._abort_run(f"sandbox acquisition failed: {error.message}", error.kind)
            return

        job.sandbox = sandbox
        try:
            with correlation_scope(provider=adapter.provider_id):
                await self._execute_in_sandbox(job, adapter, sandbox)
        finally:
            job.cleanup_error = await self._sandboxes.release(sandbox)
            job.sandbox = None

    async def _execute_in_sandbox(self, job: Job, adapter: AgentAdapter, sandbox: Sandbox) -> None:
        breaker = self._breakers[adapter.provider_id]
        try:
            if self._cancel.is_cancelled:
                raise _RunAborted
            result = await self._run_agent(job, adapter, sandbox)
        except _RunAborted:
            await self._finish_aborted(job)
            return
        except TokenCeilingReached as exc:
            breaker.record_success()
            await self._finish_failure(
                job,
                JobError(kind=ErrorKind.TOKEN_LIMIT, message=exc.detail, retryable=False),
            )
            return
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - every attempt failure is classified here.
            breaker.record_failure()
            await self._finish_failure(job, _job_error(exc))
            return

        job.result = result
        if not result.success:
            if self._cancel.is_cancelled:
                await self._finish_aborted(job)
                return
            breaker.record_failure()
            classification = classify_error(
                result.error or f"agent exited with code {result.exit_code}",
                exit_code=result.exit_code,
            )
            await self._finish_failure(
                job,
                JobError(
                    kind=classification.kind,
                    message=classification.message,
                    retryable=classification.retryable,
                ),
            )
            return

        breaker.record_success()
        try:
            await self._finalize_success(job, sandbox)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - commit and guard hooks are pluggable.
            if not job.status.is_terminal:
                await self._finish_failure(job, _job_error(exc), allow_retry=False)

    async def _run_agent(self, job: Job, adapter: AgentAdapter, sandbox: Sandbox) -> ExecutionResult:
        timeout_seconds = _metadata_positive_int(job.item, "timeout_seconds")
        params = ExecuteParams(
            execution_id=f"{job.id}-a{job.attempts}",
            working_directory=sandbox.path,
            prompt=build_task_prompt(job.item),
            target_files=job.item.target_files,
            token_budget=job.token_ceiling,
            allow_commits=self._limits.allow_commits,
            timeout_seconds=(
                self._limits.job_timeout_seconds if timeout_seconds is None else timeout_seconds
            ),
        )
        logger.debug(
            "dispatching agent",
            extra={"estimated_prompt_tokens": adapter.estimate_tokens(params.prompt)},
        )
        handle = await adapter.execute(params)
        self._live[job.id] = (adapter, handle)
        threshold = job.token_ceiling * TOKEN_CEILING_ABORT_RATIO
        observed_tokens = 0
        observed_files: set[str] = set()
        ceiling_hit = False
        try:
            if self._cancel.is_cancelled:
                # Spawned after abort() signalled the live set.
                await adapter.abort(handle.execution_id)
            async for event in handle.events:
                if isinstance(event, TokenEvent):
                    observed_tokens = max(observed_tokens, event.cumulative_tokens)
                    if not ceiling_hit and observed_tokens >= threshold:
                        ceiling_hit = True
                        logger.warning(
                            "token ceiling reached; aborting agent",
                            extra={"tokens": observed_tokens, "ceiling": job.token_ceiling},
                        )
                        await adapter.abort(handle.execution_id)
                elif isinstance(event, FileEditEvent):
                    observed_files.add(event.path)
                await self._events.emit(
                    EventType.EXECUTION_PROGRESS,
                    job.id,
                    tokens_used=observed_tokens,
                    stage=stage_for_event(event),
                )
            result = await handle.result
        finally:
            self._live.pop(job.id, None)

        merged = result.merged_with(
            observed_tokens=observed_tokens, observed_files=tuple(observed_files)
        )
        if ceiling_hit:
            job.result = merged
            raise TokenCeilingReached(
                f"token ceiling reached: {merged.total_tokens_used} of {job.token_ceiling} tokens"
            )
        return merged

    async def _finalize_success(self, job: Job, sandbox: Sandbox) -> None:
        outcome = await self._commit(sandbox, job.item)
        job.commit_sha = outcome.commit_sha
        if job.result is not None and outcome.files_changed:
            job.result = job.result.merged_with(
                observed_tokens=job.result.total_tokens_used,
                observed_files=outcome.files_changed,
            )

        if not outcome.has_changes:
            job.publish_skip_reason = "no changes to publish"
        elif self._guard is not None:
            decision = await self._guard.check_before_publish(job.item)
            if decision.publish:
                job.published = True
            else:
                job.publish_skip_reason = decision.reason
                await self._events.emit(
                    EventType.PUBLISH_SKIPPED,
                    job.id,
                    work_item_id=job.item.id,
                    reason=decision.reason,
                    existing_url=decision.existing_url,
                )
        else:
            job.published = True

        job.transition(JobStatus.COMPLETED)
        result = job.result
        await self._events.emit(
            EventType.EXECUTION_COMPLETED,
            job.id,
            work_item_id=job.item.id,
            attempts=job.attempts,
            tokens_used=0 if result is None else result.total_tokens_used,
            files_changed=[] if result is None else list(result.files_changed),
            commit_sha=job.commit_sha,
            published=job.published,
        )
        logger.info(
            "job completed",
            extra={"attempts": job.attempts, "published": job.published},
        )

    async def _finish_failure(self, job: Job, error: JobError, *, allow_retry: bool = True) -> None:
        job.error = error
        if self._cancel.is_cancelled:
            await self._finish_aborted(job)
            return

        if allow_retry and error.retryable and job.attempts < job.max_attempts:
            delay = compute_backoff_delay(
                retry_number=job.attempts,
                config=self._limits.backoff,
                kind=error.kind,
                random_fn=self._random_fn,
            )
            job.transition(JobStatus.RETRYING)
            await self._events.emit(
                EventType.EXECUTION_RETRYING,
                job.id,
                attempt=job.attempts,
                kind=error.kind.value,
                message=truncate_diagnostic(error.message),
                delay_seconds=delay,
            )
            logger.warning(
                "job attempt failed; retrying",
                extra={"attempt": job.attempts, "kind": error.kind, "delay_seconds": delay},
            )
            self._spawn(self._requeue_after(job, delay))
            return

        job.transition(JobStatus.FAILED)
        await self._events.emit(
            EventType.EXECUTION_FAILED,
            job.id,
            work_item_id=job.item.id,
            attempts=job.attempts,
            kind=error.kind.value,
            message=truncate_diagnostic(error.message),
        )
        logger.error(
            "job failed",
            extra={"attempts": job.attempts, "kind": error.kind, "detail": error.message},
        )

    async def _finish_aborted(self, job: Job) -> None:
        if job.status.is_terminal:
            return
        job.transition(JobStatus.ABORTED)
        await self._events.emit(
            EventType.EXECUTION_ABORTED,
            job.id,
            work_item_id=job.item.id,
            reason=self._cancel.reason,
        )

    async def _requeue_after(self, job: Job, delay_seconds: float) -> None:
        if delay_seconds > 0:
            try:
                await asyncio.wait_for(self._cancel.wait(), timeout=delay_seconds)
            except TimeoutError:
                pass
        if self._cancel.is_cancelled or job.status is not JobStatus.RETRYING:
            return
        self._push(job)

    async def _abort_run(self, reason: str, kind: ErrorKind) -> None:
        if self._cancel.is_cancelled:
            return
        self._cancel.cancel(reason)
        self._abort_reason = reason
        self._abort_kind = kind
        logger.warning("aborting run", extra={"reason": reason, "kind": kind})
        if self._wakeup is not None:
            self._wakeup.set()

        self._heap.clear()
        for job in self.jobs:
            if job.status is JobStatus.QUEUED or job.status is JobStatus.RETRYING:
                await self._finish_aborted(job)

        live = tuple(self._live.values())
        results = await asyncio.gather(
            *(adapter.abort(handle.execution_id) for adapter, handle in live),
            return_exceptions=True,
        )
        for (adapter, handle), outcome in zip(live, results, strict=True):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "agent abort failed",
                    extra={
                        "provider": adapter.provider_id,
                        "execution_id": handle.execution_id,
                        "detail": str(outcome),
                    },
                )

    def _select_adapter(self) -> AgentAdapter | None:
        count = len(self._adapters)
        for offset in range(count):
            index = (self._next_adapter + offset) % count
            adapter = self._adapters[index]
            if self._breakers[adapter.provider_id].allow_request():
                self._next_adapter = (index + 1) % count
                return adapter
        return None


def stage_for_event(event: AgentEvent) -> str:
    """Short progress label for one agent event."""

    if isinstance(event, OutputEvent):
        return event.stream
    if isinstance(event, TokenEvent):
        return "tokens"
    if isinstance(event, FileEditEvent):
        return f"file:{event.action.value}"
    if isinstance(event, ToolUseEvent):
        return f"tool:{event.tool}"
    if isinstance(event, ErrorEvent):
        return "agent-warning" if event.recoverable else "agent-error"
    return "running"


def _job_error(error: BaseException) -> JobError:
    classification = classify_error(error)
    return JobError(
        kind=classification.kind,
        message=classification.message,
        retryable=classification.retryable,
    )


def _metadata_positive_int(item: WorkItem, key: str) -> int | None:
    value = item.metadata.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        return None
    return int(value)


__all__ = [
    "JobReport",
    "JobScheduler",
    "PublishGuard",
    "RunSummary",
    "SandboxProvider",
    "SchedulerLimits",
    "TokenCeilingReached",
    "stage_for_event",
]
