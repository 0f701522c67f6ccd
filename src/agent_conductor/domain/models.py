"""Dataclass domain models for work items, jobs, and execution results."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, NoReturn, TypeVar

if TYPE_CHECKING:
    from agent_conductor.errors import ErrorKind
    from agent_conductor.integration_plane.sandbox import Sandbox

TEnum = TypeVar("TEnum", bound=StrEnum)

_MAX_TEXT = 8192
_MAX_TITLE = 256
_ITEM_ID_RE = re.compile(r"^[A-Za-z0-9._:#/-]{1,128}$")


class Complexity(StrEnum):
    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class ExecutionMode(StrEnum):
    NEW_PR = "new-pr"
    UPDATE_PR = "update-pr"
    DIRECT_COMMIT = "direct-commit"


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ABORTED})

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.ABORTED}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.RETRYING, JobStatus.ABORTED}
    ),
    JobStatus.RETRYING: frozenset({JobStatus.RUNNING, JobStatus.ABORTED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.ABORTED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class LinkedIssue:
    """External tracker issue a work item resolves."""

    number: int
    url: str | None = None
    labels: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, object], path: str = "linked_issue") -> LinkedIssue:
        parsed = _expect_object(data, path, required={"number"}, optional={"url", "labels"})
        return cls(
            number=_as_int(parsed["number"], f"{path}.number", minimum=1),
            url=_as_optional_str(parsed.get("url"), f"{path}.url"),
            labels=_as_str_tuple(parsed.get("labels", ()), f"{path}.labels"),
        )

    def to_dict(self) -> dict[str, object]:
        return {"number": self.number, "url": self.url, "labels": list(self.labels)}


@dataclass(frozen=True, slots=True)
class WorkItem:
    """Immutable unit of work produced by discovery."""

    id: str
    title: str
    description: str = ""
    source: str = "manual"
    target_files: tuple[str, ...] = ()
    priority: int = 50
    complexity: Complexity = Complexity.SIMPLE
    execution_mode: ExecutionMode = ExecutionMode.NEW_PR
    linked_issue: LinkedIssue | None = None
    metadata: Mapping[str, object] = field(default_factory=dict)
    discovered_at: datetime | None = None

    def __post_init__(self) -> None:
        if _ITEM_ID_RE.fullmatch(self.id) is None:
            _fail("WorkItem.id", f"unsupported identifier: {self.id!r}")
        if not self.title.strip():
            _fail("WorkItem.title", "must not be empty")
        if not 0 <= self.priority <= 100:
            _fail("WorkItem.priority", "must be between 0 and 100")
        for path in self.target_files:
            _validate_relative_path(path, "WorkItem.target_files")

    @classmethod
    def from_dict(cls, data: Mapping[str, object], path: str = "work_item") -> WorkItem:
        parsed = _expect_object(
            data,
            path,
            required={"id", "title"},
            optional={
                "description",
                "source",
                "target_files",
                "priority",
                "complexity",
                "execution_mode",
                "linked_issue",
                "metadata",
                "discovered_at",
            },
        )
        linked_raw = parsed.get("linked_issue")
        linked_issue = (
            None
            if linked_raw is None
            else LinkedIssue.from_dict(_as_mapping(linked_raw, f"{path}.linked_issue"))
        )
        discovered_raw = parsed.get("discovered_at")
        return cls(
            id=_as_str(parsed["id"], f"{path}.id", max_len=128),
            title=_as_str(parsed["title"], f"{path}.title", max_len=_MAX_TITLE),
            description=_as_str(parsed.get("description", ""), f"{path}.description", min_len=0),
            source=_as_str(parsed.get("source", "manual"), f"{path}.source", max_len=64),
            target_files=_as_str_tuple(parsed.get("target_files", ()), f"{path}.target_files"),
            priority=_as_int(parsed.get("priority", 50), f"{path}.priority", minimum=0),
            complexity=_as_enum(
                parsed.get("complexity", Complexity.SIMPLE.value),
                Complexity,
                f"{path}.complexity",
            ),
            execution_mode=_as_enum(
                parsed.get("execution_mode", ExecutionMode.NEW_PR.value),
                ExecutionMode,
                f"{path}.execution_mode",
            ),
            linked_issue=linked_issue,
            metadata=dict(_as_mapping(parsed.get("metadata", {}), f"{path}.metadata")),
            discovered_at=(
                None if discovered_raw is None else _as_datetime(discovered_raw, f"{path}.discovered_at")
            ),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "source": self.source,
            "target_files": list(self.target_files),
            "priority": self.priority,
            "complexity": self.complexity.value,
            "execution_mode": self.execution_mode.value,
            "linked_issue": None if self.linked_issue is None else self.linked_issue.to_dict(),
            "metadata": dict(self.metadata),
            "discovered_at": None if self.discovered_at is None else self.discovered_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token counts carried by a single parser event."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    cumulative_tokens: int | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.input_tokens is None
            and self.output_tokens is None
            and self.cumulative_tokens is None
        )


@dataclass(slots=True)
class TokenState:
    """Running, monotonic token counters for one agent execution."""

    input_tokens: int = 0
    output_tokens: int = 0
    cumulative_tokens: int = 0

    def apply(self, usage: TokenUsage) -> bool:
        """Fold ``usage`` into the counters; return ``True`` when anything grew."""

        before = (self.input_tokens, self.output_tokens, self.cumulative_tokens)
        if usage.input_tokens is not None:
            self.input_tokens = max(self.input_tokens, usage.input_tokens)
        if usage.output_tokens is not None:
            self.output_tokens = max(self.output_tokens, usage.output_tokens)
        candidate = (
            usage.cumulative_tokens
            if usage.cumulative_tokens is not None
            else self.input_tokens + self.output_tokens
        )
        self.cumulative_tokens = max(self.cumulative_tokens, candidate)
        return before != (self.input_tokens, self.output_tokens, self.cumulative_tokens)

    def snapshot(self) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cumulative_tokens=self.cumulative_tokens,
        )


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Terminal outcome of one agent execution."""

    success: bool
    exit_code: int | None
    total_tokens_used: int = 0
    files_changed: tuple[str, ...] = ()
    duration_seconds: float = 0.0
    error: str | None = None

    def merged_with(self, *, observed_tokens: int, observed_files: tuple[str, ...]) -> ExecutionResult:
        """Combine with what the event stream observed; never lowers counts."""

        files = tuple(sorted(set(self.files_changed) | set(observed_files)))
        return ExecutionResult(
            success=self.success,
            exit_code=self.exit_code,
            total_tokens_used=max(self.total_tokens_used, observed_tokens),
            files_changed=files,
            duration_seconds=self.duration_seconds,
            error=self.error,
        )


@dataclass(frozen=True, slots=True)
class JobError:
    """Classified failure recorded on a job."""

    kind: ErrorKind
    message: str
    retryable: bool


@dataclass(slots=True)
class Job:
    """A work item admitted for execution; mutated only by the scheduler."""

    id: str
    item: WorkItem
    sequence: int
    max_attempts: int
    token_ceiling: int
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: ExecutionResult | None = None
    error: JobError | None = None
    sandbox: Sandbox | None = None
    provider_id: str | None = None
    branch_name: str | None = None
    commit_sha: str | None = None
    published: bool = False
    publish_skip_reason: str | None = None
    cleanup_error: str | None = None

    def transition(self, status: JobStatus) -> None:
        """Move to ``status``; terminal states are final."""

        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(
                f"invalid job transition for {self.id}: {self.status.value} -> {status.value}"
            )
        self.status = status
        now = datetime.now(tz=UTC)
        if status is JobStatus.RUNNING and self.started_at is None:
            self.started_at = now
        if status.is_terminal:
            self.completed_at = now


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    parsed = dict(_as_mapping(value, path))
    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")
    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")
    return parsed


def _as_mapping(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    for key in value:
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
    return value


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = _MAX_TEXT,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path)


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        _fail(path, f"expected list of strings, got {type(value).__name__}")
    return tuple(_as_str(item, f"{path}[{index}]") for index, item in enumerate(value))


def _as_enum(value: object, enum_type: type[TEnum], path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    try:
        return enum_type(value.strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        _fail(path, f"unsupported value {value!r}; expected one of: {allowed}")


def _as_datetime(value: object, path: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            _fail(path, f"invalid ISO-8601 timestamp: {value!r}")
    else:
        _fail(path, f"expected timestamp, got {type(value).__name__}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _validate_relative_path(value: str, path: str) -> None:
    candidate = PurePosixPath(value.replace("\\", "/"))
    if candidate.is_absolute():
        _fail(path, f"path must be relative: {value!r}")
    if ".." in candidate.parts:
        _fail(path, f"path must not traverse upwards: {value!r}")


__all__ = [
    "Complexity",
    "ExecutionMode",
    "ExecutionResult",
    "Job",
    "JobError",
    "JobStatus",
    "LinkedIssue",
    "TokenState",
    "TokenUsage",
    "WorkItem",
]
