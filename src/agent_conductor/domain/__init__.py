"""Domain models shared by the scheduler, adapters, and sandbox layers."""

from agent_conductor.domain.models import (
    Complexity,
    ExecutionMode,
    ExecutionResult,
    Job,
    JobError,
    JobStatus,
    LinkedIssue,
    TokenState,
    TokenUsage,
    WorkItem,
)
from agent_conductor.domain.work_items import WorkItemLoadError, load_work_items, parse_work_items

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
    "WorkItemLoadError",
    "load_work_items",
    "parse_work_items",
]
