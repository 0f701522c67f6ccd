"""Control plane: job scheduling, retry policy, and task prompts."""

from agent_conductor.control_plane.prompt import build_task_prompt
from agent_conductor.control_plane.retry import (
    BackoffConfig,
    BreakerState,
    CircuitBreaker,
    compute_backoff_delay,
)
from agent_conductor.control_plane.scheduler import (
    JobReport,
    JobScheduler,
    PublishGuard,
    RunSummary,
    SandboxProvider,
    SchedulerLimits,
    TokenCeilingReached,
    stage_for_event,
)

__all__ = [
    "BackoffConfig",
    "BreakerState",
    "CircuitBreaker",
    "JobReport",
    "JobScheduler",
    "PublishGuard",
    "RunSummary",
    "SandboxProvider",
    "SchedulerLimits",
    "TokenCeilingReached",
    "build_task_prompt",
    "compute_backoff_delay",
    "stage_for_event",
]
