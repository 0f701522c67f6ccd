"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Git branch names.
DEFAULT_BASE_BRANCH: Final[str] = "main"
DEFAULT_BRANCH_PREFIX: Final[str] = "oac"
COMMIT_TITLE_PREFIX: Final[str] = "[OAC]"
WORKTREES_DIRNAME: Final[str] = ".oac-worktrees"

# Scheduler defaults.
DEFAULT_CONCURRENCY: Final[int] = 2
DEFAULT_MAX_ATTEMPTS: Final[int] = 2
DEFAULT_JOB_TIMEOUT_SECONDS: Final[float] = 300.0
DEFAULT_TOKEN_CEILING: Final[int] = 50_000
TOKEN_CEILING_ABORT_RATIO: Final[float] = 0.9

# Environment markers that make a child agent believe it is already nested inside
# another agent session.
NESTED_SESSION_ENV_VARS: Final[tuple[str, ...]] = (
    "CLAUDECODE",
    "CLAUDE_CODE_SESSION",
    "CLAUDE_CODE_ENTRYPOINT",
)
TOKEN_BUDGET_ENV_VAR: Final[str] = "OAC_TOKEN_BUDGET"
ALLOW_COMMITS_ENV_VAR: Final[str] = "OAC_ALLOW_COMMITS"

# Runtime paths.
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath(".oac/logs")
DEFAULT_EVENTS_FILE: Final[str] = "events.jsonl"

__all__ = [
    "ALLOW_COMMITS_ENV_VAR",
    "COMMIT_TITLE_PREFIX",
    "DEFAULT_BASE_BRANCH",
    "DEFAULT_BRANCH_PREFIX",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_EVENTS_FILE",
    "DEFAULT_JOB_TIMEOUT_SECONDS",
    "DEFAULT_LOG_DIR",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_TOKEN_CEILING",
    "NESTED_SESSION_ENV_VARS",
    "TOKEN_BUDGET_ENV_VAR",
    "TOKEN_CEILING_ABORT_RATIO",
    "WORKTREES_DIRNAME",
]
