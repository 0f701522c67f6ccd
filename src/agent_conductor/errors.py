"""
agent-conductor — error taxonomy and the shared failure classifier.

Purpose
- Define one exception hierarchy for orchestration failures.
- Classify any agent/process/git failure into a fixed ``ErrorKind`` so every retry
  decision in the codebase is made by the same function.

Functional requirements
- Classification is deterministic: the first matching rule wins, in declared order.
- Unknown failures degrade to ``execution_failed`` (non-retryable), never raise.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Final


class ErrorKind(StrEnum):
    """Closed set of failure kinds the scheduler reasons about."""

    VALIDATION = "validation"
    TIMEOUT = "timeout"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    GIT_LOCK = "git_lock"
    EXECUTION_FAILED = "execution_failed"
    TOKEN_LIMIT = "token_limit"
    CANCELLED = "cancelled"
    PUBLISH_CONFLICT = "publish_conflict"


RETRYABLE_KINDS: Final[frozenset[ErrorKind]] = frozenset(
    {
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMITED,
        ErrorKind.NETWORK,
        ErrorKind.GIT_LOCK,
    }
)

_OOM_EXIT_CODES: Final[frozenset[int]] = frozenset({137})
_DEFAULT_DIAGNOSTIC_LIMIT: Final[int] = 300

_CLASSIFICATION_RULES: Final[tuple[tuple[ErrorKind, re.Pattern[str]], ...]] = (
    (ErrorKind.TIMEOUT, re.compile(r"timed out|timeout", re.IGNORECASE)),
    (ErrorKind.RESOURCE_EXHAUSTED, re.compile(r"out of memory|ENOMEM|heap", re.IGNORECASE)),
    (
        ErrorKind.RATE_LIMITED,
        re.compile(r"rate.?limit|\b429\b|too many requests|throttl", re.IGNORECASE),
    ),
    (
        ErrorKind.NETWORK,
        re.compile(
            r"network|ECONN|ENOTFOUND|EAI_AGAIN|connection reset|could not resolve host"
            r"|early EOF|RPC failed|remote end hung up unexpectedly",
            re.IGNORECASE,
        ),
    ),
    (ErrorKind.GIT_LOCK, re.compile(r"index\.lock|cannot lock ref", re.IGNORECASE)),
    (ErrorKind.CANCELLED, re.compile(r"\bcancell?ed\b|\baborted\b", re.IGNORECASE)),
)


class ConductorError(RuntimeError):
    """Base error carrying a classified kind and retry hint."""

    default_kind: ErrorKind = ErrorKind.EXECUTION_FAILED

    def __init__(
        self,
        detail: str,
        *,
        kind: ErrorKind | None = None,
        retryable: bool | None = None,
        job_id: str | None = None,
    ) -> None:
        resolved_kind = self.default_kind if kind is None else ErrorKind(kind)
        self.kind = resolved_kind
        self.detail = detail
        self.retryable = resolved_kind in RETRYABLE_KINDS if retryable is None else retryable
        self.job_id = job_id
        message = f"kind={resolved_kind.value} retryable={self.retryable} detail={detail}"
        if job_id is not None:
            message = f"job={job_id} {message}"
        super().__init__(message)


class ConfigurationError(ConductorError):
    """Raised for invalid configuration or caller input; never retried."""

    default_kind = ErrorKind.VALIDATION

    def __init__(self, detail: str, *, job_id: str | None = None) -> None:
        super().__init__(detail, kind=ErrorKind.VALIDATION, retryable=False, job_id=job_id)


class BranchValidationError(ConfigurationError):
    """Raised when a branch name falls outside the allow-list."""


class SandboxError(ConductorError):
    """Raised when an isolated working tree cannot be created."""


class RepositoryError(ConductorError):
    """Raised when the shared base repository cannot be prepared or reached."""

    default_kind = ErrorKind.NETWORK


class AgentError(ConductorError):
    """Raised for failures of an external agent process."""


class GuardError(ConductorError):
    """Raised when a duplicate-contribution lookup fails."""

    default_kind = ErrorKind.NETWORK


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    """Normalized classification of a failure."""

    kind: ErrorKind
    message: str
    retryable: bool

    @property
    def diagnostic(self) -> str:
        return truncate_diagnostic(self.message)


def classify_error(
    error: BaseException | str | None,
    *,
    exit_code: int | None = None,
) -> ErrorClassification:
    """
    Classify ``error`` into an ``ErrorKind``.

    ``ConductorError`` instances keep their own kind. Everything else is matched by
    message text against the ordered rule table; an exit code of 137 (killed by the
    OOM killer) is treated as resource exhaustion when no text rule matches first.
    """

    if isinstance(error, ConductorError):
        return ErrorClassification(kind=error.kind, message=error.detail, retryable=error.retryable)

    message = _message_for(error)
    if isinstance(error, TimeoutError):
        return _classification(ErrorKind.TIMEOUT, message or "operation timed out")
    if isinstance(error, asyncio.CancelledError):
        return _classification(ErrorKind.CANCELLED, message or "execution was cancelled")
    if isinstance(error, MemoryError):
        return _classification(ErrorKind.RESOURCE_EXHAUSTED, message or "out of memory")

    for kind, pattern in _CLASSIFICATION_RULES:
        if pattern.search(message):
            return _classification(kind, message)

    if exit_code is not None and exit_code in _OOM_EXIT_CODES:
        return _classification(ErrorKind.RESOURCE_EXHAUSTED, message or f"exit code {exit_code}")

    if not message:
        message = "unknown error" if exit_code is None else f"process exited with code {exit_code}"
    return _classification(ErrorKind.EXECUTION_FAILED, message)


def is_retryable_error(error: BaseException | str | None) -> bool:
    """Return whether ``error`` classifies as a transient, retryable failure."""

    return classify_error(error).retryable


def truncate_diagnostic(text: str, limit: int = _DEFAULT_DIAGNOSTIC_LIMIT) -> str:
    """Collapse whitespace and cut ``text`` to ``limit`` characters."""

    if limit <= 0:
        raise ValueError("limit must be > 0")
    collapsed = " ".join(text.split())
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: max(limit - 3, 0)] + "..."


def _classification(kind: ErrorKind, message: str) -> ErrorClassification:
    return ErrorClassification(kind=kind, message=message, retryable=kind in RETRYABLE_KINDS)


def _message_for(error: BaseException | str | None) -> str:
    if error is None:
        return ""
    if isinstance(error, str):
        return error.strip()
    text = str(error).strip()
    if text:
        return text
    return type(error).__name__


__all__ = [
    "RETRYABLE_KINDS",
    "AgentError",
    "BranchValidationError",
    "ConductorError",
    "ConfigurationError",
    "ErrorClassification",
    "ErrorKind",
    "GuardError",
    "RepositoryError",
    "SandboxError",
    "classify_error",
    "is_retryable_error",
    "truncate_diagnostic",
]
