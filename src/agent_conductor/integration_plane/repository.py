"""
agent-conductor — base repository preparation

Purpose
- Bring a local clone of the target repository up to date with its remote base
  branch before any sandbox is cut from it.

Functional requirements
- Existing clones are refreshed with a shallow fetch and hard reset.
- Missing clones are created with a shallow single-branch clone.
- Transient failures are retried with fixed backoff delays.
- Authentication failures on an HTTPS remote fall back once to the SSH remote:
  a clone first removes any partial checkout, a fetch repoints ``origin``.
- Long-running clones are killed only when they stop reporting progress.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from agent_conductor.constants import DEFAULT_BASE_BRANCH
from agent_conductor.errors import (
    ErrorKind,
    RepositoryError,
    classify_error,
    truncate_diagnostic,
)
from agent_conductor.integration_plane.git import GitCommandError, run_git
from agent_conductor.integration_plane.sandbox import validate_branch_name
from agent_conductor.utils.fs import safe_delete

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS_SECONDS: Final[tuple[float, ...]] = (1.0, 4.0, 16.0)
CLONE_INACTIVITY_TIMEOUT_SECONDS: Final[float] = 300.0
FETCH_INACTIVITY_TIMEOUT_SECONDS: Final[float] = 120.0

_AUTH_FAILURE_RE: Final[re.Pattern[str]] = re.compile(
    r"authentication failed|could not read username|permission denied|\b401\b|\b403\b"
    r"|terminal prompts disabled|repository not found",
    re.IGNORECASE,
)
_GITHUB_HTTPS_RE: Final[re.Pattern[str]] = re.compile(
    r"^https://(?:[^@/]+@)?github\.com/(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$"
)

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RepositorySpec:
    """Where a repository lives remotely and where it should be checked out locally."""

    local_path: Path
    clone_url: str
    base_branch: str = DEFAULT_BASE_BRANCH
    ssh_url: str | None = None

    def __post_init__(self) -> None:
        if not self.clone_url.strip():
            raise ValueError("clone_url must not be empty")
        validate_branch_name(self.base_branch, "base_branch")

    @property
    def fallback_url(self) -> str | None:
        if self.ssh_url:
            return self.ssh_url
        return ssh_url_for(self.clone_url)


def ssh_url_for(clone_url: str) -> str | None:
    """SSH form of a GitHub HTTPS clone URL, or ``None`` for other remotes."""

    match = _GITHUB_HTTPS_RE.match(clone_url.strip())
    if match is None:
        return None
    return f"git@github.com:{match['owner']}/{match['repo']}.git"


def is_auth_failure(message: str) -> bool:
    return _AUTH_FAILURE_RE.search(message) is not None


class RepositoryPreparer:
    """Clones or refreshes a repository so the base branch matches the remote."""

    def __init__(
        self,
        *,
        retry_delays_seconds: Sequence[float] = DEFAULT_RETRY_DELAYS_SECONDS,
        clone_inactivity_timeout_seconds: float = CLONE_INACTIVITY_TIMEOUT_SECONDS,
        fetch_inactivity_timeout_seconds: float = FETCH_INACTIVITY_TIMEOUT_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if any(delay < 0 for delay in retry_delays_seconds):
            raise ValueError("retry delays must be >= 0")
        self._retry_delays = tuple(float(delay) for delay in retry_delays_seconds)
        self._clone_inactivity = clone_inactivity_timeout_seconds
        self._fetch_inactivity = fetch_inactivity_timeout_seconds
        self._sleep = sleep

    async def prepare(self, spec: RepositorySpec) -> Path:
        """Return the ready local path; raise ``RepositoryError`` once retries are exhausted."""

        local_path = spec.local_path.resolve()
        if (local_path / ".git").exists():
            try:
                await self._with_retries(
                    "fetch", lambda: self._refresh(local_path, spec.base_branch)
                )
            except RepositoryError as exc:
                fallback = _fallback_for(spec, exc)
                if fallback is None:
                    raise
                logger.warning(
                    "fetch authentication failed; retrying over ssh",
                    extra={"path": local_path, "remote": fallback},
                )
                await self._with_retries(
                    "fetch",
                    lambda: self._refresh(local_path, spec.base_branch, remote_url=fallback),
                )
            return local_path

        try:
            await self._with_retries(
                "clone", lambda: self._clone(spec.clone_url, local_path, spec.base_branch)
            )
        except RepositoryError as exc:
            fallback = _fallback_for(spec, exc)
            if fallback is None:
                raise
            logger.warning(
                "clone authentication failed; retrying over ssh",
                extra={"path": local_path, "remote": fallback},
            )
            await self._with_retries(
                "clone", lambda: self._clone(fallback, local_path, spec.base_branch)
            )
        return local_path

    async def _with_retries(self, operation: str, action: Callable[[], Awaitable[None]]) -> None:
        attempts = len(self._retry_delays) + 1
        last_error: GitCommandError | OSError | None = None
        for attempt in range(1, attempts + 1):
            try:
                await action()
                return
            except (GitCommandError, OSError) as exc:
                last_error = exc
                classification = classify_error(exc)
                # Auth failures go to the transport fallback instead.
                if is_auth_failure(str(exc)) or not classification.retryable:
                    break
                if attempt == attempts:
                    break
                delay = self._retry_delays[attempt - 1]
                logger.warning(
                    "repository %s failed; retrying",
                    operation,
                    extra={
                        "attempt": attempt,
                        "delay_seconds": delay,
                        "kind": classification.kind,
                        "detail": classification.message,
                    },
                )
                await self._sleep(delay)

        assert last_error is not None
        classification = classify_error(last_error)
        raise RepositoryError(
            f"repository {operation} failed: {truncate_diagnostic(str(last_error), 500)}",
            kind=classification.kind,
        ) from last_error

    async def _clone(self, url: str, local_path: Path, base_branch: str) -> None:
        preexisting = local_path.exists()
        if preexisting and any(local_path.iterdir()):
            raise RepositoryError(
                f"clone destination exists and is not a git repository: {local_path}",
                kind=ErrorKind.VALIDATION,
                retryable=False,
            )
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await run_git(
                [
                    "clone",
                    "--progress",
                    "--depth",
                    "1",
                    "--branch",
                    base_branch,
                    url,
                    str(local_path),
                ],
                cwd=local_path.parent,
                timeout_seconds=None,
                inactivity_timeout_seconds=self._clone_inactivity,
            )
        except BaseException:
            _discard_partial_clone(local_path, keep_root=preexisting)
            raise
        logger.info("repository cloned", extra={"path": local_path, "branch": base_branch})

    async def _refresh(
        self, local_path: Path, base_branch: str, *, remote_url: str | None = None
    ) -> None:
        if remote_url is not None:
            await run_git(["remote", "set-url", "origin", remote_url], cwd=local_path)
        await run_git(
            ["fetch", "--progress", "origin", base_branch, "--depth=1", "--prune"],
            cwd=local_path,
            timeout_seconds=None,
            inactivity_timeout_seconds=self._fetch_inactivity,
        )
        remote_ref = f"origin/{base_branch}"
        await run_git(["checkout", "-B", base_branch, remote_ref], cwd=local_path)
        await run_git(["reset", "--hard", remote_ref], cwd=local_path)
        await run_git(["clean", "-fd"], cwd=local_path)
        logger.info("repository refreshed", extra={"path": local_path, "branch": base_branch})


def _fallback_for(spec: RepositorySpec, error: RepositoryError) -> str | None:
    """Alternate remote to try after ``error``, or ``None`` when no fallback applies."""

    fallback = spec.fallback_url
    if fallback is None or fallback == spec.clone_url:
        return None
    cause = error.__cause__
    if not is_auth_failure(error.detail if cause is None else str(cause)):
        return None
    return fallback


def _discard_partial_clone(local_path: Path, *, keep_root: bool) -> None:
    if not local_path.exists():
        return
    if not keep_root:
        safe_delete(local_path, local_path.parent)
        return
    for child in local_path.iterdir():
        safe_delete(child, local_path)


__all__ = [
    "CLONE_INACTIVITY_TIMEOUT_SECONDS",
    "DEFAULT_RETRY_DELAYS_SECONDS",
    "FETCH_INACTIVITY_TIMEOUT_SECONDS",
    "RepositoryPreparer",
    "RepositorySpec",
    "is_auth_failure",
    "ssh_url_for",
]
