"""
agent-conductor — per-job git worktree sandboxes

Purpose
- Give each job an isolated, branch-checked-out working directory that shares the
  object store of one base repository.

Functional requirements
- Branch names are validated against an allow-list before any git invocation.
- Worktree creation and removal against the shared repository are serialized; a
  failed creation never blocks the next one.
- ``release`` removes the worktree forcefully, logs failures, and never raises.
- Committing inside a sandbox is best-effort: any failure degrades to "no changes".
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Final

from agent_conductor.constants import COMMIT_TITLE_PREFIX, DEFAULT_BRANCH_PREFIX, WORKTREES_DIRNAME
from agent_conductor.errors import BranchValidationError, SandboxError, classify_error
from agent_conductor.integration_plane.git import (
    DEFAULT_GIT_TIMEOUT_SECONDS,
    GitCommandError,
    GitResult,
    run_git,
)
from agent_conductor.utils.concurrency import SerialChain
from agent_conductor.utils.fs import safe_delete

if TYPE_CHECKING:
    from agent_conductor.domain.models import WorkItem

logger = logging.getLogger(__name__)

SAFE_BRANCH_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9/_.-]+$")
_SAFE_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._-]+$")
_UNSAFE_SEGMENT_RE: Final[re.Pattern[str]] = re.compile(r"[^a-z0-9/_-]+")
_MAX_BRANCH_LENGTH: Final[int] = 200
_MAX_SEGMENT_LENGTH: Final[int] = 48
_COMMIT_TITLE_LIMIT: Final[int] = 72


def validate_branch_name(name: str, field_name: str = "branch") -> str:
    """Return ``name`` when it is a safe git branch name, else raise ``BranchValidationError``."""

    if not isinstance(name, str) or not name:
        raise BranchValidationError(f"{field_name} must be a non-empty string")
    if len(name) > _MAX_BRANCH_LENGTH:
        raise BranchValidationError(f"{field_name} exceeds {_MAX_BRANCH_LENGTH} characters")
    if SAFE_BRANCH_RE.fullmatch(name) is None:
        raise BranchValidationError(f"{field_name} contains unsupported characters: {name!r}")
    if name.startswith(("-", "/", ".")) or name.endswith(("/", ".", ".lock")):
        raise BranchValidationError(f"{field_name} has an invalid prefix or suffix: {name!r}")
    if ".." in name or "//" in name or "/." in name:
        raise BranchValidationError(f"{field_name} contains an invalid sequence: {name!r}")
    return name


def sanitize_branch_segment(value: str) -> str:
    """Lowercase ``value`` and collapse characters outside ``[a-z0-9/_-]`` to ``-``."""

    cleaned = _UNSAFE_SEGMENT_RE.sub("-", value.strip().lower())
    cleaned = re.sub(r"-{2,}", "-", cleaned).strip("-/")
    cleaned = re.sub(r"/{2,}", "/", cleaned)
    return cleaned[:_MAX_SEGMENT_LENGTH].strip("-/") or "task"


def build_branch_name(
    *,
    item_id: str,
    job_id: str,
    attempt: int,
    prefix: str = DEFAULT_BRANCH_PREFIX,
    now: datetime | None = None,
) -> str:
    """``{prefix}/{YYYYMMDD}/{item}-{job8}-a{attempt}``, validated."""

    stamp = (now or datetime.now(tz=UTC)).strftime("%Y%m%d")
    segment = sanitize_branch_segment(item_id).replace("/", "-")
    job_segment = sanitize_branch_segment(job_id).replace("/", "-")[:8]
    name = f"{sanitize_branch_segment(prefix)}/{stamp}/{segment}-{job_segment}-a{attempt}"
    return validate_branch_name(name)


@dataclass(slots=True)
class Sandbox:
    """Isolated working tree owned by one job."""

    path: Path
    branch_name: str
    base_branch: str
    start_point: str
    job_id: str
    _manager: SandboxManager = field(repr=False)
    released: bool = False

    async def release(self) -> str | None:
        """Remove this sandbox; returns a diagnostic when cleanup was incomplete."""

        return await self._manager.release(self)


@dataclass(frozen=True, slots=True)
class CommitOutcome:
    """Result of a best-effort commit inside a sandbox."""

    has_changes: bool
    commit_sha: str | None = None
    files_changed: tuple[str, ...] = ()


class SandboxManager:
    """Creates and removes git worktrees for jobs against one shared repository."""

    def __init__(
        self,
        repo_path: Path | str,
        *,
        worktree_root: Path | str | None = None,
        remote: str = "origin",
        git_timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
    ) -> None:
        self._repo_path = Path(repo_path).resolve()
        root = (
            self._repo_path.parent / WORKTREES_DIRNAME if worktree_root is None else worktree_root
        )
        self._worktree_root = Path(root).resolve()
        self._remote = remote
        self._git_timeout_seconds = git_timeout_seconds
        self._chain = SerialChain()
        self._live: dict[str, Sandbox] = {}

    @property
    def repo_path(self) -> Path:
        return self._repo_path

    @property
    def worktree_root(self) -> Path:
        return self._worktree_root

    @property
    def live_sandboxes(self) -> tuple[Sandbox, ...]:
        return tuple(self._live.values())

    @property
    def peak_concurrent_operations(self) -> int:
        return self._chain.peak_active

    async def acquire(
        self,
        base_branch: str,
        job_id: str,
        *,
        branch_name: str | None = None,
    ) -> Sandbox:
        """Create a worktree for ``job_id`` on a new branch cut from ``base_branch``."""

        if _SAFE_ID_RE.fullmatch(job_id or "") is None:
            raise SandboxError(f"unsupported job id: {job_id!r}", job_id=job_id)
        branch = branch_name if branch_name is not None else f"{DEFAULT_BRANCH_PREFIX}/{job_id}"
        validate_branch_name(branch)
        validate_branch_name(base_branch, "base_branch")
        return await self._chain.run(lambda: self._create(base_branch, job_id, branch))

    async def release(self, sandbox: Sandbox) -> str | None:
        """Remove ``sandbox``. Idempotent; failures are logged and returned, never raised."""

        if sandbox.released:
            return None
        sandbox.released = True
        if self._live.get(sandbox.job_id) is sandbox:
            del self._live[sandbox.job_id]
        try:
            problems = await self._chain.run(lambda: self._remove(sandbox))
        except Exception as exc:  # noqa: BLE001 - release must never fail a finished job.
            problems = [f"{type(exc).__name__}: {exc}"]
        if not problems:
            logger.info(
                "sandbox released",
                extra={"job_id": sandbox.job_id, "path": sandbox.path},
            )
            return None
        diagnostic = "; ".join(problems)
        logger.warning(
            "sandbox release incomplete",
            extra={"job_id": sandbox.job_id, "path": sandbox.path, "detail": diagnostic},
        )
        return diagnostic

    async def release_all(self) -> dict[str, str]:
        """Release every live sandbox; returns diagnostics keyed by job id."""

        failures: dict[str, str] = {}
        for sandbox in tuple(self._live.values()):
            problem = await sandbox.release()
            if problem is not None:
                failures[sandbox.job_id] = problem
        return failures

    async def _create(self, base_branch: str, job_id: str, branch: str) -> Sandbox:
        # Checked under the chain so concurrent acquires for one job see each other.
        if job_id in self._live:
            raise SandboxError("job already holds a live sandbox", job_id=job_id)
        path = self._worktree_root / branch
        try:
            if path.exists() or path.is_symlink():
                await self._git(["worktree", "remove", "--force", str(path)], check=False)
                safe_delete(path, self._worktree_root)
            path.parent.mkdir(parents=True, exist_ok=True)
            start_point = await self._resolve_start_point(base_branch)
            await self._git(["worktree", "add", str(path), "-B", branch, start_point])
        except GitCommandError as exc:
            classification = classify_error(exc)
            raise SandboxError(
                f"unable to create worktree for {branch}: {exc}",
                kind=classification.kind,
                job_id=job_id,
            ) from exc
        except (OSError, ValueError) as exc:
            raise SandboxError(
                f"unable to prepare worktree path {path}: {exc}",
                job_id=job_id,
            ) from exc

        sandbox = Sandbox(
            path=path,
            branch_name=branch,
            base_branch=base_branch,
            start_point=start_point,
            job_id=job_id,
            _manager=self,
        )
        self._live[job_id] = sandbox
        logger.info(
            "sandbox acquired",
            extra={"job_id": job_id, "branch": branch, "path": path, "start_point": start_point},
        )
        return sandbox

    async def _remove(self, sandbox: Sandbox) -> list[str]:
        problems: list[str] = []
        removal = await self._git(
            ["worktree", "remove", "--force", str(sandbox.path)], check=False
        )
        if sandbox.path.exists() or sandbox.path.is_symlink():
            try:
                safe_delete(sandbox.path, self._worktree_root)
            except (OSError, ValueError) as exc:
                problems.append(f"worktree remove failed ({removal.stderr.strip()}): {exc}")
        prune = await self._git(["worktree", "prune"], check=False)
        if not prune.ok:
            problems.append(f"worktree prune failed: {prune.stderr.strip()}")
        self._prune_empty_parents(sandbox.path)
        return problems

    async def _resolve_start_point(self, base_branch: str) -> str:
        remote_ref = f"refs/remotes/{self._remote}/{base_branch}"
        probe = await self._git(["rev-parse", "--verify", "--quiet", remote_ref], check=False)
        if probe.ok:
            return f"{self._remote}/{base_branch}"
        local = await self._git(
            ["rev-parse", "--verify", "--quiet", f"refs/heads/{base_branch}"], check=False
        )
        if local.ok:
            return base_branch
        raise GitCommandError(
            command=("git", "rev-parse", remote_ref),
            returncode=local.returncode,
            stdout="",
            stderr=f"base branch not found: {base_branch}",
        )

    async def _git(self, args: list[str], *, check: bool = True) -> GitResult:
        return await run_git(
            args,
            cwd=self._repo_path,
            check=check,
            timeout_seconds=self._git_timeout_seconds,
        )

    def _prune_empty_parents(self, path: Path) -> None:
        candidate = path.parent
        while candidate != self._worktree_root and self._worktree_root in candidate.parents:
            try:
                candidate.rmdir()
            except OSError:
                return
            candidate = candidate.parent


async def commit_sandbox_changes(
    sandbox: Sandbox,
    item: WorkItem,
    *,
    timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
) -> CommitOutcome:
    """
    Stage and commit everything in ``sandbox``.

    Returns ``has_changes=False`` when the tree is clean or when any git step
    fails (for example a missing ``user.email``); the job itself is not failed.
    """

    async def git(*args: str) -> str:
        result = await run_git(args, cwd=sandbox.path, timeout_seconds=timeout_seconds)
        return result.stdout

    try:
        status = await git("status", "--porcelain")
        if not status.strip():
            return CommitOutcome(has_changes=False)
        await git("add", "-A")
        await git("commit", "-m", _commit_message(item))
        commit_sha = (await git("rev-parse", "HEAD")).strip()
        diff = await git("diff", "--name-only", f"{sandbox.start_point}..HEAD")
    except (GitCommandError, OSError) as exc:
        logger.warning(
            "sandbox commit skipped",
            extra={"job_id": sandbox.job_id, "detail": str(exc)},
        )
        return CommitOutcome(has_changes=False)

    files = tuple(sorted(line.strip() for line in diff.splitlines() if line.strip()))
    return CommitOutcome(has_changes=bool(files), commit_sha=commit_sha, files_changed=files)


def _commit_message(item: WorkItem) -> str:
    title = " ".join(item.title.split())
    if len(title) > _COMMIT_TITLE_LIMIT:
        title = title[: _COMMIT_TITLE_LIMIT - 3].rstrip() + "..."
    lines = [f"{COMMIT_TITLE_PREFIX} {title}", "", f"Work item: {item.id}"]
    if item.linked_issue is not None:
        lines.append(f"Fixes #{item.linked_issue.number}")
    return "\n".join(lines)


__all__ = [
    "SAFE_BRANCH_RE",
    "CommitOutcome",
    "Sandbox",
    "SandboxManager",
    "build_branch_name",
    "commit_sandbox_changes",
    "sanitize_branch_segment",
    "validate_branch_name",
]
