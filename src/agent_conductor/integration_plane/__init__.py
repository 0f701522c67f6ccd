"""Integration plane: git worktree sandboxes, repository preparation, and the publish guard."""

from agent_conductor.integration_plane.git import (
    GitCommandError,
    GitResult,
    git_environment,
    run_git,
)
from agent_conductor.integration_plane.guard import (
    ClaimGuard,
    GitHubClient,
    PublishDecision,
    referenced_issue_numbers,
    work_item_from_issue,
    work_items_from_issues,
)
from agent_conductor.integration_plane.repository import (
    RepositoryPreparer,
    RepositorySpec,
    is_auth_failure,
    ssh_url_for,
)
from agent_conductor.integration_plane.sandbox import (
    SAFE_BRANCH_RE,
    CommitOutcome,
    Sandbox,
    SandboxManager,
    build_branch_name,
    commit_sandbox_changes,
    sanitize_branch_segment,
    validate_branch_name,
)

__all__ = [
    "SAFE_BRANCH_RE",
    "ClaimGuard",
    "CommitOutcome",
    "GitCommandError",
    "GitHubClient",
    "GitResult",
    "PublishDecision",
    "RepositoryPreparer",
    "RepositorySpec",
    "Sandbox",
    "SandboxManager",
    "build_branch_name",
    "commit_sandbox_changes",
    "git_environment",
    "is_auth_failure",
    "referenced_issue_numbers",
    "run_git",
    "sanitize_branch_segment",
    "ssh_url_for",
    "validate_branch_name",
    "work_item_from_issue",
    "work_items_from_issues",
]
