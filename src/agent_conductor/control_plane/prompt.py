"""Deterministic task prompt construction for agent executions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agent_conductor.domain.models import WorkItem

_CLOSING_INSTRUCTION = "Apply minimal, safe changes and ensure the repository remains buildable."


def build_task_prompt(item: WorkItem) -> str:
    """Render ``item`` as the prompt handed to an agent; identical items give identical prompts."""

    lines = [
        "You are implementing a scoped repository contribution task.",
        f"Task ID: {item.id}",
        f"Title: {item.title}",
        f"Source: {item.source}",
        f"Priority: {item.priority}",
        f"Complexity: {item.complexity.value}",
        f"Execution mode: {item.execution_mode.value}",
    ]

    issue = item.linked_issue
    if issue is not None:
        lines.extend(["", f"GitHub Issue #{issue.number}: {issue.url or '(no url)'}"])
        if issue.labels:
            lines.append(f"Labels: {', '.join(issue.labels)}")
        lines.append(
            "Resolve this issue completely. Read the issue description carefully "
            "and implement the fix."
        )

    lines.extend(
        [
            "",
            "Description:",
            item.description or "(no description provided)",
            "",
            "Target files:",
            "\n".join(item.target_files) if item.target_files else "(none provided)",
            "",
            _CLOSING_INSTRUCTION,
        ]
    )
    return "\n".join(lines)


__all__ = ["build_task_prompt"]
