"""Command-line interface router for agent-conductor."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Final

from agent_conductor.config import (
    ConductorSettings,
    dump_effective_config,
    load_config,
)
from agent_conductor.control_plane import JobScheduler, RunSummary
from agent_conductor.domain.models import WorkItem
from agent_conductor.domain.work_items import load_work_items
from agent_conductor.errors import ErrorKind
from agent_conductor.integration_plane import (
    ClaimGuard,
    GitHubClient,
    RepositoryPreparer,
    RepositorySpec,
    SandboxManager,
    commit_sandbox_changes,
)
from agent_conductor.main import ExitCode
from agent_conductor.observability.events import EventBus, EventType, JsonlEventSink
from agent_conductor.observability.logging import (
    LoggingConfig,
    correlation_scope,
    setup_logging,
)
from agent_conductor.synthesis_plane.agents import (
    AgentAdapter,
    AgentAvailability,
    default_registry,
)
from agent_conductor.ui.render import CLIRenderer, create_renderer

logger = logging.getLogger(__name__)

PERSISTED_EVENT_TYPES: Final[tuple[EventType, ...]] = (
    EventType.EXECUTION_COMPLETED,
    EventType.EXECUTION_FAILED,
    EventType.EXECUTION_ABORTED,
    EventType.PUBLISH_SKIPPED,
    EventType.RUN_COMPLETED,
)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="conductor",
        description=(
            "agent-conductor: run AI coding-agent CLIs over a queue of work items.\n\n"
            "Common workflows:\n"
            "  conductor run items.yaml     Execute work items in isolated worktrees\n"
            "  conductor agents             Check which agent CLIs are installed\n"
            "  conductor issues             List unclaimed open GitHub issues\n"
            "  conductor config             Print the effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to conductor TOML config (default: ./conductor.toml if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        default=False,
        help="Emit machine-readable JSON instead of text.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Execute work items with the configured agents",
        description=(
            "Load work items from a YAML or JSON file and run each one through an agent\n"
            "inside its own git worktree.\n\n"
            "Examples:\n"
            "  conductor run items.yaml\n"
            "  conductor run items.json --concurrency 4 --provider codex\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("items_path", help="Work-item file (.yaml, .yml or .json).")
    run_parser.add_argument(
        "--repo",
        dest="repo_path",
        default=None,
        help="Local repository path (overrides repository.path).",
    )
    run_parser.add_argument(
        "--concurrency", type=int, default=None, help="Maximum concurrent jobs."
    )
    run_parser.add_argument(
        "--max-attempts", type=int, default=None, help="Attempts per job before failing."
    )
    run_parser.add_argument(
        "--token-ceiling", type=int, default=None, help="Default per-job token ceiling."
    )
    run_parser.add_argument(
        "--timeout", type=float, default=None, help="Per-attempt timeout in seconds."
    )
    run_parser.add_argument(
        "--provider",
        dest="providers",
        action="append",
        default=None,
        help="Agent provider to use; repeat for several (claude_code, codex, gemini).",
    )
    run_parser.add_argument(
        "--allow-commits",
        action="store_true",
        default=None,
        help="Let agents create commits themselves.",
    )
    run_parser.set_defaults(handler=_cmd_run)

    # agents --------------------------------------------------------------
    agents_parser = subparsers.add_parser(
        "agents",
        parents=[common],
        help="Check availability of agent CLIs",
    )
    agents_parser.add_argument(
        "--all",
        dest="all_providers",
        action="store_true",
        default=False,
        help="Probe every built-in provider, not only the configured ones.",
    )
    agents_parser.set_defaults(handler=_cmd_agents)

    # issues --------------------------------------------------------------
    issues_parser = subparsers.add_parser(
        "issues",
        parents=[common],
        help="List open GitHub issues not claimed by an open pull request",
    )
    issues_parser.add_argument("--owner", default=None, help="Repository owner.")
    issues_parser.add_argument("--name", default=None, help="Repository name.")
    issues_parser.set_defaults(handler=_cmd_issues)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration with secrets redacted",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return int(ExitCode.CONFIG_ERROR)

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {
        "repository.path": args.repo_path,
        "scheduler.concurrency": args.concurrency,
        "scheduler.max_attempts": args.max_attempts,
        "scheduler.token_ceiling": args.token_ceiling,
        "scheduler.job_timeout_seconds": args.timeout,
        "scheduler.allow_commits": args.allow_commits,
        "agents.providers": args.providers,
    }
    settings = _load_settings(args, overrides)
    items = load_work_items(_existing_file(args.items_path))
    renderer = _get_renderer(args)

    run_id = uuid.uuid4().hex
    logging_handle = setup_logging(
        LoggingConfig(
            run_id=run_id,
            log_dir=settings.logging.directory,
            level="DEBUG" if args.verbose else settings.logging.level,
            log_to_stderr=settings.logging.stderr and not args.json_output,
        )
    )
    try:
        with correlation_scope(run_id=run_id):
            summary = asyncio.run(execute_run(settings, items))
    finally:
        logging_handle.shutdown()

    if args.json_output:
        payload = summary.to_dict()
        payload["run_id"] = run_id
        payload["events_path"] = settings.logging.events_path.as_posix()
        _emit_json(payload)
    else:
        _render_summary(renderer, summary, run_id=run_id, settings=settings)
    return int(_exit_code_for(summary))


def _cmd_agents(args: argparse.Namespace) -> int:
    settings = _load_settings(args, {})
    registry = default_registry()
    provider_ids = registry.registered_ids() if args.all_providers else settings.providers
    adapters = [_build_adapter(settings, provider_id) for provider_id in provider_ids]
    results = asyncio.run(_probe_all(adapters))

    if args.json_output:
        _emit_json(
            {
                "agents": [
                    {
                        "provider_id": adapter.provider_id,
                        "available": availability.available,
                        "version": availability.version,
                        "error": availability.error,
                    }
                    for adapter, availability in zip(adapters, results, strict=True)
                ]
            }
        )
    else:
        renderer = _get_renderer(args)
        renderer.heading("Agent availability:")
        for adapter, availability in zip(adapters, results, strict=True):
            if availability.available:
                version = availability.version or "unknown version"
                renderer.ok(f"{adapter.provider_id} ({version})")
            else:
                renderer.fail(f"{adapter.provider_id}: {availability.error or 'unavailable'}")

    configured = set(settings.providers)
    missing = [
        adapter.provider_id
        for adapter, availability in zip(adapters, results, strict=True)
        if adapter.provider_id in configured and not availability.available
    ]
    return int(ExitCode.PROVIDER_ERROR if missing else ExitCode.SUCCESS)


def _cmd_issues(args: argparse.Namespace) -> int:
    settings = _load_settings(args, {"guard.owner": args.owner, "guard.name": args.name})
    owner, name = settings.guard.owner, settings.guard.name
    if not owner or not name:
        raise CLIError(
            "repository owner and name are required (use --owner/--name or [guard])",
            exit_code=int(ExitCode.CONFIG_ERROR),
        )
    items = asyncio.run(_discover_issues(settings, owner, name))

    if args.json_output:
        _emit_json({"items": [item.to_dict() for item in items]})
        return int(ExitCode.SUCCESS)

    renderer = _get_renderer(args)
    if not items:
        renderer.text(f"No unclaimed open issues in {owner}/{name}.")
        return int(ExitCode.SUCCESS)
    rows = [
        [
            str(item.linked_issue.number) if item.linked_issue is not None else "",
            item.complexity.value,
            item.title,
        ]
        for item in items
    ]
    renderer.table(["issue", "complexity", "title"], rows, title=f"Open issues in {owner}/{name}:")
    return int(ExitCode.SUCCESS)


def _cmd_config(args: argparse.Namespace) -> int:
    config = load_config(args.config_path)
    ConductorSettings.from_mapping(config)
    if args.json_output:
        print(dump_effective_config(config))
        return int(ExitCode.SUCCESS)
    redacted = json.loads(dump_effective_config(config))
    print(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return int(ExitCode.SUCCESS)


# ---------------------------------------------------------------------------
# Run wiring
# ---------------------------------------------------------------------------


async def execute_run(
    settings: ConductorSettings,
    items: Sequence[WorkItem],
    *,
    adapters: Sequence[AgentAdapter] | None = None,
    environ: Mapping[str, str] | None = None,
) -> RunSummary:
    """Wire the scheduler from ``settings`` and drain ``items`` through it."""

    events = EventBus()
    sink = JsonlEventSink(settings.logging.events_path)
    for event_type in PERSISTED_EVENT_TYPES:
        events.subscribe(event_type, sink)

    if adapters is None:
        adapters = [_build_adapter(settings, provider_id) for provider_id in settings.providers]
    repository = settings.repository
    sandboxes = SandboxManager(
        repository.path,
        worktree_root=settings.worktree_root,
        git_timeout_seconds=settings.git_timeout_seconds,
    )

    prepare = None
    if repository.clone_url:
        spec = RepositorySpec(
            local_path=repository.path,
            clone_url=repository.clone_url,
            base_branch=repository.base_branch,
            ssh_url=repository.ssh_url,
        )
        prepare = partial(RepositoryPreparer().prepare, spec)

    client = _github_client(settings, environ) if settings.guard.enabled else None
    try:
        guard = None
        if client is not None:
            guard = ClaimGuard(
                client,
                claim_timeout_seconds=settings.guard.claim_timeout_seconds,
                publish_timeout_seconds=settings.guard.publish_timeout_seconds,
            )
            items = await guard.discover(partial(_as_awaitable, items))

        scheduler = JobScheduler(
            adapters=adapters,
            sandboxes=sandboxes,
            limits=settings.limits,
            events=events,
            guard=guard,
            commit=partial(commit_sandbox_changes, timeout_seconds=settings.git_timeout_seconds),
            prepare=prepare,
        )
        scheduler.enqueue(items)
        try:
            return await scheduler.run()
        except asyncio.CancelledError:
            await scheduler.abort("interrupted")
            raise
    finally:
        if client is not None:
            await client.aclose()
        leftovers = await sandboxes.release_all()
        for job_id, detail in leftovers.items():
            logger.warning("sandbox cleanup failed", extra={"job_id": job_id, "detail": detail})


async def _as_awaitable(items: Sequence[WorkItem]) -> Sequence[WorkItem]:
    return items


async def _probe_all(adapters: Sequence[AgentAdapter]) -> list[AgentAvailability]:
    return list(await asyncio.gather(*(adapter.check_availability() for adapter in adapters)))


async def _discover_issues(settings: ConductorSettings, owner: str, name: str) -> list[WorkItem]:
    client = _github_client(settings, None, owner=owner, name=name)
    async with client:
        guard = ClaimGuard(
            client,
            claim_timeout_seconds=settings.guard.claim_timeout_seconds,
            publish_timeout_seconds=settings.guard.publish_timeout_seconds,
        )
        return await guard.discover_open_issues()


def _github_client(
    settings: ConductorSettings,
    environ: Mapping[str, str] | None,
    *,
    owner: str | None = None,
    name: str | None = None,
) -> GitHubClient:
    env = os.environ if environ is None else environ
    guard = settings.guard
    return GitHubClient(
        owner or guard.owner or "",
        name or guard.name or "",
        token=env.get(guard.token_env) or None,
        base_url=guard.api_base_url,
    )


def _build_adapter(settings: ConductorSettings, provider_id: str) -> AgentAdapter:
    override = settings.agent_overrides.get(provider_id)
    options: dict[str, Any] = {}
    if override is not None:
        if override.binary:
            options["binary"] = override.binary
        if override.model:
            options["model"] = override.model
    return default_registry().get(provider_id, **options)


def _exit_code_for(summary: RunSummary) -> ExitCode:
    if summary.abort_reason is not None and summary.abort_kind is not ErrorKind.CANCELLED:
        return ExitCode.PROVIDER_ERROR
    if summary.succeeded:
        return ExitCode.SUCCESS
    return ExitCode.JOBS_FAILED


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render_summary(
    renderer: CLIRenderer,
    summary: RunSummary,
    *,
    run_id: str,
    settings: ConductorSettings,
) -> None:
    renderer.heading(f"Run {run_id} finished in {summary.duration_seconds:.1f}s")
    counts = ", ".join(f"{status}={count}" for status, count in summary.counts.items() if count)
    renderer.kv("Jobs", counts or "none")
    renderer.kv("Peak concurrency", summary.peak_concurrency)
    if summary.abort_reason is not None:
        renderer.warning(f"run aborted: {summary.abort_reason}")

    rows = []
    for report in summary.jobs:
        note = report.diagnostic or report.publish_skip_reason or report.cleanup_error
        rows.append(
            [
                report.work_item_id,
                report.status.value,
                report.attempts,
                report.provider_id,
                report.tokens_used,
                None if report.commit_sha is None else report.commit_sha[:10],
                note,
            ]
        )
    renderer.table(
        ["work item", "status", "attempts", "provider", "tokens", "commit", "note"],
        rows,
        title="Jobs:",
    )
    if renderer.verbose:
        for report in summary.jobs:
            if report.files_changed:
                renderer.section(f"{report.work_item_id} changed:")
                renderer.items(list(report.files_changed))
    renderer.section(f"Events: {settings.logging.events_path.as_posix()}")


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(
        no_color=bool(getattr(args, "no_color", False)),
        verbose=bool(getattr(args, "verbose", False)),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(args: argparse.Namespace, overrides: Mapping[str, object]) -> ConductorSettings:
    config = load_config(args.config_path, cli_overrides=overrides)
    return ConductorSettings.from_mapping(config)


def _existing_file(raw: str) -> Path:
    candidate = Path(raw).expanduser()
    if not candidate.is_file():
        raise CLIError(f"work-item file not found: {raw}", exit_code=int(ExitCode.CONFIG_ERROR))
    return candidate


__all__ = ["CLIError", "PERSISTED_EVENT_TYPES", "build_parser", "execute_run", "run_cli"]
