"""
agent-conductor — configuration defaults, validation, and typed settings.

Purpose
- Define built-in defaults and strict validation for ``conductor.toml`` payloads.
- Expose a typed, immutable view (``ConductorSettings``) to the runtime.

Functional requirements
- Unknown keys are rejected; keys that look like embedded secrets get a dedicated
  message pointing at the ``*_env`` indirection.
- All issues are collected before raising, each with its dotted field path.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, TypeVar

from agent_conductor.constants import (
    DEFAULT_BASE_BRANCH,
    DEFAULT_BRANCH_PREFIX,
    DEFAULT_CONCURRENCY,
    DEFAULT_EVENTS_FILE,
    DEFAULT_JOB_TIMEOUT_SECONDS,
    DEFAULT_LOG_DIR,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TOKEN_CEILING,
)
from agent_conductor.control_plane.retry import BackoffConfig
from agent_conductor.control_plane.scheduler import SchedulerLimits
from agent_conductor.errors import ConfigurationError

T = TypeVar("T")

KNOWN_PROVIDERS: Final[tuple[str, ...]] = ("claude_code", "codex", "gemini")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("repository", "path"),
    ("sandbox", "worktree_root"),
    ("logging", "directory"),
)

_ENV_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_SENSITIVE_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(^|_)(token|secret|password|api_?key|credentials?)$", re.IGNORECASE
)

DEFAULT_CONFIG: Final[dict[str, Any]] = {
    "repository": {
        "path": ".",
        "clone_url": "",
        "ssh_url": "",
        "base_branch": DEFAULT_BASE_BRANCH,
    },
    "scheduler": {
        "concurrency": DEFAULT_CONCURRENCY,
        "max_attempts": DEFAULT_MAX_ATTEMPTS,
        "job_timeout_seconds": DEFAULT_JOB_TIMEOUT_SECONDS,
        "token_ceiling": DEFAULT_TOKEN_CEILING,
        "branch_prefix": DEFAULT_BRANCH_PREFIX,
        "allow_commits": False,
    },
    "backoff": {
        "initial_delay_seconds": 1.0,
        "multiplier": 2.0,
        "max_delay_seconds": 30.0,
        "jitter_seconds": 0.5,
    },
    "sandbox": {
        "worktree_root": "",
        "git_timeout_seconds": 60.0,
    },
    "agents": {
        "providers": ["claude_code"],
        "claude_code": {"binary": "", "model": ""},
        "codex": {"binary": "", "model": ""},
        "gemini": {"binary": "", "model": ""},
    },
    "guard": {
        "enabled": False,
        "owner": "",
        "name": "",
        "token_env": "GITHUB_TOKEN",
        "api_base_url": "https://api.github.com",
        "claim_timeout_seconds": 15.0,
        "publish_timeout_seconds": 10.0,
    },
    "logging": {
        "level": "INFO",
        "directory": DEFAULT_LOG_DIR.as_posix(),
        "events_file": DEFAULT_EVENTS_FILE,
        "stderr": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ConfigurationError):
    """Raised when config validation fails; carries every issue found."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered or 'unknown validation failure'}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> dict[str, Any]:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base``; lists and scalars replace."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key in sorted(overlay):
        value = overlay[key]
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass(frozen=True, slots=True)
class RepositorySettings:
    path: Path
    base_branch: str = DEFAULT_BASE_BRANCH
    clone_url: str | None = None
    ssh_url: str | None = None


@dataclass(frozen=True, slots=True)
class AgentOverride:
    binary: str | None = None
    model: str | None = None


@dataclass(frozen=True, slots=True)
class GuardSettings:
    enabled: bool = False
    owner: str | None = None
    name: str | None = None
    token_env: str = "GITHUB_TOKEN"
    api_base_url: str = "https://api.github.com"
    claim_timeout_seconds: float = 15.0
    publish_timeout_seconds: float = 10.0


@dataclass(frozen=True, slots=True)
class LoggingSettings:
    level: str = "INFO"
    directory: Path = Path(DEFAULT_LOG_DIR)
    events_file: str = DEFAULT_EVENTS_FILE
    stderr: bool = True

    @property
    def events_path(self) -> Path:
        return self.directory / self.events_file


@dataclass(frozen=True, slots=True)
class ConductorSettings:
    """Validated, typed view over an effective config mapping."""

    repository: RepositorySettings
    limits: SchedulerLimits
    providers: tuple[str, ...]
    agent_overrides: Mapping[str, AgentOverride] = field(default_factory=dict)
    worktree_root: Path | None = None
    git_timeout_seconds: float = 60.0
    guard: GuardSettings = field(default_factory=GuardSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_mapping(cls, config: Mapping[str, object]) -> ConductorSettings:
        issues = _IssueCollector()
        root = _as_object(config, "config", issues) or {}
        _reject_unknown_keys(root, set(DEFAULT_CONFIG), "", issues)

        repo = _section(root, "repository", issues)
        scheduler = _section(root, "scheduler", issues)
        backoff = _section(root, "backoff", issues)
        sandbox = _section(root, "sandbox", issues)
        agents = _section(root, "agents", issues)
        guard = _section(root, "guard", issues)
        logs = _section(root, "logging", issues)

        repository = RepositorySettings(
            path=Path(_as_path_text(repo.get("path"), "repository.path", issues) or "."),
            base_branch=_as_str(repo.get("base_branch"), "repository.base_branch", issues)
            or DEFAULT_BASE_BRANCH,
            clone_url=_as_optional_str(repo.get("clone_url"), "repository.clone_url", issues),
            ssh_url=_as_optional_str(repo.get("ssh_url"), "repository.ssh_url", issues),
        )

        backoff_config = _build(
            lambda: BackoffConfig(
                initial_delay_seconds=_num(backoff, "backoff", "initial_delay_seconds", issues),
                multiplier=_num(backoff, "backoff", "multiplier", issues, minimum=1.0),
                max_delay_seconds=_num(backoff, "backoff", "max_delay_seconds", issues),
                jitter_seconds=_num(backoff, "backoff", "jitter_seconds", issues),
            ),
            "backoff",
            issues,
        )
        limits = _build(
            lambda: SchedulerLimits(
                concurrency=_int(scheduler, "scheduler", "concurrency", issues, minimum=1),
                max_attempts=_int(scheduler, "scheduler", "max_attempts", issues, minimum=1),
                job_timeout_seconds=_num(
                    scheduler, "scheduler", "job_timeout_seconds", issues, minimum=1.0
                ),
                token_ceiling=_int(scheduler, "scheduler", "token_ceiling", issues, minimum=1),
                base_branch=repository.base_branch,
                branch_prefix=_as_str(
                    scheduler.get("branch_prefix"), "scheduler.branch_prefix", issues
                )
                or DEFAULT_BRANCH_PREFIX,
                allow_commits=_as_bool(
                    scheduler.get("allow_commits"), "scheduler.allow_commits", issues
                ),
                backoff=backoff_config or BackoffConfig(),
            ),
            "scheduler",
            issues,
        )

        providers, overrides = _parse_agents(agents, issues)
        worktree_root = _as_optional_str(sandbox.get("worktree_root"), "sandbox.worktree_root", issues)
        git_timeout = _num(sandbox, "sandbox", "git_timeout_seconds", issues, minimum=1.0)
        guard_settings = _parse_guard(guard, issues)
        logging_settings = LoggingSettings(
            level=_as_level(logs.get("level"), issues),
            directory=Path(
                _as_path_text(logs.get("directory"), "logging.directory", issues)
                or DEFAULT_LOG_DIR.as_posix()
            ),
            events_file=_as_str(logs.get("events_file"), "logging.events_file", issues)
            or DEFAULT_EVENTS_FILE,
            stderr=_as_bool(logs.get("stderr"), "logging.stderr", issues),
        )

        if issues.has_issues or limits is None:
            raise ConfigValidationError(issues.items())
        return cls(
            repository=repository,
            limits=limits,
            providers=providers,
            agent_overrides=overrides,
            worktree_root=None if worktree_root is None else Path(worktree_root),
            git_timeout_seconds=git_timeout,
            guard=guard_settings,
            logging=logging_settings,
        )


def provider_registry_id(config_key: str) -> str:
    """``claude_code`` -> ``claude-code``: config keys use underscores, providers use dashes."""

    return config_key.replace("_", "-")


def _parse_agents(
    agents: Mapping[str, object], issues: _IssueCollector
) -> tuple[tuple[str, ...], dict[str, AgentOverride]]:
    _reject_unknown_keys(agents, {"providers", *KNOWN_PROVIDERS}, "agents", issues)
    raw_providers = agents.get("providers")
    providers: list[str] = []
    if isinstance(raw_providers, str):
        raw_providers = [part.strip() for part in raw_providers.split(",") if part.strip()]
    if not isinstance(raw_providers, list) or not raw_providers:
        issues.add("agents.providers", "expected a non-empty list of provider names")
    else:
        for index, value in enumerate(raw_providers):
            key = value.replace("-", "_") if isinstance(value, str) else value
            if key not in KNOWN_PROVIDERS:
                issues.add(
                    f"agents.providers[{index}]",
                    f"unknown provider {value!r}; expected one of: {', '.join(KNOWN_PROVIDERS)}",
                )
            elif key not in providers:
                providers.append(key)

    overrides: dict[str, AgentOverride] = {}
    for name in KNOWN_PROVIDERS:
        section = agents.get(name)
        if section is None:
            continue
        parsed = _as_object(section, f"agents.{name}", issues)
        if parsed is None:
            continue
        _reject_unknown_keys(parsed, {"binary", "model"}, f"agents.{name}", issues)
        override = AgentOverride(
            binary=_as_optional_str(parsed.get("binary"), f"agents.{name}.binary", issues),
            model=_as_optional_str(parsed.get("model"), f"agents.{name}.model", issues),
        )
        if override.binary is not None or override.model is not None:
            overrides[provider_registry_id(name)] = override
    return tuple(provider_registry_id(name) for name in providers), overrides


def _parse_guard(guard: Mapping[str, object], issues: _IssueCollector) -> GuardSettings:
    enabled = _as_bool(guard.get("enabled"), "guard.enabled", issues)
    owner = _as_optional_str(guard.get("owner"), "guard.owner", issues)
    name = _as_optional_str(guard.get("name"), "guard.name", issues)
    if enabled and (owner is None or name is None):
        issues.add("guard", "owner and name are required when the guard is enabled")
    token_env = _as_str(guard.get("token_env"), "guard.token_env", issues) or "GITHUB_TOKEN"
    if _ENV_NAME_PATTERN.fullmatch(token_env) is None:
        issues.add("guard.token_env", "must be an env var name (example: GITHUB_TOKEN)")
    return GuardSettings(
        enabled=enabled,
        owner=owner,
        name=name,
        token_env=token_env,
        api_base_url=_as_str(guard.get("api_base_url"), "guard.api_base_url", issues)
        or "https://api.github.com",
        claim_timeout_seconds=_num(guard, "guard", "claim_timeout_seconds", issues, minimum=0.1),
        publish_timeout_seconds=_num(
            guard, "guard", "publish_timeout_seconds", issues, minimum=0.1
        ),
    )


def _build(factory: Callable[[], T], path: str, issues: _IssueCollector) -> T | None:
    # Dataclass __post_init__ checks catch cross-field constraints.
    try:
        return factory()
    except ValueError as exc:
        issues.add(path, str(exc))
        return None


def _section(root: Mapping[str, object], name: str, issues: _IssueCollector) -> dict[str, object]:
    defaults = DEFAULT_CONFIG[name]
    raw = root.get(name, defaults)
    parsed = _as_object(raw, name, issues)
    if parsed is None:
        return dict(defaults)
    if name != "agents":
        _reject_unknown_keys(parsed, set(defaults), name, issues)
    return {**defaults, **parsed}


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_optional_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    return value.strip() or None


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is not None and "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return False


def _as_level(value: object, issues: _IssueCollector) -> str:
    parsed = _as_str(value, "logging.level", issues)
    if parsed is None:
        return "INFO"
    if parsed.upper() not in LOG_LEVELS:
        issues.add("logging.level", f"invalid value {parsed!r}; expected one of: {', '.join(LOG_LEVELS)}")
        return "INFO"
    return parsed.upper()


def _int(
    section: Mapping[str, object],
    name: str,
    key: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int:
    value = section.get(key)
    default = DEFAULT_CONFIG[name][key]
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(f"{name}.{key}", f"expected integer, got {type(value).__name__}")
        return default
    if minimum is not None and value < minimum:
        issues.add(f"{name}.{key}", f"must be >= {minimum}")
        return default
    return value


def _num(
    section: Mapping[str, object],
    name: str,
    key: str,
    issues: _IssueCollector,
    *,
    minimum: float = 0.0,
) -> float:
    value = section.get(key)
    default = float(DEFAULT_CONFIG[name][key])
    if isinstance(value, bool) or not isinstance(value, int | float):
        issues.add(f"{name}.{key}", f"expected number, got {type(value).__name__}")
        return default
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(f"{name}.{key}", "must be finite")
        return default
    if parsed < minimum:
        issues.add(f"{name}.{key}", f"must be >= {minimum}")
        return default
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = f"{path}.{key}" if path else key
        if _SENSITIVE_KEY_PATTERN.search(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


__all__ = [
    "DEFAULT_CONFIG",
    "KNOWN_PROVIDERS",
    "PATH_FIELDS",
    "AgentOverride",
    "ConductorSettings",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "GuardSettings",
    "LoggingSettings",
    "RepositorySettings",
    "default_config",
    "merge_config",
    "provider_registry_id",
]
