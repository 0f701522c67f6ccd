from __future__ import annotations

from pathlib import Path

import pytest

from agent_conductor.config.settings import (
    AgentOverride,
    ConductorSettings,
    ConfigValidationError,
    default_config,
    merge_config,
    provider_registry_id,
)


def _settings(overlay: dict[str, object]) -> ConductorSettings:
    return ConductorSettings.from_mapping(merge_config(default_config(), overlay))


def _issue_paths(overlay: dict[str, object]) -> list[str]:
    with pytest.raises(ConfigValidationError) as excinfo:
        _settings(overlay)
    return [issue.path for issue in excinfo.value.issues]


def test_defaults_validate() -> None:
    settings = ConductorSettings.from_mapping(default_config())

    assert settings.repository.path == Path(".")
    assert settings.repository.clone_url is None
    assert settings.limits.base_branch == "main"
    assert settings.limits.backoff.jitter_seconds == 0.5
    assert settings.agent_overrides == {}
    assert settings.logging.events_path == Path(".oac/logs/events.jsonl")
    assert settings.guard.token_env == "GITHUB_TOKEN"


def test_agent_overrides_and_provider_ids() -> None:
    settings = _settings(
        {
            "agents": {
                "providers": ["claude-code", "codex", "claude_code"],
                "codex": {"binary": "/opt/codex", "model": ""},
            }
        }
    )

    assert settings.providers == ("claude-code", "codex")
    assert settings.agent_overrides == {"codex": AgentOverride(binary="/opt/codex")}


def test_base_branch_flows_into_scheduler_limits() -> None:
    settings = _settings({"repository": {"base_branch": "develop"}})

    assert settings.limits.base_branch == "develop"


def test_every_issue_is_collected_with_its_path() -> None:
    paths = _issue_paths(
        {
            "scheduler": {"concurrency": 0, "max_attempts": "2"},
            "backoff": {"jitter_seconds": -1},
            "logging": {"level": "chatty", "stderr": "yes"},
            "agents": {"providers": ["claude_code", "aider"]},
        }
    )

    assert paths == [
        "backoff.jitter_seconds",
        "scheduler.concurrency",
        "scheduler.max_attempts",
        "agents.providers[1]",
        "logging.level",
        "logging.stderr",
    ]


def test_unknown_and_secret_looking_keys_are_rejected() -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        _settings({"guard": {"token": "ghp_x"}, "extra": {}})

    messages = {issue.path: issue.message for issue in excinfo.value.issues}
    assert messages["extra"] == "unknown field"
    assert "embedded secret values are forbidden" in messages["guard.token"]
    assert "guard.token" in str(excinfo.value)


def test_enabled_guard_requires_repository_coordinates() -> None:
    assert _issue_paths({"guard": {"enabled": True, "owner": "acme"}}) == ["guard"]


def test_guard_token_env_must_be_an_env_var_name() -> None:
    assert _issue_paths({"guard": {"token_env": "ghp_literal-token"}}) == ["guard.token_env"]


def test_cross_field_backoff_constraints_are_reported() -> None:
    assert _issue_paths({"backoff": {"initial_delay_seconds": 40.0}}) == ["backoff"]


def test_empty_provider_list_is_rejected() -> None:
    assert _issue_paths({"agents": {"providers": []}}) == ["agents.providers"]


def test_non_object_section_is_rejected() -> None:
    assert _issue_paths({"scheduler": 5}) == ["scheduler"]


def test_provider_registry_id() -> None:
    assert provider_registry_id("claude_code") == "claude-code"
    assert provider_registry_id("codex") == "codex"


def test_merge_config_replaces_lists_and_keeps_base_intact() -> None:
    base = default_config()

    merged = merge_config(
        base, {"agents": {"providers": ["codex"]}, "scheduler": {"concurrency": 5}}
    )

    assert merged["agents"]["providers"] == ["codex"]
    assert merged["scheduler"]["max_attempts"] == 2
    assert base["agents"]["providers"] == ["claude_code"]
    assert base["scheduler"]["concurrency"] == 2
