from __future__ import annotations

import pytest

from agent_conductor.errors import ConfigurationError
from agent_conductor.synthesis_plane.agents import (
    AdapterRegistry,
    ClaudeCodeAdapter,
    CodexAdapter,
    GeminiAdapter,
    default_registry,
)


def test_default_registry_builds_fresh_instances_with_options() -> None:
    registry = default_registry()

    first = registry.get("claude-code", binary="/opt/claude", model="sonnet")
    second = registry.get("claude-code")

    assert registry.registered_ids() == ("claude-code", "codex", "gemini")
    assert isinstance(first, ClaudeCodeAdapter)
    assert first is not second
    assert first.binary == "/opt/claude"
    assert second.binary == "claude"


@pytest.mark.parametrize(
    ("alias", "expected"),
    [
        ("claude", ClaudeCodeAdapter),
        ("Codex-CLI", CodexAdapter),
        (" gemini-cli ", GeminiAdapter),
        ("GEMINI", GeminiAdapter),
    ],
)
def test_aliases_and_case_insensitive_lookup(alias: str, expected: type) -> None:
    assert isinstance(default_registry().get(alias), expected)


def test_unknown_provider_is_a_configuration_error() -> None:
    registry = default_registry()

    with pytest.raises(ConfigurationError, match="not registered: aider"):
        registry.resolve_id("aider")
    assert registry.is_registered("aider") is False
    assert registry.is_registered("claude") is True


def test_duplicate_registration_requires_overwrite() -> None:
    registry = AdapterRegistry()
    registry.register("codex", CodexAdapter)

    with pytest.raises(ValueError, match="already registered"):
        registry.register("CODEX", GeminiAdapter)

    registry.register("codex", GeminiAdapter, overwrite=True)
    assert isinstance(registry.get("codex"), GeminiAdapter)


def test_aliases_cannot_shadow_provider_ids() -> None:
    registry = AdapterRegistry()
    registry.register("codex", CodexAdapter)
    registry.register_alias("cx", "codex")

    with pytest.raises(ValueError, match="collides with an alias"):
        registry.register("cx", GeminiAdapter)
    with pytest.raises(ValueError, match="collides with a provider id"):
        registry.register_alias("codex", "codex")
    with pytest.raises(ValueError, match="not registered"):
        registry.register_alias("gm", "gemini")


def test_unregister_drops_aliases_pointing_at_provider() -> None:
    registry = default_registry()

    registry.unregister("codex")

    assert registry.is_registered("codex-cli") is False
    assert registry.registered_ids() == ("claude-code", "gemini")


def test_factory_must_return_an_adapter() -> None:
    registry = AdapterRegistry()
    registry.register("broken", lambda **_: object())

    with pytest.raises(TypeError, match="invalid adapter for broken"):
        registry.get("broken")


@pytest.mark.parametrize("value", ["", "   "])
def test_blank_provider_ids_are_rejected(value: str) -> None:
    with pytest.raises(ValueError, match="non-empty"):
        AdapterRegistry().register(value, CodexAdapter)
