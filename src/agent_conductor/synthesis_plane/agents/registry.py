"""Provider-id keyed registry of agent adapter factories."""

from __future__ import annotations

from collections.abc import Callable

from agent_conductor.errors import ConfigurationError
from agent_conductor.synthesis_plane.agents.base import AgentAdapter
from agent_conductor.synthesis_plane.agents.claude import ClaudeCodeAdapter
from agent_conductor.synthesis_plane.agents.codex import CodexAdapter
from agent_conductor.synthesis_plane.agents.gemini import GeminiAdapter

AdapterFactory = Callable[..., AgentAdapter]


class AdapterRegistry:
    """Registry for agent adapter factories, with alias support."""

    def __init__(self) -> None:
        self._factories: dict[str, AdapterFactory] = {}
        self._aliases: dict[str, str] = {}

    def register(
        self,
        provider_id: str,
        factory: AdapterFactory,
        *,
        overwrite: bool = False,
    ) -> None:
        normalized = _normalize(provider_id)
        if normalized in self._aliases:
            raise ValueError(f"provider id collides with an alias: {normalized}")
        if normalized in self._factories and not overwrite:
            raise ValueError(f"provider already registered: {normalized}")
        self._factories[normalized] = factory

    def register_alias(self, alias: str, provider_id: str) -> None:
        normalized_alias = _normalize(alias)
        target = _normalize(provider_id)
        if target not in self._factories:
            raise ValueError(f"alias target is not registered: {target}")
        if normalized_alias in self._factories:
            raise ValueError(f"alias collides with a provider id: {normalized_alias}")
        self._aliases[normalized_alias] = target

    def unregister(self, provider_id: str) -> None:
        normalized = _normalize(provider_id)
        self._factories.pop(normalized, None)
        self._aliases = {
            alias: target for alias, target in self._aliases.items() if target != normalized
        }

    def resolve_id(self, provider_id: str) -> str:
        """Map an alias to its canonical id; unknown ids raise ``ConfigurationError``."""

        normalized = _normalize(provider_id)
        resolved = self._aliases.get(normalized, normalized)
        if resolved not in self._factories:
            raise ConfigurationError(f"agent provider is not registered: {normalized}")
        return resolved

    def is_registered(self, provider_id: str) -> bool:
        normalized = _normalize(provider_id)
        return self._aliases.get(normalized, normalized) in self._factories

    def registered_ids(self) -> tuple[str, ...]:
        return tuple(sorted(self._factories))

    def get(self, provider_id: str, **options: object) -> AgentAdapter:
        """Build a fresh adapter instance for ``provider_id``."""

        resolved = self.resolve_id(provider_id)
        adapter = self._factories[resolved](**options)
        if not isinstance(adapter, AgentAdapter):
            raise TypeError(f"adapter factory returned invalid adapter for {resolved}")
        return adapter


def default_registry() -> AdapterRegistry:
    """Registry with the built-in Claude Code, Codex, and Gemini adapters."""

    registry = AdapterRegistry()
    registry.register(ClaudeCodeAdapter.provider_id, ClaudeCodeAdapter)
    registry.register(CodexAdapter.provider_id, CodexAdapter)
    registry.register(GeminiAdapter.provider_id, GeminiAdapter)
    registry.register_alias("claude", ClaudeCodeAdapter.provider_id)
    registry.register_alias("codex-cli", CodexAdapter.provider_id)
    registry.register_alias("gemini-cli", GeminiAdapter.provider_id)
    return registry


def _normalize(value: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("provider id must be a non-empty string")
    return value.strip().lower()


__all__ = ["AdapterFactory", "AdapterRegistry", "default_registry"]
