"""Configuration loading (``conductor.toml`` + ``CONDUCTOR_`` env) and typed settings."""

from agent_conductor.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    load_settings,
    normalize_paths,
)
from agent_conductor.config.settings import (
    DEFAULT_CONFIG,
    KNOWN_PROVIDERS,
    PATH_FIELDS,
    AgentOverride,
    ConductorSettings,
    ConfigValidationError,
    ConfigValidationIssue,
    GuardSettings,
    LoggingSettings,
    RepositorySettings,
    default_config,
    merge_config,
    provider_registry_id,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "KNOWN_PROVIDERS",
    "PATH_FIELDS",
    "AgentOverride",
    "ConductorSettings",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "GuardSettings",
    "LoggingSettings",
    "RepositorySettings",
    "default_config",
    "dump_effective_config",
    "load_config",
    "load_settings",
    "merge_config",
    "normalize_paths",
    "provider_registry_id",
]
