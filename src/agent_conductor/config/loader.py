"""
agent-conductor — layered configuration

Purpose
- Build the effective config for one invocation from four layers: built-in
  defaults, ``conductor.toml``, ``CONDUCTOR_*`` environment variables, and the
  command-line flags of the current subcommand.

Functional requirements
- Later layers win: CLI > env > file > defaults. A CLI value of ``None`` means the
  flag was not given and never masks a lower layer.
- Every scalar setting has exactly one environment variable, named after its path
  (``scheduler.concurrency`` <-> ``CONDUCTOR_SCHEDULER_CONCURRENCY``), parsed to the
  type the setting already has. ``agents.providers`` takes a comma-separated list.
- Relative paths in the file are anchored at the file's directory, not the cwd.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from agent_conductor.config.settings import (
    PATH_FIELDS,
    ConductorSettings,
    default_config,
    merge_config,
)
from agent_conductor.errors import ConfigurationError
from agent_conductor.observability.logging import redact_value

DEFAULT_CONFIG_FILE: Final[str] = "conductor.toml"
ENV_PREFIX: Final[str] = "CONDUCTOR_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

ConfigPath = tuple[str, ...]


class ConfigLoadError(ConfigurationError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """
    Return the effective raw config mapping.

    Without ``config_path`` a ``conductor.toml`` in the working directory is used
    when present; an explicit path that does not exist is an error.
    """

    if config_path is None:
        source = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    else:
        source = Path(config_path).expanduser().resolve()
    env = os.environ if environ is None else environ

    config = merge_config(default_config(), _read_toml(source, required=config_path is not None))
    config = merge_config(config, _env_layer(config, env))
    config = merge_config(config, _cli_layer(cli_overrides or {}))
    return normalize_paths(config, base_dir=source.parent)


def load_settings(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConductorSettings:
    return ConductorSettings.from_mapping(
        load_config(config_path, cli_overrides=cli_overrides, environ=environ)
    )


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Anchor non-empty path settings at ``base_dir`` and expand ``~`` and ``$VARS``."""

    normalized = merge_config({}, config)
    for path in PATH_FIELDS:
        raw = _lookup(normalized, path)
        if not isinstance(raw, str) or not raw.strip():
            continue
        candidate = Path(os.path.expandvars(raw)).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        _assign(normalized, path, Path(os.path.normpath(candidate)).as_posix())
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Deterministic JSON dump of the effective config with secrets redacted."""

    plain = json.loads(json.dumps(config, default=str))
    return json.dumps(redact_value(plain), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def env_var_for(path: ConfigPath) -> str:
    """``("scheduler", "concurrency")`` -> ``CONDUCTOR_SCHEDULER_CONCURRENCY``."""

    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from exc
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for path, current in _scalar_settings(config):
        name = env_var_for(path)
        raw = environ.get(name)
        if raw is not None:
            _assign(layer, path, _parse_env(name, path, raw.strip(), current))
    providers = env_var_for(("agents", "providers"))
    if providers in environ:
        _assign(layer, ("agents", "providers"), environ[providers].strip())
    return layer


def _scalar_settings(
    config: Mapping[str, object], prefix: ConfigPath = ()
) -> Iterator[tuple[ConfigPath, object]]:
    for key, value in config.items():
        if isinstance(value, Mapping):
            yield from _scalar_settings(value, (*prefix, key))
        elif isinstance(value, (str, bool, int, float)):
            yield (*prefix, key), value


def _parse_env(name: str, path: ConfigPath, raw: str, current: object) -> object:
    # bool before int: ``True`` is an ``int`` too.
    if isinstance(current, bool):
        lowered = raw.lower()
        if lowered in _TRUTHY or lowered in _FALSY:
            return lowered in _TRUTHY
        expected = "a boolean (true/false/1/0/yes/no/on/off)"
    elif isinstance(current, str):
        return raw
    else:
        parse: Callable[[str], object] = int if isinstance(current, int) else float
        try:
            return parse(raw)
        except ValueError:
            expected = "an integer" if parse is int else "a number"
    raise ConfigLoadError(f"{name} -> {'.'.join(path)} must be {expected}")


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        _assign(layer, path, value)
    return layer


def _assign(target: dict[str, Any], path: ConfigPath, value: object) -> None:
    *parents, leaf = path
    node = target
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[leaf] = value


def _lookup(config: Mapping[str, object], path: ConfigPath) -> object | None:
    node: object = config
    for part in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
    return node


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "dump_effective_config",
    "env_var_for",
    "load_config",
    "load_settings",
    "normalize_paths",
]
