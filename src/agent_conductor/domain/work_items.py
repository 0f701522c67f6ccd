"""Load discovered work items from YAML or JSON documents."""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from agent_conductor.domain.models import WorkItem

_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


class WorkItemLoadError(ValueError):
    """Raised when a work-item document cannot be read or validated."""


def load_work_items(path: str | Path) -> tuple[WorkItem, ...]:
    """
    Read a list of work items from ``path``.

    The document root may be a list of items or an object with an ``items`` list.
    Duplicate ids are rejected so admission order stays unambiguous.
    """

    source = Path(path)
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise WorkItemLoadError(f"unable to read work items from {source}: {exc}") from exc

    try:
        if source.suffix.lower() in _YAML_SUFFIXES:
            payload: Any = yaml.safe_load(text)
        else:
            payload = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise WorkItemLoadError(f"invalid work-item document {source}: {exc}") from exc

    return parse_work_items(payload, origin=str(source))


def parse_work_items(payload: object, *, origin: str = "work_items") -> tuple[WorkItem, ...]:
    """Validate an already-decoded work-item payload."""

    if isinstance(payload, Mapping):
        payload = payload.get("items")
    if payload is None:
        return ()
    if not isinstance(payload, list):
        raise WorkItemLoadError(f"{origin}: expected a list of work items")

    items: list[WorkItem] = []
    seen: set[str] = set()
    for index, raw in enumerate(payload):
        if not isinstance(raw, Mapping):
            raise WorkItemLoadError(f"{origin}[{index}]: expected object")
        try:
            item = WorkItem.from_dict(raw, path=f"{origin}[{index}]")
        except ValueError as exc:
            raise WorkItemLoadError(str(exc)) from exc
        if item.id in seen:
            raise WorkItemLoadError(f"{origin}[{index}]: duplicate work item id {item.id!r}")
        seen.add(item.id)
        items.append(item)
    return tuple(items)


__all__ = ["WorkItemLoadError", "load_work_items", "parse_work_items"]
