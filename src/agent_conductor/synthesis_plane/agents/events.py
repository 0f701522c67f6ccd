"""Common event vocabulary produced by every agent adapter."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal

OutputStream = Literal["stdout", "stderr"]


class FileAction(StrEnum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class OutputEvent:
    """A raw output line; plain text is always reported this way, never as an error."""

    content: str
    stream: OutputStream = "stdout"


@dataclass(frozen=True, slots=True)
class TokenEvent:
    """Snapshot of the monotonic token counters after an update."""

    input_tokens: int
    output_tokens: int
    cumulative_tokens: int


@dataclass(frozen=True, slots=True)
class FileEditEvent:
    action: FileAction
    path: str


@dataclass(frozen=True, slots=True)
class ToolUseEvent:
    tool: str
    input: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    recoverable: bool = True


AgentEvent = OutputEvent | TokenEvent | FileEditEvent | ToolUseEvent | ErrorEvent

__all__ = [
    "AgentEvent",
    "ErrorEvent",
    "FileAction",
    "FileEditEvent",
    "OutputEvent",
    "OutputStream",
    "TokenEvent",
    "ToolUseEvent",
]
