"""
agent-conductor — line-oriented protocol parser for agent CLI output.

Purpose
- Turn one external process's output, one line at a time, into the common
  ``AgentEvent`` vocabulary while keeping monotonic token counters.

Line shapes
- Direct record: a JSON object describing one event (``{"type": "file_edit", ...}``).
- Envelope: a JSON object nesting the event under a completion marker
  (``{"type": "item.completed", "item": {...}}``) or an assistant message
  (``{"type": "assistant", "message": {...}}``).
- Plain text: reported as output; tokens, file edits, and stderr errors are
  extracted with best-effort regexes.

Functional requirements
- Never raise on malformed input; unknown shapes are skipped.
- Token extraction order: direct fields, then a nested ``usage`` object, then regex.
- Equivalent direct and enveloped records produce identical token counts.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterator, Mapping
from typing import Final

from agent_conductor.domain.models import TokenState, TokenUsage
from agent_conductor.synthesis_plane.agents.events import (
    AgentEvent,
    ErrorEvent,
    FileAction,
    FileEditEvent,
    OutputEvent,
    OutputStream,
    TokenEvent,
    ToolUseEvent,
)

_INPUT_TOKEN_KEYS: Final[tuple[str, ...]] = (
    "inputTokens",
    "input_tokens",
    "promptTokens",
    "prompt_tokens",
)
_OUTPUT_TOKEN_KEYS: Final[tuple[str, ...]] = (
    "outputTokens",
    "output_tokens",
    "completionTokens",
    "completion_tokens",
)
_CUMULATIVE_TOKEN_KEYS: Final[tuple[str, ...]] = (
    "cumulativeTokens",
    "cumulative_tokens",
    "totalTokens",
    "total_tokens",
)
_TOKEN_RECORD_KEYS: Final[frozenset[str]] = frozenset(
    {*_INPUT_TOKEN_KEYS, *_OUTPUT_TOKEN_KEYS, *_CUMULATIVE_TOKEN_KEYS, "usage"}
)

_INPUT_TOKENS_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:input|prompt)\s*tokens?\s*[:=]\s*(\d+)", re.IGNORECASE
)
_OUTPUT_TOKENS_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:output|completion)\s*tokens?\s*[:=]\s*(\d+)", re.IGNORECASE
)
_CUMULATIVE_TOKENS_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:total|cumulative|used)\s*tokens?\s*[:=]\s*(\d+)", re.IGNORECASE
)
_FILE_ACTION_RE: Final[re.Pattern[str]] = re.compile(
    r"\b(created|modified|deleted)\s+(?:file\s+)?([^\s\"'`]+)", re.IGNORECASE
)
_STDERR_ERROR_RE: Final[re.Pattern[str]] = re.compile(r"error|failed|exception", re.IGNORECASE)

_ENVELOPE_TYPES: Final[frozenset[str]] = frozenset(
    {"item.completed", "item.started", "item.updated"}
)
_MESSAGE_ENVELOPE_TYPES: Final[frozenset[str]] = frozenset({"assistant", "user"})
_TOOL_RECORD_TYPES: Final[frozenset[str]] = frozenset({"tool_use", "tool_call", "function_call"})

_TOOL_FILE_ACTIONS: Final[Mapping[str, FileAction]] = {
    "create_file": FileAction.CREATE,
    "write": FileAction.CREATE,
    "delete_file": FileAction.DELETE,
    "write_file": FileAction.MODIFY,
    "edit_file": FileAction.MODIFY,
    "replace_file": FileAction.MODIFY,
    "edit": FileAction.MODIFY,
    "multiedit": FileAction.MODIFY,
}
_TEXT_FILE_ACTIONS: Final[Mapping[str, FileAction]] = {
    "created": FileAction.CREATE,
    "modified": FileAction.MODIFY,
    "deleted": FileAction.DELETE,
}
_CHANGE_KIND_ACTIONS: Final[Mapping[str, FileAction]] = {
    "add": FileAction.CREATE,
    "create": FileAction.CREATE,
    "update": FileAction.MODIFY,
    "modify": FileAction.MODIFY,
    "delete": FileAction.DELETE,
    "remove": FileAction.DELETE,
}


class ProtocolParser:
    """Stateful, per-execution parser. Feed it lines in arrival order."""

    def __init__(self, *, error_label: str = "agent") -> None:
        self.tokens = TokenState()
        self._files_changed: dict[str, FileAction] = {}
        self._error_label = error_label

    @property
    def files_changed(self) -> tuple[str, ...]:
        return tuple(self._files_changed)

    @property
    def total_tokens(self) -> int:
        return max(
            self.tokens.cumulative_tokens,
            self.tokens.input_tokens + self.tokens.output_tokens,
        )

    def parse_line(self, line: str, stream: OutputStream = "stdout") -> list[AgentEvent]:
        """Parse one output line into zero or more events."""

        text = line.rstrip("\r\n")
        if not text.strip():
            return []

        events: list[AgentEvent] = [OutputEvent(content=text, stream=stream)]
        payload = parse_json_payload(text)
        if payload is None:
            events.extend(self._parse_text(text, stream))
        else:
            for record in _unwrap(payload):
                events.extend(self._parse_record(record))
        return events

    def _parse_record(self, record: Mapping[str, object]) -> list[AgentEvent]:
        events: list[AgentEvent] = []

        token_event = self._apply_tokens(token_usage_from_record(record))
        if token_event is not None:
            events.append(token_event)

        error_event = self._error_from_record(record)
        if error_event is not None:
            events.append(error_event)

        for file_event in _file_edits_from_record(record):
            self._files_changed[file_event.path] = file_event.action
            events.append(file_event)

        tool_event = _tool_use_from_record(record)
        if tool_event is not None:
            events.append(tool_event)

        return events

    def _parse_text(self, text: str, stream: OutputStream) -> list[AgentEvent]:
        events: list[AgentEvent] = []

        token_event = self._apply_tokens(token_usage_from_text(text))
        if token_event is not None:
            events.append(token_event)

        match = _FILE_ACTION_RE.search(text)
        if match is not None:
            path = match.group(2).strip().rstrip(".,;:")
            if path:
                action = _TEXT_FILE_ACTIONS[match.group(1).lower()]
                self._files_changed[path] = action
                events.append(FileEditEvent(action=action, path=path))

        if stream == "stderr" and _STDERR_ERROR_RE.search(text):
            events.append(ErrorEvent(message=text.strip(), recoverable=True))

        return events

    def _apply_tokens(self, usage: TokenUsage) -> TokenEvent | None:
        if usage.is_empty or not self.tokens.apply(usage):
            return None
        return TokenEvent(
            input_tokens=self.tokens.input_tokens,
            output_tokens=self.tokens.output_tokens,
            cumulative_tokens=self.tokens.cumulative_tokens,
        )

    def _error_from_record(self, record: Mapping[str, object]) -> ErrorEvent | None:
        record_type = record.get("type")
        if record_type == "error":
            message = read_string(record.get("message")) or f"unknown {self._error_label} error"
            return ErrorEvent(message=message, recoverable=record.get("recoverable") is not False)
        if record_type == "turn.failed":
            nested = record.get("error")
            message = None
            if isinstance(nested, Mapping):
                message = read_string(nested.get("message"))
            return ErrorEvent(
                message=message or f"{self._error_label} turn failed",
                recoverable=True,
            )
        return None


def parse_json_payload(line: str) -> dict[str, object] | None:
    """Decode ``line`` as a JSON object, falling back to its outermost ``{...}`` span."""

    trimmed = line.strip()
    if not trimmed:
        return None

    candidates = [trimmed]
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start >= 0 and end > start:
        fragment = trimmed[start : end + 1]
        if fragment != trimmed:
            candidates.append(fragment)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def token_usage_from_record(record: Mapping[str, object]) -> TokenUsage:
    """Read token fields directly from ``record``, then from its ``usage`` object."""

    usage = record.get("usage")
    nested: Mapping[str, object] = usage if isinstance(usage, Mapping) else {}
    return TokenUsage(
        input_tokens=_first_number(record, nested, _INPUT_TOKEN_KEYS),
        output_tokens=_first_number(record, nested, _OUTPUT_TOKEN_KEYS),
        cumulative_tokens=_first_number(record, nested, _CUMULATIVE_TOKEN_KEYS),
    )


def token_usage_from_text(text: str) -> TokenUsage:
    """Best-effort regex extraction of token counts from free text."""

    return TokenUsage(
        input_tokens=_regex_number(_INPUT_TOKENS_RE, text),
        output_tokens=_regex_number(_OUTPUT_TOKENS_RE, text),
        cumulative_tokens=_regex_number(_CUMULATIVE_TOKENS_RE, text),
    )


def read_number(value: object) -> int | None:
    """Return a non-negative integer for finite numeric values, else ``None``."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return max(0, int(value))


def read_string(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _unwrap(payload: Mapping[str, object]) -> Iterator[Mapping[str, object]]:
    payload_type = _record_type(payload)
    item = payload.get("item")
    if payload_type in _ENVELOPE_TYPES and isinstance(item, Mapping):
        if payload_type == "item.completed":
            yield item
        else:
            # In-flight items only contribute token counts.
            yield {key: value for key, value in item.items() if key in _TOKEN_RECORD_KEYS}
        return

    message = payload.get("message")
    if payload_type in _MESSAGE_ENVELOPE_TYPES and isinstance(message, Mapping):
        usage = message.get("usage")
        if isinstance(usage, Mapping):
            yield {"usage": usage}
        content = message.get("content")
        if isinstance(content, list):
            for block in content:
                if isinstance(block, Mapping) and _record_type(block) in _TOOL_RECORD_TYPES:
                    yield block
        return

    yield payload


def _first_number(
    record: Mapping[str, object],
    nested: Mapping[str, object],
    keys: tuple[str, ...],
) -> int | None:
    for source in (record, nested):
        for key in keys:
            value = read_number(source.get(key))
            if value is not None:
                return value
    return None


def _regex_number(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    if match is None:
        return None
    return int(match.group(1))


def _file_edits_from_record(record: Mapping[str, object]) -> list[FileEditEvent]:
    record_type = record.get("type")

    if record_type == "file_edit":
        action = _CHANGE_KIND_ACTIONS.get(str(record.get("action", "")).lower())
        path = read_string(record.get("path"))
        if action is not None and path is not None:
            return [FileEditEvent(action=action, path=path)]
        return []

    if record_type == "file_change":
        changes = record.get("changes")
        edits: list[FileEditEvent] = []
        if isinstance(changes, list):
            for change in changes:
                if not isinstance(change, Mapping):
                    continue
                path = read_string(change.get("path"))
                action = _CHANGE_KIND_ACTIONS.get(str(change.get("kind", "update")).lower())
                if path is not None and action is not None:
                    edits.append(FileEditEvent(action=action, path=path))
        return edits

    tool = _tool_name(record)
    tool_input = record.get("input")
    if tool is None or not isinstance(tool_input, Mapping):
        return []
    action = _TOOL_FILE_ACTIONS.get(tool.lower())
    path = read_string(
        tool_input.get("path") or tool_input.get("file_path") or tool_input.get("filePath")
    )
    if action is None or path is None:
        return []
    return [FileEditEvent(action=action, path=path)]


def _tool_use_from_record(record: Mapping[str, object]) -> ToolUseEvent | None:
    if record.get("type") == "command_execution":
        command = read_string(record.get("command")) or ""
        return ToolUseEvent(tool="shell", input={"command": command})

    tool = _tool_name(record)
    if tool is None:
        return None
    tool_input = record.get("input")
    return ToolUseEvent(tool=tool, input=dict(tool_input) if isinstance(tool_input, Mapping) else {})


def _tool_name(record: Mapping[str, object]) -> str | None:
    explicit = read_string(record.get("tool")) or read_string(record.get("tool_name"))
    if explicit is not None:
        return explicit
    if _record_type(record) in _TOOL_RECORD_TYPES:
        return read_string(record.get("name"))
    return None


def _record_type(record: Mapping[str, object]) -> str | None:
    return read_string(record.get("type"))


__all__ = [
    "ProtocolParser",
    "parse_json_payload",
    "read_number",
    "read_string",
    "token_usage_from_record",
    "token_usage_from_text",
]
