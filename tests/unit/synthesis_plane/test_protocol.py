"""
agent-conductor — unit tests for the agent output protocol parser

Purpose
- Validate the three line shapes (direct record, envelope, plain text).
- Validate token extraction order and monotonic accounting.
- Validate that malformed or unknown input is never fatal.
"""

from __future__ import annotations

import json

import pytest
from hypothesis import given
from hypothesis import strategies as st

from agent_conductor.domain.models import TokenUsage
from agent_conductor.synthesis_plane.agents.events import (
    ErrorEvent,
    FileAction,
    FileEditEvent,
    OutputEvent,
    TokenEvent,
    ToolUseEvent,
)
from agent_conductor.synthesis_plane.agents.protocol import (
    ProtocolParser,
    parse_json_payload,
    read_number,
    token_usage_from_record,
    token_usage_from_text,
)


def _of_type(events: list[object], kind: type) -> list[object]:
    return [event for event in events if isinstance(event, kind)]


def test_every_non_blank_line_is_reported_as_output() -> None:
    parser = ProtocolParser()

    assert parser.parse_line("   \n") == []
    events = parser.parse_line("thinking about the fix\n")

    assert events == [OutputEvent(content="thinking about the fix")]


def test_direct_file_edit_record() -> None:
    parser = ProtocolParser()

    events = parser.parse_line(json.dumps({"type": "file_edit", "action": "create", "path": "src/a.py"}))

    assert _of_type(events, FileEditEvent) == [FileEditEvent(FileAction.CREATE, "src/a.py")]
    assert parser.files_changed == ("src/a.py",)


def test_envelope_completion_unwraps_inner_event() -> None:
    parser = ProtocolParser()
    line = json.dumps(
        {
            "type": "item.completed",
            "item": {
                "type": "file_change",
                "changes": [
                    {"path": "a.py", "kind": "add"},
                    {"path": "b.py", "kind": "update"},
                    {"path": "c.py", "kind": "delete"},
                ],
            },
        }
    )

    edits = _of_type(parser.parse_line(line), FileEditEvent)

    assert edits == [
        FileEditEvent(FileAction.CREATE, "a.py"),
        FileEditEvent(FileAction.MODIFY, "b.py"),
        FileEditEvent(FileAction.DELETE, "c.py"),
    ]


def test_in_flight_envelope_contributes_tokens_only() -> None:
    parser = ProtocolParser()
    line = json.dumps(
        {
            "type": "item.started",
            "item": {
                "type": "file_change",
                "changes": [{"path": "a.py", "kind": "add"}],
                "usage": {"input_tokens": 7},
            },
        }
    )

    events = parser.parse_line(line)

    assert _of_type(events, FileEditEvent) == []
    assert _of_type(events, TokenEvent) == [TokenEvent(7, 0, 7)]


def test_direct_and_enveloped_usage_produce_identical_counts() -> None:
    usage = {"input_tokens": 100, "output_tokens": 20}
    direct = ProtocolParser()
    enveloped = ProtocolParser()

    direct.parse_line(json.dumps({"type": "turn.completed", "usage": usage}))
    enveloped.parse_line(json.dumps({"type": "item.completed", "item": {"usage": usage}}))

    assert direct.tokens == enveloped.tokens
    assert direct.total_tokens == 120


def test_direct_fields_take_precedence_over_nested_usage() -> None:
    record = {"inputTokens": 5, "usage": {"input_tokens": 50, "output_tokens": 9}}

    assert token_usage_from_record(record) == TokenUsage(
        input_tokens=5, output_tokens=9, cumulative_tokens=None
    )


def test_plain_text_regex_extraction() -> None:
    parser = ProtocolParser()

    events = parser.parse_line("Created file src/new_module.py.")
    events += parser.parse_line("Usage: total tokens: 1500")

    assert FileEditEvent(FileAction.CREATE, "src/new_module.py") in events
    assert _of_type(events, TokenEvent) == [TokenEvent(0, 0, 1500)]
    assert token_usage_from_text("prompt tokens = 3, completion tokens: 4") == TokenUsage(
        input_tokens=3, output_tokens=4, cumulative_tokens=None
    )


def test_token_counts_never_decrease() -> None:
    parser = ProtocolParser()

    first = parser.parse_line(json.dumps({"total_tokens": 500}))
    second = parser.parse_line(json.dumps({"total_tokens": 300}))

    assert _of_type(first, TokenEvent) == [TokenEvent(0, 0, 500)]
    assert _of_type(second, TokenEvent) == []
    assert parser.total_tokens == 500


def test_assistant_message_envelope_yields_usage_and_tool_blocks() -> None:
    parser = ProtocolParser()
    line = json.dumps(
        {
            "type": "assistant",
            "message": {
                "usage": {"input_tokens": 10, "output_tokens": 5},
                "content": [
                    {"type": "text", "text": "Writing the file"},
                    {
                        "type": "tool_use",
                        "name": "Write",
                        "input": {"file_path": "src/x.py", "content": "print(1)"},
                    },
                ],
            },
        }
    )

    events = parser.parse_line(line)

    assert [type(event) for event in events] == [
        OutputEvent,
        TokenEvent,
        FileEditEvent,
        ToolUseEvent,
    ]
    assert events[2] == FileEditEvent(FileAction.CREATE, "src/x.py")
    assert isinstance(events[3], ToolUseEvent)
    assert events[3].tool == "Write"


def test_command_execution_is_reported_as_shell_tool() -> None:
    parser = ProtocolParser()
    line = json.dumps(
        {"type": "item.completed", "item": {"type": "command_execution", "command": "pytest -q"}}
    )

    assert _of_type(parser.parse_line(line), ToolUseEvent) == [
        ToolUseEvent(tool="shell", input={"command": "pytest -q"})
    ]


def test_error_records_and_stderr_lines() -> None:
    parser = ProtocolParser(error_label="codex")

    explicit = parser.parse_line(json.dumps({"type": "error", "message": "bad", "recoverable": False}))
    failed_turn = parser.parse_line(json.dumps({"type": "turn.failed", "error": {}}))
    stderr = parser.parse_line("Error: request failed", stream="stderr")
    stdout = parser.parse_line("error handling improved", stream="stdout")

    assert _of_type(explicit, ErrorEvent) == [ErrorEvent("bad", recoverable=False)]
    assert _of_type(failed_turn, ErrorEvent) == [ErrorEvent("codex turn failed")]
    assert _of_type(stderr, ErrorEvent) == [ErrorEvent("Error: request failed")]
    assert _of_type(stdout, ErrorEvent) == []


def test_json_embedded_in_text_is_recovered() -> None:
    assert parse_json_payload('data: {"input_tokens": 5} (partial)') == {"input_tokens": 5}
    assert parse_json_payload("{not json") is None
    assert parse_json_payload("[1, 2]") is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [(3, 3), (3.7, 3), (-5, 0), (True, None), ("12", None), (float("inf"), None), (None, None)],
)
def test_read_number(value: object, expected: int | None) -> None:
    assert read_number(value) == expected


@given(st.lists(st.text(max_size=200), max_size=25))
def test_parser_never_raises_and_stays_monotonic(lines: list[str]) -> None:
    parser = ProtocolParser()
    previous = 0
    for line in lines:
        parser.parse_line(line)
        assert parser.total_tokens >= previous
        previous = parser.total_tokens


@given(
    st.dictionaries(
        st.sampled_from(["type", "usage", "input_tokens", "item", "message", "changes", "path"]),
        st.recursive(
            st.none() | st.booleans() | st.integers() | st.text(max_size=10),
            lambda children: st.lists(children, max_size=3)
            | st.dictionaries(st.text(max_size=8), children, max_size=3),
            max_leaves=10,
        ),
        max_size=5,
    )
)
def test_unknown_record_shapes_are_skipped(record: dict[str, object]) -> None:
    ProtocolParser().parse_line(json.dumps(record))
