"""Agent adapters: contract, protocol parser, provider variants, and registry."""

from agent_conductor.synthesis_plane.agents.base import (
    CANCELLED_MESSAGE,
    AgentAdapter,
    AgentAvailability,
    AgentHandle,
    CliAgentAdapter,
    ExecuteParams,
    terminate_process,
)
from agent_conductor.synthesis_plane.agents.claude import ClaudeCodeAdapter
from agent_conductor.synthesis_plane.agents.codex import CodexAdapter
from agent_conductor.synthesis_plane.agents.events import (
    AgentEvent,
    ErrorEvent,
    FileAction,
    FileEditEvent,
    OutputEvent,
    TokenEvent,
    ToolUseEvent,
)
from agent_conductor.synthesis_plane.agents.gemini import GeminiAdapter
from agent_conductor.synthesis_plane.agents.protocol import ProtocolParser, parse_json_payload
from agent_conductor.synthesis_plane.agents.registry import AdapterRegistry, default_registry
from agent_conductor.synthesis_plane.agents.stream import AsyncEventQueue

__all__ = [
    "CANCELLED_MESSAGE",
    "AdapterRegistry",
    "AgentAdapter",
    "AgentAvailability",
    "AgentEvent",
    "AgentHandle",
    "AsyncEventQueue",
    "ClaudeCodeAdapter",
    "CliAgentAdapter",
    "CodexAdapter",
    "ErrorEvent",
    "ExecuteParams",
    "FileAction",
    "FileEditEvent",
    "GeminiAdapter",
    "OutputEvent",
    "ProtocolParser",
    "TokenEvent",
    "ToolUseEvent",
    "default_registry",
    "parse_json_payload",
    "terminate_process",
]
