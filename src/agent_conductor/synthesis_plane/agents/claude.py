"""Claude Code CLI adapter."""

from __future__ import annotations

from typing import ClassVar

from agent_conductor.synthesis_plane.agents.base import CliAgentAdapter, ExecuteParams


class ClaudeCodeAdapter(CliAgentAdapter):
    """Runs ``claude`` in print mode with streaming JSON output."""

    provider_id: ClassVar[str] = "claude-code"
    display_name: ClassVar[str] = "Claude Code"
    default_binary: ClassVar[str] = "claude"
    abort_grace_seconds: ClassVar[float] = 5.0
    probe_falls_back_to_path: ClassVar[bool] = False

    def build_command(self, params: ExecuteParams) -> list[str]:
        command = [
            self.binary,
            "-p",
            params.prompt,
            "--verbose",
            "--output-format",
            "stream-json",
        ]
        if self._model:
            command.extend(["--model", self._model])
        return command
