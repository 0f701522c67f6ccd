"""Gemini CLI adapter."""

from __future__ import annotations

from typing import ClassVar

from agent_conductor.synthesis_plane.agents.base import CliAgentAdapter, ExecuteParams


class GeminiAdapter(CliAgentAdapter):
    """Runs ``gemini`` in prompt mode with auto-approved tool calls and text output."""

    provider_id: ClassVar[str] = "gemini"
    display_name: ClassVar[str] = "Gemini CLI"
    default_binary: ClassVar[str] = "gemini"
    abort_grace_seconds: ClassVar[float] = 2.0

    def build_command(self, params: ExecuteParams) -> list[str]:
        command = [self.binary, "-p", params.prompt, "--yolo", "-o", "text"]
        if self._model:
            command.extend(["--model", self._model])
        return command
