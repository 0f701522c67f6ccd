"""OpenAI Codex CLI adapter."""

from __future__ import annotations

from typing import ClassVar

from agent_conductor.synthesis_plane.agents.base import CliAgentAdapter, ExecuteParams


class CodexAdapter(CliAgentAdapter):
    """
    Runs ``codex exec`` non-interactively with JSON event output.

    Newer Codex builds ship a TUI binary that may hang or refuse ``--version`` in
    headless environments, so availability falls back to a PATH lookup.
    """

    provider_id: ClassVar[str] = "codex"
    display_name: ClassVar[str] = "Codex CLI"
    default_binary: ClassVar[str] = "codex"
    abort_grace_seconds: ClassVar[float] = 2.0

    def build_command(self, params: ExecuteParams) -> list[str]:
        command = [self.binary, "exec", "--full-auto", "--json"]
        if self._model:
            command.extend(["--model", self._model])
        command.extend(["-C", str(params.working_directory), params.prompt])
        return command
