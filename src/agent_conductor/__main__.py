"""Module entrypoint for ``python -m agent_conductor``."""

from __future__ import annotations

from agent_conductor.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
