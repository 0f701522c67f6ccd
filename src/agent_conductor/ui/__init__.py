"""Command-line surface: argument routing and text rendering."""

from agent_conductor.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIRenderer", "create_renderer"]
