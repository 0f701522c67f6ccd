"""
agent-conductor — package root

Purpose
- Drive external AI coding-agent executables against a prioritized list of work
  items, each inside an isolated git worktree, and hand terminal results to a
  publisher.

Import boundary
- Importing the package has no side effects (no config loading, no logging init).
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
