"""
agent-conductor — terminal output

Purpose
- One place that decides how run summaries, agent probes, and issue lists look on
  a terminal, so command handlers only choose what to show.

Functional requirements
- Output is plain deterministic text; color is added only for a TTY and never when
  ``--no-color`` is given or ``NO_COLOR`` is set.
- Tables are left-aligned columns under a dashed rule; missing cells print ``-``.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, Final, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence

_GREEN: Final[str] = "\033[32m"
_RED: Final[str] = "\033[31m"
_YELLOW: Final[str] = "\033[33m"
_RESET: Final[str] = "\033[0m"
_INDENT: Final[str] = "  "
_GAP: Final[str] = "  "


class CLIRenderer:
    """Line-oriented writer for command output."""

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        stream: TextIO | None = None,
    ) -> None:
        self.verbose = verbose
        self._out = sys.stdout if stream is None else stream
        self._color = (
            not no_color
            and not os.environ.get("NO_COLOR")
            and bool(getattr(self._out, "isatty", lambda: False)())
        )

    def heading(self, text: str) -> None:
        self._line(text)

    def text(self, line: str) -> None:
        self._line(line)

    def kv(self, key: str, value: object) -> None:
        self._line(f"{key}: {value}")

    def section(self, title: str) -> None:
        self._line()
        self._line(title)

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._line(f"{_INDENT}{prefix}{entry}")

    def ok(self, label: str) -> None:
        self._line(f"{_INDENT}{self._tint('OK', _GREEN)}  {label}")

    def fail(self, label: str) -> None:
        self._line(f"{_INDENT}{self._tint('FAIL', _RED)}  {label}")

    def warning(self, text: str) -> None:
        self._line(f"{_INDENT}{self._tint('Warning:', _YELLOW)} {text}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[object]],
        *,
        title: str | None = None,
    ) -> None:
        """Print ``rows`` under ``headers``; an empty table prints nothing, not even the title."""

        if not rows:
            return
        grid = [list(headers)] + [_cells(row, len(headers)) for row in rows]
        widths = [max(len(line[column]) for line in grid) for column in range(len(headers))]

        if title:
            self.section(title)
        rule = ["-" * width for width in widths]
        for line in (grid[0], rule, *grid[1:]):
            padded = _GAP.join(cell.ljust(width) for cell, width in zip(line, widths))
            self._line(f"{_INDENT}{padded.rstrip()}")

    def _tint(self, text: str, color: str) -> str:
        return f"{color}{text}{_RESET}" if self._color else text

    def _line(self, text: str = "") -> None:
        print(text, file=self._out)


def _cells(row: Sequence[object], width: int) -> list[str]:
    cells = ["-" if value is None or value == "" else str(value) for value in row[:width]]
    return cells + ["-"] * (width - len(cells))


def create_renderer(
    *, no_color: bool = False, verbose: bool = False, stream: TextIO | None = None
) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose, stream=stream)


__all__ = ["CLIRenderer", "create_renderer"]
