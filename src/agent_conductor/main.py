"""Process entrypoint: run the CLI and map whatever escapes it to an exit code."""

from __future__ import annotations

import asyncio
import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING, Final

from agent_conductor.errors import (
    AgentError,
    ConductorError,
    ConfigurationError,
    GuardError,
    RepositoryError,
    SandboxError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    JOBS_FAILED = 1
    CONFIG_ERROR = 2
    PROVIDER_ERROR = 3
    INTERNAL_ERROR = 4


# First match along the cause chain wins, in this order.
_EXIT_ROUTES: Final[tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...]] = (
    (
        (ConfigurationError, FileNotFoundError, NotADirectoryError, PermissionError, ValueError),
        ExitCode.CONFIG_ERROR,
    ),
    ((RepositoryError, SandboxError, AgentError, GuardError), ExitCode.PROVIDER_ERROR),
)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Used by ``python -m agent_conductor`` and the ``conductor`` console script."""

    try:
        from agent_conductor.ui.cli import run_cli

        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse usage errors and --help land here.
        return _as_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - last line before the process exits.
        code = _exit_code_for(exc)
        _report(exc, code)
        return int(code)


def _as_exit_code(value: object) -> int:
    if value is None:
        return int(ExitCode.SUCCESS)
    if isinstance(value, int) and value in frozenset(ExitCode):
        return value
    if isinstance(value, str) and value.strip():
        print(value.strip(), file=sys.stderr)
    return int(ExitCode.INTERNAL_ERROR)


def _exit_code_for(exc: BaseException) -> ExitCode:
    for link in _cause_chain(exc):
        for types, code in _EXIT_ROUTES:
            if isinstance(link, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _cause_chain(exc: BaseException) -> Iterator[BaseException]:
    """``exc``, then its explicit cause or unsuppressed context, and so on; cycle-safe."""

    seen: set[int] = set()
    link: BaseException | None = exc
    while link is not None and id(link) not in seen:
        seen.add(id(link))
        yield link
        if link.__cause__ is not None:
            link = link.__cause__
        elif not link.__suppress_context__:
            link = link.__context__
        else:
            link = None


def _report(exc: BaseException, code: ExitCode) -> None:
    if isinstance(exc, (KeyboardInterrupt, asyncio.CancelledError)):
        print("interrupted", file=sys.stderr)
    elif code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(exc, file=sys.stderr)
    else:
        detail = exc.detail if isinstance(exc, ConductorError) else str(exc)
        print(f"error: {detail.strip() or type(exc).__name__}", file=sys.stderr)


__all__ = ["ExitCode", "cli_entrypoint"]
