"""
agent-conductor — filesystem helpers

Purpose
- Durable record files (the lifecycle event log) and guarded removal of sandbox
  directories.

Functional requirements
- A reader never observes a half-written record file: content goes to a sibling
  temp file that replaces the target in one ``os.replace``.
- Removal refuses anything that does not resolve strictly inside the given root.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "append_line_atomic",
    "atomic_write",
    "is_within",
    "safe_delete",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``data`` via fsynced write-then-rename; the parent must exist."""

    target = Path(path)
    directory = target.parent.resolve(strict=True)
    payload = data.encode(encoding) if isinstance(data, str) else data

    with tempfile.NamedTemporaryFile(
        "wb", dir=directory, prefix=f".{target.name}.", suffix=".tmp", delete=False
    ) as staging:
        staged = Path(staging.name)
        try:
            staging.write(payload)
            staging.flush()
            os.fsync(staging.fileno())
        except BaseException:
            staging.close()
            staged.unlink(missing_ok=True)
            raise
    try:
        os.replace(staged, target)
    except OSError:
        staged.unlink(missing_ok=True)
        raise
    _sync_directory(directory)


def append_line_atomic(path: PathLike, line: str, *, encoding: str = "utf-8") -> None:
    """Append one newline-terminated record by rewriting the file atomically."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        existing = target.read_bytes()
    except FileNotFoundError:
        existing = b""
    if existing and not existing.endswith(b"\n"):
        existing += b"\n"
    atomic_write(target, existing + line.rstrip("\n").encode(encoding) + b"\n")


def is_within(child: PathLike, parent: PathLike) -> bool:
    return Path(child).resolve().is_relative_to(Path(parent).resolve())


def safe_delete(path: PathLike, root: PathLike) -> bool:
    """
    Remove ``path`` (file, directory tree, or symlink) if it lives below ``root``.

    The final component is not resolved, so a symlink is removed itself rather than
    its target. Returns ``False`` when nothing existed. Raises ``ValueError`` for
    ``root`` itself or anything outside it.
    """

    target = Path(path)
    boundary = Path(root).resolve()
    leaf = target.parent.resolve() / target.name
    if target.name in {"", ".."} or leaf == boundary or not leaf.is_relative_to(boundary):
        raise ValueError(f"refusing to delete path outside root: {target!s}")

    if target.is_symlink() or target.is_file():
        target.unlink()
    elif target.is_dir():
        shutil.rmtree(target)
    else:
        return False
    return True


def _sync_directory(directory: Path) -> None:
    # Persists the rename itself; not every platform or filesystem allows it.
    if os.name == "nt":
        return
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    with contextlib.suppress(OSError):
        descriptor = os.open(directory, flags)
        try:
            os.fsync(descriptor)
        finally:
            os.close(descriptor)
