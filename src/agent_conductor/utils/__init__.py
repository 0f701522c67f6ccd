"""Utility exports for filesystem and concurrency helpers."""

from agent_conductor.utils.concurrency import (
    BoundedSemaphore,
    CancellationToken,
    SerialChain,
)
from agent_conductor.utils.fs import append_line_atomic, atomic_write, is_within, safe_delete

__all__ = [
    "BoundedSemaphore",
    "CancellationToken",
    "SerialChain",
    "append_line_atomic",
    "atomic_write",
    "is_within",
    "safe_delete",
]
