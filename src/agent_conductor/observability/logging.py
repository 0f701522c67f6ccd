"""
agent-conductor — run-scoped structured logging

Purpose
- Route every ``agent_conductor.*`` logger through one queue so agent output readers
  and git subprocess watchers never block on disk or terminal writes.
- Write one JSON object per line to ``<log_dir>/<run_id>/conductor.jsonl`` (and
  optionally stderr), stamped with the run and the job/provider being worked on.

Functional requirements
- Correlation fields come from ``correlation_scope`` (contextvars), so concurrent
  jobs on one event loop never leak ids into each other's records.
- Credentials (GitHub tokens, provider API keys, URL userinfo, bearer headers) are
  masked in messages, exception text, and ``extra`` fields before they are written.
- A full queue drops records and counts them instead of stalling the event loop.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

REDACTED: Final[str] = "***REDACTED***"

_LOG_FILENAME: Final[str] = "conductor.jsonl"
_ROOT_LOGGER: Final[str] = "agent_conductor"
_QUEUE_SIZE: Final[int] = 4096

# Promoted to top-level keys of each record instead of living under "fields".
_CORRELATION_FIELDS: Final[tuple[str, ...]] = (
    "run_id",
    "job_id",
    "work_item_id",
    "execution_id",
    "provider",
)

# Anything a bare LogRecord already carries is not a user-supplied extra.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    {*vars(logging.makeLogRecord({})), "message", "asctime", "correlation"}
)

_SECRET_KEY_FRAGMENTS: Final[tuple[str, ...]] = (
    "secret",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)
# ``token`` and ``github_token`` are secrets; ``token_ceiling`` and ``token_env`` are not.
_TOKEN_KEY: Final[re.Pattern[str]] = re.compile(r"(^|_)token$")

_TEXT_REDACTIONS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (
        re.compile(r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*[^\s,;]+"),
        rf"\1\2{REDACTED}",
    ),
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"), f"Bearer {REDACTED}"),
    (re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})\b"), REDACTED),
    (re.compile(r"\bsk-(?:ant-)?[A-Za-z0-9_-]{12,}\b"), REDACTED),
    (re.compile(r"(https?://)[^/\s:@]+(?::[^/\s@]*)?@"), rf"\1{REDACTED}@"),
)

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "agent_conductor_correlation", default=()
)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how one run logs."""

    run_id: str
    log_dir: Path | str | None = None
    logger_name: str = _ROOT_LOGGER
    level: int | str = "INFO"
    queue_size: int = _QUEUE_SIZE
    log_filename: str = _LOG_FILENAME
    log_to_stderr: bool = True
    redact_secrets: bool = True


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Captured on the emitting task; the listener thread has no context of its own.
        scope = get_correlation_context()
        if scope:
            record.correlation = scope
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


class JsonLineFormatter(logging.Formatter):
    """Render a record as a single sorted-key JSON object."""

    def __init__(self, *, base_context: Mapping[str, str], redact: bool = True) -> None:
        super().__init__()
        self._base_context = dict(base_context)
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, JSONValue] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": self._scrub(record.getMessage()),
        }
        payload.update(self._correlation_for(record))

        extras = {
            key: _to_json(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES
            and key not in _CORRELATION_FIELDS
            and not key.startswith("_")
        }
        if extras:
            payload["fields"] = redact_value(extras) if self._redact else extras
        if record.exc_info:
            payload["exception"] = self._scrub(self.formatException(record.exc_info))
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _correlation_for(self, record: logging.LogRecord) -> dict[str, str]:
        fields = dict(self._base_context)
        scope = getattr(record, "correlation", None)
        if isinstance(scope, Mapping):
            fields.update((str(key), str(value)) for key, value in scope.items())
        for key in _CORRELATION_FIELDS:
            explicit = getattr(record, key, None)
            if isinstance(explicit, str) and explicit.strip():
                fields[key] = explicit.strip()
        return fields

    def _scrub(self, text: str) -> str:
        return redact_text(text) if self._redact else text


@dataclass(eq=False)
class LoggingHandle:
    """The live logging pipeline of one run; ``shutdown`` flushes and detaches it."""

    logger: logging.Logger
    run_id: str
    log_path: Path | None
    _queue_handler: _DroppingQueueHandler
    _listener: logging.handlers.QueueListener
    _sinks: tuple[logging.Handler, ...]
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _closed: bool = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()


class _ActiveRun:
    lock = threading.Lock()
    handle: LoggingHandle | None = None
    exit_hook_installed = False


def setup_logging(config: LoggingConfig) -> LoggingHandle:
    """Replace any active pipeline with a fresh one for ``config.run_id``."""

    shutdown_logging()

    run_id = _non_blank(config.run_id, "run_id")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _level_number(config.level)

    sinks: list[logging.Handler] = []
    log_path: Path | None = None
    if config.log_dir is not None:
        filename = _non_blank(config.log_filename, "log_filename")
        if Path(filename).name != filename:
            raise ValueError("log_filename must not include path separators")
        log_path = Path(config.log_dir) / run_id / filename
        log_path.parent.mkdir(parents=True, exist_ok=True)
        sinks.append(logging.FileHandler(log_path, encoding="utf-8"))
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler(sys.stderr))
    formatter = JsonLineFormatter(base_context={"run_id": run_id}, redact=config.redact_secrets)
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(_non_blank(config.logger_name, "logger_name"))
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    queue_handler = _DroppingQueueHandler(queue.Queue(maxsize=config.queue_size))
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(
        queue_handler.queue, *sinks, respect_handler_level=True
    )
    listener.start()
    logger.addHandler(queue_handler)

    handle = LoggingHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        _queue_handler=queue_handler,
        _listener=listener,
        _sinks=tuple(sinks),
    )
    with _ActiveRun.lock:
        _ActiveRun.handle = handle
        if not _ActiveRun.exit_hook_installed:
            atexit.register(shutdown_logging)
            _ActiveRun.exit_hook_installed = True
    return handle


def shutdown_logging() -> None:
    """Flush and detach the active pipeline, if any."""

    with _ActiveRun.lock:
        handle, _ActiveRun.handle = _ActiveRun.handle, None
    if handle is not None:
        handle.shutdown()


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """
    Bind correlation fields for records logged inside the block.

    Passing ``None`` for a key removes it from the inherited scope.
    """

    scope = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            scope.pop(key, None)
        else:
            scope[key] = _non_blank(value, key)
    token = _correlation.set(tuple(scope.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


def redact_text(text: str) -> str:
    for pattern, replacement in _TEXT_REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def redact_value(value: JSONValue, *, key_context: str | None = None) -> JSONValue:
    """Mask secret-named keys and credential-shaped strings anywhere in ``value``."""

    if key_context is not None and _is_secret_key(key_context):
        return REDACTED
    if isinstance(value, dict):
        return {key: redact_value(item, key_context=key) for key, item in value.items()}
    if isinstance(value, list):
        return [redact_value(item) for item in value]
    return redact_text(value) if isinstance(value, str) else value


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return bool(_TOKEN_KEY.search(lowered)) or any(
        fragment in lowered for fragment in _SECRET_KEY_FRAGMENTS
    )


def _non_blank(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string, got {type(value).__name__}")
    if not value.strip():
        raise ValueError(f"{name} must not be empty")
    return value.strip()


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    number = logging.getLevelName(level.strip().upper())
    if not isinstance(number, int):
        raise ValueError(f"unsupported logging level {level!r}")
    return number


def _utc_timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _to_json(value: object) -> JSONValue:
    """Coerce an ``extra`` value (paths, enums, tuples, sets ...) into plain JSON."""

    if isinstance(value, (str, bool, int)) or value is None:
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_to_json(item) for item in value), key=repr)
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    return repr(value)


__all__ = [
    "REDACTED",
    "JSONValue",
    "JsonLineFormatter",
    "LoggingConfig",
    "LoggingHandle",
    "correlation_scope",
    "get_correlation_context",
    "redact_text",
    "redact_value",
    "setup_logging",
    "shutdown_logging",
]
