"""In-process lifecycle event bus with replay and a durable JSONL sink."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Final

from agent_conductor.utils.fs import append_line_atomic

logger = logging.getLogger(__name__)

_DEFAULT_ERROR_BUFFER: Final[int] = 1024


class EventType(StrEnum):
    """Lifecycle events emitted by the scheduler and adapters."""

    RUN_STARTED = "run:started"
    RUN_COMPLETED = "run:completed"
    EXECUTION_STARTED = "execution:started"
    EXECUTION_PROGRESS = "execution:progress"
    EXECUTION_COMPLETED = "execution:completed"
    EXECUTION_FAILED = "execution:failed"
    EXECUTION_RETRYING = "execution:retrying"
    EXECUTION_ABORTED = "execution:aborted"
    PUBLISH_SKIPPED = "publish:skipped"


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """One event tagged with the job that produced it."""

    type: EventType
    job_id: str | None
    payload: Mapping[str, object] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "job_id": self.job_id,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "payload": dict(self.payload),
        }


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting publishers."""

    event_type: str
    target: str
    error_type: str
    message: str


Subscriber = Callable[[LifecycleEvent], object]


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: EventType | None
    callback: Subscriber


class EventBus:
    """Event bus accepting sync and async subscribers, with bounded replay."""

    def __init__(self, *, buffer_size: int = 512) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        self._buffer: deque[LifecycleEvent] = deque(maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._dispatch_errors: deque[DispatchError] = deque(maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1

    def subscribe(self, event_type: EventType | str | None, callback: Subscriber) -> int:
        """Subscribe to one event type, or to every event when ``event_type`` is ``None``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else EventType(event_type)
        token = self._next_token
        self._next_token += 1
        self._subscriptions[token] = _Subscription(
            token=token, event_type=normalized, callback=callback
        )
        return token

    def unsubscribe(self, token: int) -> bool:
        return self._subscriptions.pop(token, None) is not None

    async def publish(self, event: LifecycleEvent) -> tuple[DispatchError, ...]:
        """Deliver ``event`` to matching subscribers in subscription order."""

        self._buffer.append(event)
        errors: list[DispatchError] = []
        for subscription in tuple(self._subscriptions.values()):
            if subscription.event_type is not None and subscription.event_type is not event.type:
                continue
            try:
                outcome = subscription.callback(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:  # noqa: BLE001 - subscriber isolation boundary.
                error = DispatchError(
                    event_type=event.type.value,
                    target=_callback_name(subscription.callback),
                    error_type=type(exc).__name__,
                    message=str(exc),
                )
                logger.warning(
                    "event subscriber failed",
                    extra={"target": error.target, "event_type": error.event_type},
                )
                errors.append(error)
        self._dispatch_errors.extend(errors)
        return tuple(errors)

    async def emit(
        self,
        event_type: EventType,
        job_id: str | None = None,
        **payload: object,
    ) -> LifecycleEvent:
        """Build and publish an event; returns the published event."""

        event = LifecycleEvent(type=event_type, job_id=job_id, payload=payload)
        await self.publish(event)
        return event

    def replay(
        self,
        *,
        event_type: EventType | str | None = None,
        job_id: str | None = None,
    ) -> tuple[LifecycleEvent, ...]:
        """Return buffered events in publish order, optionally filtered."""

        wanted = None if event_type is None else EventType(event_type)
        return tuple(
            event
            for event in self._buffer
            if (wanted is None or event.type is wanted) and (job_id is None or event.job_id == job_id)
        )

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        return tuple(self._dispatch_errors)


class JsonlEventSink:
    """
    Async subscriber that durably records events as JSON lines.

    Each record is written off the event loop; writes are serialized so concurrent
    publishers never lose a line and records land in publish order.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def __call__(self, event: LifecycleEvent) -> None:
        line = json.dumps(event.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
        async with self._lock:
            await asyncio.to_thread(append_line_atomic, self._path, line)


def _callback_name(callback: Subscriber) -> str:
    name = getattr(callback, "__qualname__", None) or type(callback).__qualname__
    module = getattr(callback, "__module__", None)
    return f"{module}.{name}" if module else str(name)


__all__ = [
    "DispatchError",
    "EventBus",
    "EventType",
    "JsonlEventSink",
    "LifecycleEvent",
]
