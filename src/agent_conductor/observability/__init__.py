"""Observability surfaces: structured logging and lifecycle events."""

from agent_conductor.observability.events import (
    DispatchError,
    EventBus,
    EventType,
    JsonlEventSink,
    LifecycleEvent,
)
from agent_conductor.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    correlation_scope,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "EventType",
    "JsonlEventSink",
    "LifecycleEvent",
    "LoggingConfig",
    "LoggingHandle",
    "correlation_scope",
    "setup_logging",
    "shutdown_logging",
]
