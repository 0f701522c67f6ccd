"""Unit tests for the lifecycle event bus and its JSONL sink."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import pytest

from agent_conductor.observability.events import (
    EventBus,
    EventType,
    JsonlEventSink,
    LifecycleEvent,
)

if TYPE_CHECKING:
    from pathlib import Path


async def test_subscribers_receive_matching_events_in_order() -> None:
    bus = EventBus()
    seen: list[str] = []
    all_events: list[EventType] = []

    async def on_completed(event: LifecycleEvent) -> None:
        seen.append(f"async:{event.job_id}")

    bus.subscribe(EventType.EXECUTION_COMPLETED, lambda event: seen.append(f"sync:{event.job_id}"))
    bus.subscribe("execution:completed", on_completed)
    bus.subscribe(None, lambda event: all_events.append(event.type))

    await bus.emit(EventType.EXECUTION_STARTED, "job-1")
    await bus.emit(EventType.EXECUTION_COMPLETED, "job-1", attempts=1)

    assert seen == ["sync:job-1", "async:job-1"]
    assert all_events == [EventType.EXECUTION_STARTED, EventType.EXECUTION_COMPLETED]


async def test_failing_subscriber_does_not_block_others() -> None:
    bus = EventBus()
    delivered: list[str] = []

    def broken(event: LifecycleEvent) -> None:
        raise RuntimeError("disk full")

    bus.subscribe(EventType.EXECUTION_FAILED, broken)
    bus.subscribe(EventType.EXECUTION_FAILED, lambda event: delivered.append(event.type.value))

    errors = await bus.publish(LifecycleEvent(type=EventType.EXECUTION_FAILED, job_id="j"))

    assert delivered == ["execution:failed"]
    assert len(errors) == 1
    assert errors[0].error_type == "RuntimeError"
    assert errors[0].message == "disk full"
    assert bus.dispatch_errors() == errors


async def test_unsubscribe_and_replay_filters() -> None:
    bus = EventBus(buffer_size=3)
    received: list[LifecycleEvent] = []
    token = bus.subscribe(None, received.append)

    await bus.emit(EventType.RUN_STARTED)
    assert bus.unsubscribe(token) is True
    assert bus.unsubscribe(token) is False
    await bus.emit(EventType.EXECUTION_STARTED, "a")
    await bus.emit(EventType.EXECUTION_STARTED, "b")
    await bus.emit(EventType.EXECUTION_COMPLETED, "a")

    assert len(received) == 1
    assert [event.job_id for event in bus.replay()] == ["a", "b", "a"]
    assert [event.type for event in bus.replay(job_id="a")] == [
        EventType.EXECUTION_STARTED,
        EventType.EXECUTION_COMPLETED,
    ]
    assert len(bus.replay(event_type="execution:started")) == 2


def test_event_bus_rejects_invalid_arguments() -> None:
    with pytest.raises(ValueError, match="buffer_size"):
        EventBus(buffer_size=0)
    with pytest.raises(ValueError):
        EventBus().subscribe("execution:exploded", print)


async def test_jsonl_sink_appends_one_record_per_event(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "events.jsonl"
    bus = EventBus()
    bus.subscribe(EventType.EXECUTION_COMPLETED, JsonlEventSink(path))

    await bus.emit(EventType.EXECUTION_COMPLETED, "job-1", files_changed=["a.py"])
    await bus.emit(EventType.EXECUTION_STARTED, "job-2")
    await bus.emit(EventType.EXECUTION_COMPLETED, "job-3")

    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [record["job_id"] for record in records] == ["job-1", "job-3"]
    assert records[0]["type"] == "execution:completed"
    assert records[0]["payload"] == {"files_changed": ["a.py"]}
    assert records[0]["timestamp"].endswith("Z")


async def test_jsonl_sink_keeps_every_record_from_concurrent_publishers(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    bus = EventBus()
    bus.subscribe(EventType.EXECUTION_FAILED, JsonlEventSink(path))

    await asyncio.gather(
        *(bus.emit(EventType.EXECUTION_FAILED, f"job-{index}") for index in range(20))
    )

    lines = path.read_text(encoding="utf-8").splitlines()
    assert sorted(json.loads(line)["job_id"] for line in lines) == sorted(
        f"job-{index}" for index in range(20)
    )
    assert bus.dispatch_errors() == ()
