"""Tests for the Event Bus."""

import pytest
from pingsched.core.bus import EventBus
from pingsched.core.events import Event, EventType


@pytest.mark.asyncio
async def test_emit_and_subscribe(bus: EventBus):
    """Basic pub/sub works."""
    received = []

    async def handler(event: Event):
        received.append(event)

    bus.on(EventType.JOB_FAILED, handler)
    await bus.emit(Event(type=EventType.JOB_FAILED, data={"job_id": "a"}))

    assert len(received) == 1
    assert received[0].data == {"job_id": "a"}


@pytest.mark.asyncio
async def test_wildcard_subscription(bus: EventBus):
    """Wildcard 'job:*' matches 'job:completed'."""
    received = []

    async def handler(event: Event):
        received.append(event.type)

    bus.on("job:*", handler)

    await bus.emit(Event(type=EventType.JOB_ACTIVE))
    await bus.emit(Event(type=EventType.JOB_COMPLETED))
    await bus.emit(Event(type=EventType.QUEUE_DRIFT))  # should NOT match

    assert received == ["job:active", "job:completed"]


@pytest.mark.asyncio
async def test_catch_all_subscription(bus: EventBus):
    """Wildcard '*' matches everything."""
    received = []

    async def handler(event: Event):
        received.append(event.type)

    bus.on(EventType.ALL, handler)

    await bus.emit(Event(type=EventType.SERVICE_START))
    await bus.emit(Event(type=EventType.JOB_RETRYING))

    assert len(received) == 2


@pytest.mark.asyncio
async def test_middleware_chain(bus: EventBus):
    """Middleware executes in order and can modify events."""
    order = []

    async def mw_first(event, next_handler):
        order.append("first_before")
        event.metadata["first"] = True
        result = await next_handler(event)
        order.append("first_after")
        return result

    async def mw_second(event, next_handler):
        order.append("second_before")
        result = await next_handler(event)
        order.append("second_after")
        return result

    bus.use(mw_first)
    bus.use(mw_second)

    received_events = []

    async def handler(event):
        received_events.append(event)

    bus.on(EventType.JOB_COMPLETED, handler)
    await bus.emit(Event(type=EventType.JOB_COMPLETED))

    assert order == ["first_before", "second_before", "second_after", "first_after"]
    assert received_events[0].metadata["first"] is True


@pytest.mark.asyncio
async def test_subscriber_error_isolated(bus: EventBus):
    """One bad subscriber doesn't break others."""
    results = {"good": False}

    async def bad_handler(event: Event):
        raise ValueError("I'm broken")

    async def good_handler(event: Event):
        results["good"] = True

    bus.on(EventType.JOB_FAILED, bad_handler)
    bus.on(EventType.JOB_FAILED, good_handler)

    await bus.emit(Event(type=EventType.JOB_FAILED))

    assert results["good"] is True


@pytest.mark.asyncio
async def test_exact_pattern_does_not_match_others(bus: EventBus):
    received = []

    async def handler(event: Event):
        received.append(event.type)

    bus.on(EventType.JOB_FAILED, handler)
    await bus.emit(Event(type=EventType.JOB_RETRYING))
    await bus.emit(Event(type=EventType.JOB_FAILED))

    assert received == ["job:failed"]


@pytest.mark.asyncio
async def test_emit_returns_event_without_subscribers(bus: EventBus):
    event = Event(type=EventType.SERVICE_STOP)
    assert await bus.emit(event) is event
