"""Tests for the Event system."""

from pingsched.core.events import Event, EventType


def test_event_creation():
    event = Event(type=EventType.JOB_FAILED, data={"job_id": "a"})

    assert event.type == "job:failed"
    assert event.data == {"job_id": "a"}
    assert event.id  # auto-generated
    assert event.timestamp > 0
    assert event.metadata == {}
    assert event.source == ""


def test_event_ids_unique():
    assert Event(type=EventType.JOB_ACTIVE).id != Event(type=EventType.JOB_ACTIVE).id


def test_event_type_constants():
    assert EventType.SERVICE_START == "service:start"
    assert EventType.JOB_ACTIVE == "job:active"
    assert EventType.JOB_REARMED == "job:rearmed"
    assert EventType.QUEUE_DRIFT == "queue:drift"
    assert EventType.ALL == "*"
