"""Shared test fixtures for pingsched."""

from datetime import timedelta

import pytest

from pingsched.core.bus import EventBus
from pingsched.core.config import PingschedConfig
from pingsched.scheduler.job import utcnow
from pingsched.scheduler.lifecycle import (
    ACTIVE_QUEUE_NAME,
    DLQ_QUEUE_NAME,
    JobLifecycleController,
)
from pingsched.scheduler.queue import JobQueue
from pingsched.store.memory import InMemoryJobStore


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return PingschedConfig()


@pytest.fixture
def bus():
    """Create a fresh event bus."""
    return EventBus()


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def active_queue():
    return JobQueue(ACTIVE_QUEUE_NAME)


@pytest.fixture
def dead_letter():
    return JobQueue(DLQ_QUEUE_NAME)


@pytest.fixture
def controller(store, active_queue, dead_letter):
    return JobLifecycleController(store, active_queue, dead_letter)


@pytest.fixture
def cron_body():
    return {
        "name": "nightly-charge",
        "target": "https://api.example.com/charge",
        "payload": {"plan": "pro"},
        "schedule_type": "cron",
        "cron_expression": "0 0 * * *",
    }


@pytest.fixture
def recurring_body():
    return {
        "name": "monthly-invoice",
        "target": "https://api.example.com/invoice",
        "schedule_type": "recurring",
        "interval": "month",
        "interval_value": 1,
    }


@pytest.fixture
def oneshot_body():
    return {
        "name": "trial-ends",
        "target": "https://api.example.com/trial",
        "schedule_type": "specific_time",
        "specific_time": (utcnow() + timedelta(hours=1)).isoformat(),
    }
