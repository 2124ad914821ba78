"""
SchedulerService — wires the scheduler together.

Owns the event bus, job store, both queue lanes, action registry, worker,
queue engine and lifecycle controller. The HTTP app and the CLI receive a
service instance explicitly; nothing here is a module-level global.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

import httpx

from pingsched.core.bus import EventBus
from pingsched.core.config import PingschedConfig
from pingsched.core.events import Event, EventType
from pingsched.middleware.logging import EventLogger
from pingsched.scheduler.actions import ActionRegistry, HttpAction
from pingsched.scheduler.engine import QueueEngine
from pingsched.scheduler.job import JobType
from pingsched.scheduler.lifecycle import (
    ACTIVE_QUEUE_NAME,
    DLQ_QUEUE_NAME,
    JobLifecycleController,
)
from pingsched.scheduler.queue import JobQueue
from pingsched.scheduler.worker import JobWorker
from pingsched.store.base import JobStore
from pingsched.store.sqlite import SQLiteJobStore

logger = logging.getLogger(__name__)


@dataclass
class RunStats:
    """Run counters since startup, fed by a bus subscription."""

    completed: int = 0
    retried: int = 0
    failed: int = 0
    drift: int = 0

    async def record(self, event: Event) -> None:
        field_name = _COUNTED.get(event.type)
        if field_name is not None:
            setattr(self, field_name, getattr(self, field_name) + 1)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


_COUNTED = {
    EventType.JOB_COMPLETED: "completed",
    EventType.JOB_RETRYING: "retried",
    EventType.JOB_FAILED: "failed",
    EventType.QUEUE_DRIFT: "drift",
}


class SchedulerService:
    """
    The running scheduler.

    Usage:
        service = SchedulerService(PingschedConfig.load())
        await service.connect()
        job = await service.controller.create(body)
        ...
        await service.close()

    store and transport can be injected (tests use InMemoryJobStore and
    httpx.MockTransport).
    """

    def __init__(
        self,
        config: PingschedConfig | None = None,
        store: JobStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.config = config or PingschedConfig.load()
        self.bus = EventBus()
        if event_logger is not None:
            self.bus.use(event_logger.middleware)
        self.stats = RunStats()
        self.bus.on("job:*", self.stats.record)
        self.bus.on(EventType.QUEUE_DRIFT, self.stats.record)

        self.store = store or SQLiteJobStore(self.config.database.url)
        self.queue = JobQueue(ACTIVE_QUEUE_NAME, max_failed=self.config.queue.max_failed)
        self.dead_letter = JobQueue(DLQ_QUEUE_NAME, max_failed=self.config.queue.max_failed)

        self.actions = ActionRegistry()
        self.actions.register(
            JobType.HTTP,
            HttpAction(
                timeout=self.config.http.timeout,
                user_agent=self.config.http.user_agent,
                transport=transport,
            ),
        )

        self.worker = JobWorker(self.store, self.actions)
        self.engine = QueueEngine(
            self.queue,
            self.worker.process,
            concurrency=self.config.queue.concurrency,
            attempts=self.config.queue.attempts,
            backoff=self.config.queue.backoff_seconds,
            bus=self.bus,
        )
        self.controller = JobLifecycleController(
            self.store, self.queue, self.dead_letter, bus=self.bus
        )
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the store, rebuild both lanes from it, start the engine."""
        if self._connected:
            return
        await self.store.initialize()
        await self.controller.rebuild()
        await self.engine.start()
        self._connected = True
        logger.info("Scheduler service started")
        await self.bus.emit(Event(type=EventType.SERVICE_START, source="service"))

    async def close(self) -> None:
        """Stop the engine, release the HTTP client, close the store."""
        if not self._connected:
            return
        self._connected = False
        await self.engine.stop()
        await self.actions.close()
        await self.store.close()
        logger.info("Scheduler service stopped")
        await self.bus.emit(Event(type=EventType.SERVICE_STOP, source="service"))
