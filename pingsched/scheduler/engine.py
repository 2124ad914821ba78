"""
QueueEngine — the background asyncio task that drains a JobQueue.

Design:
- Sleeps until the earliest entry is due, or until the queue changes
  (an add/remove wakes it), then dispatches every due entry
- Each entry runs in its own task under a concurrency semaphore
- A given entry id is never processed twice in parallel; an entry that
  comes due while the same id is still in flight is deferred
- Processor exceptions trigger retries with exponential backoff:
      backoff * 2 ** (attempts_made - 1) seconds
  until the attempt limit, after which the entry lands in the queue's
  failed-entries record; errors flagged retryable=False (ActionExecutionError
  for an unsupported job type) skip straight to it
- Repeating entries are re-armed after every processed run, computed
  forward from the moment the run finished

The processor is any async callable taking a QueueEntry; the service wires
in JobWorker.process.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from pingsched.core.bus import EventBus
from pingsched.core.events import Event, EventType
from pingsched.scheduler.queue import JobQueue, QueueEntry

logger = logging.getLogger(__name__)

Processor = Callable[[QueueEntry], Awaitable[None]]

IN_FLIGHT_DEFER_SECONDS = 1.0


class QueueEngine:
    """
    Background consumer for one queue.

    Usage:
        engine = QueueEngine(queue, worker.process, concurrency=5, attempts=3)
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: Processor,
        concurrency: int = 5,
        attempts: int = 3,
        backoff: float = 1.0,
        bus: EventBus | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("Concurrency must be at least 1")
        self._queue = queue
        self._processor = processor
        self._concurrency = concurrency
        self._attempts = max(1, attempts)
        self._backoff = backoff
        self._bus = bus
        self._semaphore = asyncio.Semaphore(concurrency)
        self._task: asyncio.Task | None = None
        self._running = False
        self._in_flight: set[str] = set()   # entry ids currently executing
        self._tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    async def start(self) -> None:
        """Start the background dispatch loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"queue:{self._queue.name}")
        logger.info(
            f"QueueEngine started for {self._queue.name!r} (concurrency={self._concurrency})"
        )

    async def stop(self) -> None:
        """Stop the loop and cancel runs still in flight."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info(f"QueueEngine stopped for {self._queue.name!r}")

    async def drain(self) -> None:
        """Wait for every run currently in flight (used by tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Internal loop ─────────────────────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            try:
                self._tick()
            except Exception as e:
                logger.error(f"Queue {self._queue.name!r} tick error (non-fatal): {e}")
            await self._queue.wait_for_change(self._queue.seconds_until_next())

    def _tick(self) -> None:
        """Dispatch every due entry."""
        for entry in self._queue.pop_due():
            if entry.id in self._in_flight:
                logger.debug(f"Entry {entry.id} still executing, deferring")
                self._queue.defer(entry, IN_FLIGHT_DEFER_SECONDS)
                continue
            self._in_flight.add(entry.id)
            task = asyncio.create_task(self._run(entry), name=f"run:{entry.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, entry: QueueEntry) -> None:
        try:
            async with self._semaphore:
                entry.attempts_made += 1
                await self._emit(EventType.JOB_ACTIVE, entry)
                try:
                    await self._processor(entry)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    await self._handle_failure(entry, e)
                else:
                    rearmed = self._queue.complete(entry)
                    logger.info(f"Entry {entry.id} completed")
                    await self._emit(EventType.JOB_COMPLETED, entry)
                    if rearmed:
                        await self._emit(EventType.JOB_REARMED, entry)
        finally:
            # Release the guard only after the queue has been updated
            self._in_flight.discard(entry.id)

    async def _handle_failure(self, entry: QueueEntry, error: Exception) -> None:
        reason = str(error) or error.__class__.__name__
        max_attempts = entry.attempts or self._attempts
        retryable = getattr(error, "retryable", True)
        if retryable and entry.attempts_made < max_attempts:
            delay = self._backoff * 2 ** (entry.attempts_made - 1)
            self._queue.retry(entry, delay, reason)
            logger.warning(
                f"Entry {entry.id} failed (attempt {entry.attempts_made}/{max_attempts}), "
                f"retrying in {delay:.1f}s: {reason}"
            )
            await self._emit(EventType.JOB_RETRYING, entry, delay=delay)
            return

        attempts_made = entry.attempts_made
        rearmed = self._queue.fail(entry, reason)
        logger.error(f"Entry {entry.id} failed after {attempts_made} attempts: {reason}")
        await self._emit(EventType.JOB_FAILED, entry, attempts=attempts_made)
        if rearmed:
            await self._emit(EventType.JOB_REARMED, entry)

    async def _emit(self, event_type: str, entry: QueueEntry, **extra) -> None:
        if self._bus is None:
            return
        await self._bus.emit(Event(
            type=event_type,
            source=self._queue.name,
            data={
                "entry_id": entry.id,
                "job_id": entry.job_id,
                "attempts_made": entry.attempts_made,
                "failed_reason": entry.failed_reason,
                **extra,
            },
        ))
