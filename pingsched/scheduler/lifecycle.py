"""
JobLifecycleController — the only writer of job state.

Keeps three things consistent on every mutation:

    job store          (source of truth)
    execution queue    (ACTIVE / FAILED jobs, keyed by job id)
    dead-letter lane   (INACTIVE jobs, keyed by job id)

Rules:
- The store is mutated first; the lanes are reconciled afterwards. A lane
  failure is logged as QueueReconciliationError and never undoes the store
  write, so drift is visible in the logs and repaired by rebuild().
- A job id is removed from a lane before it is added to the other, so it
  is never in both.
- Schedule placement (delay or repeat) is computed before anything is
  written; an unschedulable job is rejected with ValidationError.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from pingsched.core.bus import EventBus
from pingsched.core.errors import NotFoundError, QueueReconciliationError, ValidationError
from pingsched.core.events import Event, EventType
from pingsched.scheduler.job import Job, JobStatus, ScheduleType, utcnow
from pingsched.scheduler.queue import JobQueue
from pingsched.scheduler.schemas import JobInput, parse_job_input, parse_status
from pingsched.scheduler.triggers import (
    RepeatOptions,
    calculate_initial_delay,
    calculate_next_run,
    calculate_repeat_options,
)
from pingsched.store.base import JobStore

logger = logging.getLogger(__name__)

ACTIVE_QUEUE_NAME = "scheduler-jobs"
DLQ_QUEUE_NAME = "scheduler-dlq"


@dataclass(frozen=True)
class Placement:
    """Where a job goes in the execution queue: a one-shot delay or a repeat."""

    delay: int | None = None
    repeat: RepeatOptions | None = None


def compute_placement(job: Any, now: datetime | None = None) -> Placement:
    """
    Delay or repeat configuration for a job's schedule.

    Raises ValidationError when the schedule cannot be queued (past
    specific_time, malformed cron, unknown interval).
    """
    if job.schedule_type == ScheduleType.SPECIFIC_TIME:
        delay = calculate_initial_delay(job, as_of=now)
        if delay is None:
            raise ValidationError(
                "Specific time must be in the future",
                {"specific_time": "Specific time must be in the future"},
            )
        return Placement(delay=delay)

    repeat = calculate_repeat_options(job)
    if repeat is None:
        raise ValidationError(
            "Invalid repeat configuration",
            {"schedule_type": "Invalid repeat configuration"},
        )
    return Placement(repeat=repeat)


class JobLifecycleController:
    """
    Create/update/delete/status transitions across store and queue lanes.

    Usage:
        controller = JobLifecycleController(store, active_queue, dlq)
        job = await controller.create(body)
        await controller.set_status(job.id, "inactive")
        await controller.reactivate(job.id)
    """

    def __init__(
        self,
        store: JobStore,
        active_queue: JobQueue,
        dead_letter_queue: JobQueue,
        bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._active = active_queue
        self._dlq = dead_letter_queue
        self._bus = bus

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get(self, job_id: str) -> Job:
        job = await self._store.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    async def list(self, status: JobStatus | str | None = None) -> list[Job]:
        if status is not None and status != "":
            status = parse_status(status)
        else:
            status = None
        return await self._store.get_all(status=status)

    async def list_dead_letter(self) -> list[Job]:
        """INACTIVE jobs, most recently changed first."""
        return await self._store.get_all(status=JobStatus.INACTIVE, order_by="updated_at")

    # ── Mutations ─────────────────────────────────────────────────────────────

    async def create(self, body: Any) -> Job:
        data = parse_job_input(body)
        now = utcnow()
        placement = compute_placement(data, now)

        job = self._job_from_input(data, job_id=str(uuid.uuid4()), now=now)
        job = await self._store.insert(job)
        logger.info(f"Job {job.id} created ({job.schedule_type.value}, status={job.status.value})")

        await self._place(job, placement, now)
        return job

    async def update(self, job_id: str, body: Any) -> Job:
        existing = await self.get(job_id)
        data = parse_job_input(body)
        now = utcnow()
        placement = compute_placement(data, now)

        job = self._job_from_input(data, job_id=job_id, now=now, existing=existing)
        updated = await self._store.update(job)
        if updated is None:
            raise NotFoundError(job_id)
        logger.info(f"Job {job_id} updated")

        # Drop whatever was scheduled under the old definition
        await self._reconcile(job_id, "remove from execution queue", self._active.remove, job_id)
        await self._reconcile(job_id, "remove from dead-letter lane", self._dlq.remove, job_id)
        await self._place(updated, placement, now)
        return updated

    async def delete(self, job_id: str) -> None:
        if not await self._store.delete(job_id):
            raise NotFoundError(job_id)
        logger.info(f"Job {job_id} deleted")
        await self._reconcile(job_id, "remove from execution queue", self._active.remove, job_id)
        await self._reconcile(job_id, "remove from dead-letter lane", self._dlq.remove, job_id)

    async def set_status(self, job_id: str, status: JobStatus | str) -> Job:
        new_status = parse_status(status)
        if new_status not in (JobStatus.ACTIVE, JobStatus.INACTIVE):
            raise ValidationError(
                "Invalid status value",
                {"status": "Status can only be set to active or inactive"},
            )

        job = await self.get(job_id)
        if new_status == JobStatus.INACTIVE:
            updated = self._found(await self._store.set_status(job_id, new_status), job_id)
            await self._to_dead_letter(updated)
            return updated

        return await self._activate(job)

    async def run_now(self, job_id: str) -> str:
        """
        Queue one immediate run next to the regular schedule.

        Returns the queue entry id; the job's schedule and next_run are untouched.
        """
        job = await self.get(job_id)
        entry_id = f"{job_id}-manual-{int(time.time() * 1000)}"
        await self._reconcile(
            job_id,
            "add manual run",
            self._active.add,
            f"{job.name}-manual",
            job.queue_data(),
            job_id=entry_id,
        )
        logger.info(f"Job {job_id} triggered manually as {entry_id}")
        return entry_id

    async def reactivate(self, job_id: str) -> Job:
        """Dead-letter path back to ACTIVE. Only for INACTIVE jobs."""
        job = await self.get(job_id)
        if job.status != JobStatus.INACTIVE:
            raise ValidationError(
                "Only inactive jobs can be reactivated",
                {"status": f"Job is {job.status.value}"},
            )
        return await self._activate(job)

    async def complete(self, job_id: str) -> Job:
        """
        Acknowledge a dead-lettered job without re-arming it.

        last_run becomes now, next_run and error_message are cleared, the
        dead-letter entry is dropped and the job stays INACTIVE.
        """
        job = await self.get(job_id)
        if job.status != JobStatus.INACTIVE:
            raise ValidationError(
                "Only inactive jobs can be completed from DLQ",
                {"status": f"Job is {job.status.value}"},
            )
        updated = self._found(await self._store.complete(job_id, utcnow()), job_id)
        await self._reconcile(job_id, "remove from dead-letter lane", self._dlq.remove, job_id)
        logger.info(f"Job {job_id} marked as completed from DLQ")
        return updated

    async def rebuild(self) -> None:
        """
        Reconstruct both lanes from the store.

        INACTIVE jobs go to the dead-letter lane; everything else is re-armed
        from its schedule. Jobs that can no longer be scheduled (a one-shot
        whose time has passed) stay out of both lanes. Stale next_run values
        are moved forward to the queued fire time.
        """
        now = utcnow()
        armed = dead = skipped = 0
        for job in await self._store.get_all():
            if job.status == JobStatus.INACTIVE:
                await self._to_dead_letter(job)
                dead += 1
                continue
            try:
                placement = compute_placement(job, now)
            except ValidationError:
                skipped += 1
                continue
            await self._place(job, placement, now)
            armed += 1
            entry = self._active.get(job.id)
            if entry is not None and (job.next_run is None or job.next_run < now):
                await self._store.update(replace(job, next_run=entry.fire_at))
        logger.info(f"Queues rebuilt: {armed} scheduled, {dead} dead-lettered, {skipped} expired")

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _activate(self, job: Job) -> Job:
        now = utcnow()
        placement = compute_placement(job, now)
        updated = self._found(await self._store.set_status(job.id, JobStatus.ACTIVE), job.id)
        await self._reconcile(job.id, "remove from dead-letter lane", self._dlq.remove, job.id)
        await self._enqueue(updated, placement, now)
        logger.info(f"Job {job.id} activated")
        return updated

    async def _place(self, job: Job, placement: Placement, now: datetime) -> None:
        """Put a job in the lane its status calls for."""
        if job.status == JobStatus.INACTIVE:
            await self._to_dead_letter(job)
        else:
            await self._enqueue(job, placement, now)

    async def _enqueue(self, job: Job, placement: Placement, now: datetime) -> None:
        await self._reconcile(
            job.id,
            "add to execution queue",
            self._active.add,
            job.name,
            job.queue_data(),
            job_id=job.id,
            delay=placement.delay,
            repeat=placement.repeat,
            now=now,
        )

    async def _to_dead_letter(self, job: Job) -> None:
        await self._reconcile(job.id, "remove from execution queue", self._active.remove, job.id)
        await self._reconcile(
            job.id,
            "add to dead-letter lane",
            self._dlq.add,
            f"{job.name}-inactive",
            job.queue_data(),
            job_id=job.id,
            remove_on_complete=False,
        )
        logger.info(f"Job {job.id} moved to DLQ due to inactive status")

    async def _reconcile(
        self, job_id: str, operation: str, fn: Callable[..., Any], /, *args, **kwargs
    ) -> Any:
        """Run a lane operation; failures are logged as drift, never raised."""
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            error = QueueReconciliationError(
                f"Failed to {operation} for job {job_id}: {e}",
                job_id=job_id,
                operation=operation,
            )
            logger.error(error.message, exc_info=e)
            if self._bus is not None:
                await self._bus.emit(Event(
                    type=EventType.QUEUE_DRIFT,
                    source="controller",
                    data={"job_id": job_id, "operation": operation, "error": str(e)},
                ))
            return None

    @staticmethod
    def _found(job: Job | None, job_id: str) -> Job:
        if job is None:
            raise NotFoundError(job_id)
        return job

    @staticmethod
    def _job_from_input(
        data: JobInput, job_id: str, now: datetime, existing: Job | None = None
    ) -> Job:
        job = Job(
            id=job_id,
            name=data.name,
            description=data.description,
            type=data.type,
            target=data.target,
            payload=data.payload,
            schedule_type=data.schedule_type,
            cron_expression=data.cron_expression,
            specific_time=data.specific_time,
            interval=data.interval,
            interval_value=data.interval_value,
            status=data.status or JobStatus.ACTIVE,
            next_run=calculate_next_run(data, as_of=now),
        )
        if existing is not None:
            job.last_run = existing.last_run
            job.error_message = existing.error_message
            job.created_at = existing.created_at
        return job
