"""
JobWorker — processes one execution-queue entry.

The queue entry only carries a snapshot ({job_id, target, type, payload});
the job row is re-read on every run and is what gets executed:

1. Row missing      -> job was deleted after queueing; log and return
2. Row INACTIVE     -> status changed after queueing; skip
3. Otherwise        -> run the action for the job type
4. Success          -> last_run=now, next_run recomputed, error cleared
5. Failure          -> error_message recorded, status FAILED, re-raise so
                       the engine retries with backoff

There is still a narrow window between the status read and the action;
a status change that lands inside it does not stop that run.
"""

from __future__ import annotations

import logging

from pingsched.scheduler.actions import ActionRegistry
from pingsched.scheduler.job import JobStatus, ScheduleType, utcnow
from pingsched.scheduler.queue import QueueEntry
from pingsched.scheduler.triggers import calculate_next_run
from pingsched.store.base import JobStore

logger = logging.getLogger(__name__)


class JobWorker:
    """Executes due jobs against the job store's current view of them."""

    def __init__(self, store: JobStore, actions: ActionRegistry) -> None:
        self._store = store
        self._actions = actions

    async def process(self, entry: QueueEntry) -> None:
        job_id = entry.job_id
        logger.info(f"Running job {job_id} (entry {entry.id}, attempt {entry.attempts_made})")

        job = await self._store.get(job_id)
        if job is None:
            logger.warning(f"Job {job_id} not found in database, skipping execution")
            return

        if job.status == JobStatus.INACTIVE:
            logger.info(f"Job {job_id} is inactive, skipping execution")
            return

        try:
            action = self._actions.get(job.type)
            await action.execute(job.target, job.payload)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"Error running job {job_id}: {message}")
            await self._store.record_failure(job_id, message)
            raise

        now = utcnow()
        next_run = None
        if job.schedule_type != ScheduleType.SPECIFIC_TIME:
            next_run = calculate_next_run(job, as_of=now)
        await self._store.record_success(job_id, last_run=now, next_run=next_run)
        logger.info(f"Job {job_id} completed successfully")
