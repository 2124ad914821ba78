"""
In-memory job store — for testing.

Dict-based storage. Data lost when process exits. Rows are copied on the
way in and out so callers never hold a live reference.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from pingsched.core.errors import StorageError
from pingsched.scheduler.job import Job, JobStatus, utcnow
from pingsched.store.base import ORDER_COLUMNS, JobStore


class InMemoryJobStore(JobStore):
    """
    In-memory job store.

    Usage:
        store = InMemoryJobStore()
        await store.insert(job)
        assert (await store.get(job.id)).name == job.name
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    async def insert(self, job: Job) -> Job:
        if job.id in self._jobs:
            raise StorageError(f"Job {job.id} already exists")
        now = utcnow()
        stored = replace(job, created_at=now, updated_at=now)
        self._jobs[job.id] = stored
        return replace(stored)

    async def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return replace(job) if job else None

    async def get_all(
        self, status: JobStatus | None = None, order_by: str = "created_at"
    ) -> list[Job]:
        if order_by not in ORDER_COLUMNS:
            raise StorageError(f"Cannot order by {order_by!r}")
        jobs = [j for j in self._jobs.values() if status is None or j.status == status]
        jobs.sort(key=lambda j: getattr(j, order_by), reverse=True)
        return [replace(j) for j in jobs]

    async def update(self, job: Job) -> Job | None:
        current = self._jobs.get(job.id)
        if current is None:
            return None
        return self._put(replace(job, created_at=current.created_at))

    async def set_status(self, job_id: str, status: JobStatus) -> Job | None:
        return self._patch(job_id, status=status)

    async def record_success(
        self, job_id: str, last_run: datetime, next_run: datetime | None
    ) -> Job | None:
        return self._patch(job_id, last_run=last_run, next_run=next_run, error_message=None)

    async def record_failure(self, job_id: str, message: str) -> Job | None:
        return self._patch(job_id, error_message=message, status=JobStatus.FAILED)

    async def complete(self, job_id: str, at: datetime) -> Job | None:
        return self._patch(job_id, last_run=at, next_run=None, error_message=None)

    async def delete(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    async def close(self) -> None:
        self._jobs.clear()

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _patch(self, job_id: str, **changes) -> Job | None:
        current = self._jobs.get(job_id)
        if current is None:
            return None
        return self._put(replace(current, **changes))

    def _put(self, job: Job) -> Job:
        stored = replace(job, updated_at=utcnow())
        self._jobs[job.id] = stored
        return replace(stored)
