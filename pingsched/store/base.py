"""
Job Store interface.

The job store is the single source of truth for job definitions and
runtime status. Queue lanes are projections of it and can always be
rebuilt from status + schedule fields.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pingsched.scheduler.job import Job, JobStatus


class JobStore(ABC):
    """
    Abstract base class for job persistence.

    Every mutating method returns the row as stored afterwards, or None
    when no job has that id. created_at/updated_at are maintained here.

    Implementations:
        SQLiteJobStore — aiosqlite, default
        InMemoryJobStore — for testing
    """

    async def initialize(self) -> None:
        """Create tables / open connections. Safe to call twice."""

    @abstractmethod
    async def insert(self, job: Job) -> Job:
        """Insert a new job row."""
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Job | None:
        ...

    @abstractmethod
    async def get_all(
        self, status: JobStatus | None = None, order_by: str = "created_at"
    ) -> list[Job]:
        """All jobs, optionally filtered by status, newest `order_by` first."""
        ...

    @abstractmethod
    async def update(self, job: Job) -> Job | None:
        """Rewrite the full definition (everything but id and created_at)."""
        ...

    @abstractmethod
    async def set_status(self, job_id: str, status: JobStatus) -> Job | None:
        ...

    @abstractmethod
    async def record_success(
        self, job_id: str, last_run: datetime, next_run: datetime | None
    ) -> Job | None:
        """After a successful run: last_run/next_run set, error cleared."""
        ...

    @abstractmethod
    async def record_failure(self, job_id: str, message: str) -> Job | None:
        """After a failed run: error recorded, status FAILED."""
        ...

    @abstractmethod
    async def complete(self, job_id: str, at: datetime) -> Job | None:
        """Acknowledge a job: last_run=at, next_run and error cleared."""
        ...

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        """Delete a job. Returns True if it existed."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


ORDER_COLUMNS = ("created_at", "updated_at")
