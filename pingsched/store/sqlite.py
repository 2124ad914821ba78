"""
SQLite job store.

Uses aiosqlite for async SQLite access.
WAL mode enabled for concurrent read support.

Table: jobs
    id              TEXT  PK
    name            TEXT
    description     TEXT
    type            TEXT
    target          TEXT
    payload         TEXT  (JSON)
    schedule_type   TEXT
    cron_expression TEXT
    specific_time   TEXT  (ISO-8601 UTC)
    interval        TEXT
    interval_value  INT
    status          TEXT
    last_run        TEXT
    next_run        TEXT
    error_message   TEXT
    created_at      TEXT
    updated_at      TEXT
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

import aiosqlite

from pingsched.core.errors import ConfigError, StorageError
from pingsched.scheduler.job import Job, JobStatus, format_ts, utcnow
from pingsched.store.base import ORDER_COLUMNS, JobStore

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id", "name", "description", "type", "target", "payload",
    "schedule_type", "cron_expression", "specific_time", "interval",
    "interval_value", "status", "last_run", "next_run", "error_message",
    "created_at", "updated_at",
)


def resolve_database_path(url: str) -> str:
    """
    Turn a connection string into an SQLite path.

        sqlite:///data/jobs.db        -> data/jobs.db
        sqlite:////var/lib/jobs.db    -> /var/lib/jobs.db
        sqlite:///:memory:            -> :memory:
        ~/jobs.db                     -> ~/jobs.db (expanded)
    """
    if "://" in url:
        scheme, _, rest = url.partition("://")
        if scheme != "sqlite":
            raise ConfigError(f"Unsupported database scheme {scheme!r}; use sqlite:///path")
        url = rest[1:] if rest.startswith("/") else rest
    if url == ":memory:":
        return url
    return str(Path(url).expanduser())


class SQLiteJobStore(JobStore):
    """
    aiosqlite-backed job store.

    Usage:
        store = SQLiteJobStore("sqlite:///~/.pingsched/jobs.db")
        await store.initialize()

        await store.insert(job)
        job = await store.get(job_id)
    """

    def __init__(self, url: str | Path) -> None:
        self._path = resolve_database_path(str(url))
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the database and create tables."""
        if self._db is not None:
            return
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")
            await self._db.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id              TEXT PRIMARY KEY,
                    name            TEXT NOT NULL,
                    description     TEXT,
                    type            TEXT NOT NULL,
                    target          TEXT NOT NULL,
                    payload         TEXT,
                    schedule_type   TEXT NOT NULL,
                    cron_expression TEXT,
                    specific_time   TEXT,
                    interval        TEXT,
                    interval_value  INTEGER,
                    status          TEXT NOT NULL DEFAULT 'active',
                    last_run        TEXT,
                    next_run        TEXT,
                    error_message   TEXT,
                    created_at      TEXT NOT NULL,
                    updated_at      TEXT NOT NULL
                )
                """
            )
            await self._db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)")
            await self._db.commit()
            logger.debug(f"SQLite job store initialized at {self._path}")
        except Exception as e:
            raise StorageError(f"Failed to initialize SQLite at {self._path}: {e}") from e

    async def _ensure_db(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db  # type: ignore[return-value]

    # ── CRUD ─────────────────────────────────────────────────────────────────

    async def insert(self, job: Job) -> Job:
        db = await self._ensure_db()
        now = utcnow()
        row = self._job_to_row(job)
        row["created_at"] = row["updated_at"] = format_ts(now)
        placeholders = ", ".join(f":{c}" for c in _COLUMNS)
        try:
            await db.execute(
                f"INSERT INTO jobs ({', '.join(_COLUMNS)}) VALUES ({placeholders})", row
            )
            await db.commit()
        except Exception as e:
            raise StorageError(f"Failed to insert job {job.id}: {e}") from e
        return await self._require(job.id)

    async def get(self, job_id: str) -> Job | None:
        db = await self._ensure_db()
        try:
            async with db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)) as cursor:
                row = await cursor.fetchone()
        except Exception as e:
            raise StorageError(f"Failed to get job {job_id}: {e}") from e
        return self._row_to_job(row) if row else None

    async def get_all(
        self, status: JobStatus | None = None, order_by: str = "created_at"
    ) -> list[Job]:
        if order_by not in ORDER_COLUMNS:
            raise StorageError(f"Cannot order by {order_by!r}")
        db = await self._ensure_db()
        query = "SELECT * FROM jobs"
        params: tuple = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (JobStatus(status).value,)
        query += f" ORDER BY {order_by} DESC"
        try:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        except Exception as e:
            raise StorageError(f"Failed to list jobs: {e}") from e
        return [self._row_to_job(r) for r in rows]

    async def update(self, job: Job) -> Job | None:
        row = self._job_to_row(job)
        row.pop("created_at")
        assignments = ", ".join(f"{c} = :{c}" for c in row if c != "id")
        return await self._write(f"UPDATE jobs SET {assignments} WHERE id = :id", row)

    async def set_status(self, job_id: str, status: JobStatus) -> Job | None:
        return await self._write(
            "UPDATE jobs SET status = :status, updated_at = :updated_at WHERE id = :id",
            {"id": job_id, "status": JobStatus(status).value},
        )

    async def record_success(
        self, job_id: str, last_run: datetime, next_run: datetime | None
    ) -> Job | None:
        return await self._write(
            """
            UPDATE jobs
            SET last_run = :last_run, next_run = :next_run,
                error_message = NULL, updated_at = :updated_at
            WHERE id = :id
            """,
            {"id": job_id, "last_run": format_ts(last_run), "next_run": format_ts(next_run)},
        )

    async def record_failure(self, job_id: str, message: str) -> Job | None:
        return await self._write(
            """
            UPDATE jobs
            SET error_message = :message, status = :status, updated_at = :updated_at
            WHERE id = :id
            """,
            {"id": job_id, "message": message, "status": JobStatus.FAILED.value},
        )

    async def complete(self, job_id: str, at: datetime) -> Job | None:
        return await self._write(
            """
            UPDATE jobs
            SET last_run = :last_run, next_run = NULL,
                error_message = NULL, updated_at = :updated_at
            WHERE id = :id
            """,
            {"id": job_id, "last_run": format_ts(at)},
        )

    async def delete(self, job_id: str) -> bool:
        db = await self._ensure_db()
        try:
            cursor = await db.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            await db.commit()
            return cursor.rowcount > 0
        except Exception as e:
            raise StorageError(f"Failed to delete job {job_id}: {e}") from e

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _write(self, query: str, params: dict) -> Job | None:
        """Run an UPDATE (stamping updated_at) and return the row afterwards."""
        db = await self._ensure_db()
        params = {**params, "updated_at": format_ts(utcnow())}
        try:
            cursor = await db.execute(query, params)
            await db.commit()
        except Exception as e:
            raise StorageError(f"Failed to update job {params.get('id')}: {e}") from e
        if cursor.rowcount == 0:
            return None
        return await self.get(params["id"])

    async def _require(self, job_id: str) -> Job:
        job = await self.get(job_id)
        if job is None:
            raise StorageError(f"Job {job_id} vanished after write")
        return job

    @staticmethod
    def _job_to_row(job: Job) -> dict:
        d = job.to_dict()
        d["payload"] = json.dumps(job.payload) if job.payload is not None else None
        return {c: d[c] for c in _COLUMNS}

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> Job:
        d = dict(row)
        d["payload"] = json.loads(d["payload"]) if d["payload"] else None
        return Job.from_dict(d)
