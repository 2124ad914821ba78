"""
Scheduler Job — the core data model.

A Job describes what to call, when to call it, and its current state.
Exactly one group of schedule fields is populated, matching schedule_type:

    cron           -> cron_expression       e.g. "0 9 * * 1-5"
    specific_time  -> specific_time         one-shot, absolute UTC time
    recurring      -> interval + interval_value   e.g. ("month", 1)

Timestamps are timezone-aware UTC datetimes; they serialize as ISO-8601.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class JobType(str, Enum):
    """Kind of target action."""

    HTTP = "http"


class ScheduleType(str, Enum):
    CRON = "cron"
    SPECIFIC_TIME = "specific_time"
    RECURRING = "recurring"


class JobStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"


class Interval(str, Enum):
    """Base unit for recurring jobs."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Timestamps
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_ts(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value else None


def parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Job
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class Job:
    """A persisted unit of scheduled work."""

    name: str
    target: str                    # URL for HTTP jobs
    schedule_type: ScheduleType

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    type: JobType = JobType.HTTP
    description: str | None = None
    payload: dict[str, Any] | None = None

    cron_expression: str | None = None
    specific_time: datetime | None = None
    interval: Interval | None = None
    interval_value: int | None = None

    status: JobStatus = JobStatus.ACTIVE
    last_run: datetime | None = None
    next_run: datetime | None = None
    error_message: str | None = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def queue_data(self) -> dict[str, Any]:
        """The snapshot carried by a queue entry; the worker re-reads the row."""
        return {
            "job_id": self.id,
            "target": self.target,
            "type": self.type.value,
            "payload": self.payload,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "target": self.target,
            "payload": self.payload,
            "schedule_type": self.schedule_type.value,
            "cron_expression": self.cron_expression,
            "specific_time": format_ts(self.specific_time),
            "interval": self.interval.value if self.interval else None,
            "interval_value": self.interval_value,
            "status": self.status.value,
            "last_run": format_ts(self.last_run),
            "next_run": format_ts(self.next_run),
            "error_message": self.error_message,
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Job":
        return cls(
            id=d["id"],
            name=d["name"],
            description=d.get("description"),
            type=JobType(d.get("type") or JobType.HTTP.value),
            target=d["target"],
            payload=d.get("payload"),
            schedule_type=ScheduleType(d["schedule_type"]),
            cron_expression=d.get("cron_expression"),
            specific_time=parse_ts(d.get("specific_time")),
            interval=Interval(d["interval"]) if d.get("interval") else None,
            interval_value=d.get("interval_value"),
            status=JobStatus(d.get("status") or JobStatus.ACTIVE.value),
            last_run=parse_ts(d.get("last_run")),
            next_run=parse_ts(d.get("next_run")),
            error_message=d.get("error_message"),
            created_at=parse_ts(d.get("created_at")) or utcnow(),
            updated_at=parse_ts(d.get("updated_at")) or utcnow(),
        )
