"""
Request validation for job definitions.

parse_job_input() is the single entry point: it runs the pydantic model
and the schedule consistency rules, and turns every problem into one
ValidationError carrying a field -> message map.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from pingsched.core.errors import ValidationError
from pingsched.scheduler.job import Interval, JobStatus, JobType, ScheduleType, as_utc

# Fields owned by each schedule type; the others must stay empty.
SCHEDULE_FIELDS: dict[ScheduleType, tuple[str, ...]] = {
    ScheduleType.CRON: ("cron_expression",),
    ScheduleType.SPECIFIC_TIME: ("specific_time",),
    ScheduleType.RECURRING: ("interval", "interval_value"),
}


class JobInput(BaseModel):
    """Body of POST /jobs and PUT /jobs/{id}."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    type: JobType = JobType.HTTP
    target: str
    payload: dict[str, Any] | None = None

    schedule_type: ScheduleType
    cron_expression: str | None = None
    specific_time: datetime | None = None
    interval: Interval | None = None
    interval_value: int | None = Field(default=None, ge=1)

    status: JobStatus | None = None

    @field_validator("target")
    @classmethod
    def _check_target(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("Target must be an http(s) URL")
        return value

    @field_validator("specific_time")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


def schedule_errors(data: JobInput) -> dict[str, str]:
    """Consistency problems between schedule_type and the populated fields."""
    errors: dict[str, str] = {}
    owned = SCHEDULE_FIELDS[data.schedule_type]

    for field_name in owned:
        if getattr(data, field_name) is None:
            errors[field_name] = f"Required when schedule_type is {data.schedule_type.value}"

    for schedule_type, fields in SCHEDULE_FIELDS.items():
        if schedule_type is data.schedule_type:
            continue
        for field_name in fields:
            if getattr(data, field_name) is not None:
                errors[field_name] = (
                    f"Not allowed when schedule_type is {data.schedule_type.value}"
                )

    if (
        data.schedule_type is ScheduleType.CRON
        and data.cron_expression
        and not croniter.is_valid(data.cron_expression)
    ):
        errors["cron_expression"] = "Invalid cron expression"

    return errors


def parse_job_input(body: Any) -> JobInput:
    """
    Validate a raw request body.

    Raises ValidationError with a field map on any problem.
    """
    if isinstance(body, JobInput):
        data = body
    else:
        if not isinstance(body, dict):
            raise ValidationError("Invalid job data", {"body": "Expected a JSON object"})
        try:
            data = JobInput.model_validate(body)
        except PydanticValidationError as e:
            raise ValidationError("Invalid job data", _field_map(e)) from e

    errors = schedule_errors(data)
    if errors:
        raise ValidationError("Invalid job data", errors)
    return data


def parse_status(value: Any) -> JobStatus:
    """A status value from a request; ValidationError if unknown."""
    try:
        return JobStatus(value)
    except ValueError:
        raise ValidationError("Invalid status value", {"status": f"Unknown status {value!r}"})


def _field_map(error: PydanticValidationError) -> dict[str, str]:
    result: dict[str, str] = {}
    for item in error.errors():
        key = ".".join(str(part) for part in item["loc"]) or "body"
        result.setdefault(key, item["msg"])
    return result
