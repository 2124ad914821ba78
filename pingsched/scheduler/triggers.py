"""
Trigger implementations and the schedule calculator.

A trigger turns a job's schedule fields into fire times. The module-level
calculate_* functions are what the controller and worker use; they accept
anything with the Job schedule attributes (a Job row or a validated
JobInput) and fail closed by returning None.

Usage:
    delay_ms = calculate_initial_delay(job)          # one-shot jobs
    repeat = calculate_repeat_options(job)           # cron / recurring jobs
    next_run = calculate_next_run(job, as_of=now)
"""

from __future__ import annotations

import calendar
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from croniter import croniter

from pingsched.scheduler.job import Interval, ScheduleType, as_utc, utcnow


class Trigger(ABC):
    """Computes fire times for a job."""

    @abstractmethod
    def next_fire_time(self, after: datetime) -> datetime | None:
        """
        Return the first fire time strictly after `after`.

        Returns None if the trigger has no further fire times (one-shot, past).
        """
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description, e.g. 'every 2 weeks'."""
        ...


class CronTrigger(Trigger):
    """
    Fires on a cron schedule.

    expression: standard 5-field cron string, e.g. "0 9 * * 1-5"
    """

    def __init__(self, expression: str) -> None:
        if not expression or not croniter.is_valid(expression):
            raise ValueError(f"Invalid cron expression: {expression!r}")
        self._expression = expression

    @property
    def expression(self) -> str:
        return self._expression

    def next_fire_time(self, after: datetime) -> datetime | None:
        it = croniter(self._expression, as_utc(after))
        return as_utc(it.get_next(datetime))

    @property
    def description(self) -> str:
        return f"cron({self._expression})"


class IntervalTrigger(Trigger):
    """
    Fires every `count` units of `unit`.

    Month and year steps use calendar arithmetic: Jan 31 + 1 month is the
    last day of February.
    """

    _FIXED = {
        Interval.MINUTE: timedelta(minutes=1),
        Interval.HOUR: timedelta(hours=1),
        Interval.DAY: timedelta(days=1),
        Interval.WEEK: timedelta(weeks=1),
    }

    def __init__(self, unit: Interval | str, count: int) -> None:
        self._unit = Interval(unit)
        if isinstance(count, bool) or int(count) < 1:
            raise ValueError("Interval value must be a positive integer")
        self._count = int(count)

    @property
    def unit(self) -> Interval:
        return self._unit

    @property
    def count(self) -> int:
        return self._count

    def next_fire_time(self, after: datetime) -> datetime | None:
        after = as_utc(after)
        if self._unit in self._FIXED:
            return after + self._FIXED[self._unit] * self._count
        months = self._count if self._unit is Interval.MONTH else self._count * 12
        return _add_months(after, months)

    @property
    def description(self) -> str:
        unit = self._unit.value
        if self._count == 1:
            return f"every {unit}"
        return f"every {self._count} {unit}s"


class OneshotTrigger(Trigger):
    """Fires once at a specific time; nothing after that."""

    def __init__(self, at: datetime) -> None:
        self._at = as_utc(at)

    @property
    def at(self) -> datetime:
        return self._at

    def next_fire_time(self, after: datetime) -> datetime | None:
        if as_utc(after) >= self._at:
            return None
        return self._at

    @property
    def description(self) -> str:
        return f"once at {self._at.strftime('%Y-%m-%d %H:%M')} UTC"


def make_trigger(job: Any) -> Trigger:
    """
    Build a Trigger from a job's schedule fields.

    Raises ValueError for unknown schedule types or malformed fields.
    """
    schedule_type = ScheduleType(_value(job.schedule_type))
    if schedule_type is ScheduleType.CRON:
        return CronTrigger(job.cron_expression)
    if schedule_type is ScheduleType.RECURRING:
        if job.interval is None or job.interval_value is None:
            raise ValueError("Recurring jobs need interval and interval_value")
        return IntervalTrigger(_value(job.interval), job.interval_value)
    if job.specific_time is None:
        raise ValueError("Specific-time jobs need specific_time")
    return OneshotTrigger(job.specific_time)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Queue repeat configuration
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class RepeatOptions:
    """
    How the execution queue re-arms a repeating entry.

    Either `pattern` (cron, passed through unmodified) or `every` + `count`.
    """

    pattern: str | None = None
    every: Interval | None = None
    count: int | None = None

    def trigger(self) -> Trigger:
        if self.pattern is not None:
            return CronTrigger(self.pattern)
        return IntervalTrigger(self.every, self.count)

    def next_after(self, after: datetime) -> datetime:
        nxt = self.trigger().next_fire_time(after)
        assert nxt is not None  # repeating triggers never run out
        return nxt

    def to_dict(self) -> dict[str, Any]:
        if self.pattern is not None:
            return {"pattern": self.pattern}
        return {"every": self.every.value if self.every else None, "count": self.count}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Calculator
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def calculate_initial_delay(job: Any, as_of: datetime | None = None) -> int | None:
    """
    Milliseconds until a one-shot job is due.

    None if the job is not a specific_time job or the time is not strictly
    in the future; callers treat that as a validation failure.
    """
    if _schedule_type(job) is not ScheduleType.SPECIFIC_TIME or job.specific_time is None:
        return None
    now = as_utc(as_of) if as_of else utcnow()
    delta = as_utc(job.specific_time) - now
    delay_ms = int(delta.total_seconds() * 1000)
    if delay_ms <= 0:
        return None
    return delay_ms


def calculate_repeat_options(job: Any) -> RepeatOptions | None:
    """Repeat configuration for cron and recurring jobs, None when invalid."""
    schedule_type = _schedule_type(job)
    if schedule_type is ScheduleType.CRON:
        expression = job.cron_expression
        if not expression or not croniter.is_valid(expression):
            return None
        return RepeatOptions(pattern=expression)
    if schedule_type is ScheduleType.RECURRING:
        try:
            trigger = IntervalTrigger(_value(job.interval), job.interval_value)
        except (TypeError, ValueError):
            return None
        return RepeatOptions(every=trigger.unit, count=trigger.count)
    return None


def calculate_next_run(job: Any, as_of: datetime | None = None) -> datetime | None:
    """
    When the job is next due after `as_of` (default now).

    cron: next cron fire; recurring: as_of + interval_value units;
    specific_time: the time itself while still ahead, else None.
    """
    now = as_utc(as_of) if as_of else utcnow()
    try:
        trigger = make_trigger(job)
    except (TypeError, ValueError):
        return None
    return trigger.next_fire_time(now)


def describe_schedule(job: Any) -> str:
    try:
        return make_trigger(job).description
    except (TypeError, ValueError):
        return "invalid schedule"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _value(member: Any) -> Any:
    return member.value if hasattr(member, "value") else member


def _schedule_type(job: Any) -> ScheduleType | None:
    try:
        return ScheduleType(_value(job.schedule_type))
    except ValueError:
        return None


def _add_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)
