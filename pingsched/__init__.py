"""
pingsched — schedule HTTP calls by cron, interval, or one-off time.

Public API:
    from pingsched import SchedulerService, PingschedConfig
"""

__version__ = "1.0.0"

# Core
from pingsched.core.config import PingschedConfig
from pingsched.core.errors import NotFoundError, PingschedError, ValidationError
from pingsched.core.events import Event, EventType

# Scheduler
from pingsched.scheduler.job import Interval, Job, JobStatus, JobType, ScheduleType
from pingsched.scheduler.lifecycle import JobLifecycleController
from pingsched.scheduler.service import SchedulerService

__all__ = [
    # Core
    "PingschedConfig",
    "PingschedError",
    "ValidationError",
    "NotFoundError",
    "Event",
    "EventType",
    # Scheduler
    "Job",
    "JobType",
    "JobStatus",
    "ScheduleType",
    "Interval",
    "JobLifecycleController",
    "SchedulerService",
]
