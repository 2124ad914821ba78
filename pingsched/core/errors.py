"""
pingsched exception hierarchy.

Every error in the system inherits from PingschedError.
Each subsystem has its own error class for targeted catching.

Usage:
    try:
        await controller.update(job_id, body)
    except NotFoundError:
        # 404
    except ValidationError as e:
        # 400, field map in e.details
    except PingschedError as e:
        # anything else raised by pingsched
"""


class PingschedError(Exception):
    """Base exception for all pingsched errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Core Errors ━━━


class ConfigError(PingschedError):
    """Configuration is invalid, missing, or malformed."""

    pass


class StorageError(PingschedError):
    """Job store failure — database errors, corruption, etc."""

    pass


# ━━━ Request Errors ━━━


class ValidationError(PingschedError):
    """
    Malformed or inconsistent job data.

    details maps field name -> human-readable problem, e.g.
        {"specific_time": "Specific time must be in the future"}
    """

    pass


class NotFoundError(PingschedError):
    """No job with the requested id."""

    def __init__(self, job_id: str, message: str = "Job not found"):
        self.job_id = job_id
        super().__init__(message, {"id": job_id})


# ━━━ Execution Errors ━━━


class ActionExecutionError(PingschedError):
    """A job's target action failed (non-2xx, timeout, unsupported type)."""

    def __init__(
        self,
        message: str,
        target: str = "",
        status_code: int | None = None,
        retryable: bool = True,
        details: dict | None = None,
    ):
        self.target = target
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message, details)


class QueueReconciliationError(PingschedError):
    """
    A queue lane could not be brought in line with the job store.

    Raised internally after the store mutation already succeeded; the
    controller logs it instead of propagating, since the store stays
    authoritative.
    """

    def __init__(
        self,
        message: str,
        job_id: str = "",
        operation: str = "",
        details: dict | None = None,
    ):
        self.job_id = job_id
        self.operation = operation
        super().__init__(message, details)
