"""
pingsched Event System — types and constants.

The queue engine emits an event at every step of an entry's life.
Events flow through the middleware chain (event log), then to subscribers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
import time
import uuid


class EventType:
    """
    Event type constants.

    Hierarchical naming: "category:action"
    Supports wildcard matching: "job:*" matches "job:completed"
    """

    # Service lifecycle
    SERVICE_START = "service:start"
    SERVICE_STOP = "service:stop"

    # Queue entries
    JOB_ACTIVE = "job:active"          # picked up by the engine
    JOB_COMPLETED = "job:completed"    # processor returned
    JOB_RETRYING = "job:retrying"      # processor raised, retry scheduled
    JOB_FAILED = "job:failed"          # attempts exhausted
    JOB_REARMED = "job:rearmed"        # repeating entry scheduled again

    # Controller reconciliation
    QUEUE_DRIFT = "queue:drift"

    # Wildcard
    ALL = "*"


@dataclass(slots=True)
class Event:
    """
    A single event in pingsched.

    - Typed (hierarchical string)
    - Timestamped
    - Traceable (source = queue name)
    - Extensible (data dict for event-specific payload)
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)
