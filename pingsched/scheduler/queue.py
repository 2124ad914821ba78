"""
JobQueue — an in-process delayed/repeating work queue.

Used twice by the service:
- the execution queue, drained by a QueueEngine
- the dead-letter lane, which has no consumer and simply holds entries
  for inspection until the controller removes them

Entries are keyed by id ("upsert by id"): adding an id that is already
queued replaces the old entry, so a job can never be scheduled twice
under the same id. Due times live in a min-heap of (fire_at, seq, id);
heap items whose seq no longer matches the entry are stale and skipped.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from pingsched.scheduler.job import format_ts, utcnow
from pingsched.scheduler.triggers import RepeatOptions

logger = logging.getLogger(__name__)

MAX_IDLE_SECONDS = 60.0


class EntryState:
    WAITING = "waiting"      # due now
    DELAYED = "delayed"      # due later
    ACTIVE = "active"        # being processed
    COMPLETED = "completed"  # kept because remove_on_complete=False
    FAILED = "failed"        # attempts exhausted


@dataclass
class QueueEntry:
    """One scheduled unit of work in a queue lane."""

    id: str
    name: str
    data: dict[str, Any]
    fire_at: datetime
    repeat: RepeatOptions | None = None
    remove_on_complete: bool = True
    attempts: int | None = None       # overrides the engine default
    attempts_made: int = 0
    failed_reason: str | None = None
    state: str = EntryState.WAITING
    created_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    seq: int = 0

    @property
    def job_id(self) -> str:
        return self.data.get("job_id", self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "data": self.data,
            "state": self.state,
            "fire_at": format_ts(self.fire_at),
            "repeat": self.repeat.to_dict() if self.repeat else None,
            "attempts_made": self.attempts_made,
            "failed_reason": self.failed_reason,
            "created_at": format_ts(self.created_at),
            "finished_at": format_ts(self.finished_at),
        }


class JobQueue:
    """
    Delayed/repeating queue with a capped failed-entries record.

    Usage:
        queue = JobQueue("scheduler-jobs")
        queue.add("charge", job.queue_data(), job_id=job.id, repeat=repeat)
        queue.add("reminder", data, job_id=other.id, delay=300_000)
        queue.remove(job.id)
    """

    def __init__(self, name: str, max_failed: int = 500) -> None:
        self.name = name
        self._entries: dict[str, QueueEntry] = {}
        self._heap: list[tuple[float, int, str]] = []
        self._seq = itertools.count(1)
        self._failed: deque[QueueEntry] = deque(maxlen=max_failed)
        self._changed = asyncio.Event()

    # ── Producer side ─────────────────────────────────────────────────────────

    def add(
        self,
        name: str,
        data: dict[str, Any],
        job_id: str,
        delay: int | None = None,
        repeat: RepeatOptions | None = None,
        remove_on_complete: bool = True,
        attempts: int | None = None,
        now: datetime | None = None,
    ) -> QueueEntry:
        """
        Add (or replace) the entry for job_id.

        delay: milliseconds until the single run
        repeat: re-arm after every run; first run at repeat.next_after(now)
        neither: due immediately
        """
        now = now or utcnow()
        if repeat is not None:
            fire_at = repeat.next_after(now)
        elif delay is not None:
            fire_at = now + timedelta(milliseconds=max(0, delay))
        else:
            fire_at = now

        replacing = job_id in self._entries
        if replacing:
            logger.debug(f"[{self.name}] replacing entry {job_id}")
        entry = QueueEntry(
            id=job_id,
            name=name,
            data=dict(data),
            fire_at=fire_at,
            repeat=repeat,
            remove_on_complete=remove_on_complete,
            attempts=attempts,
        )
        self._entries[job_id] = entry
        self._schedule(entry, fire_at, now)
        if replacing:
            self._compact()
        return entry

    def remove(self, job_id: str) -> bool:
        """Drop the entry for job_id. Returns False if there was none."""
        entry = self._entries.pop(job_id, None)
        if entry is None:
            return False
        self._compact()
        self._changed.set()
        logger.debug(f"[{self.name}] removed entry {job_id}")
        return True

    # ── Inspection ────────────────────────────────────────────────────────────

    def get(self, job_id: str) -> QueueEntry | None:
        return self._entries.get(job_id)

    def has(self, job_id: str) -> bool:
        return job_id in self._entries

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[QueueEntry]:
        return sorted(self._entries.values(), key=lambda e: e.fire_at)

    def failed(self) -> list[QueueEntry]:
        """Exhausted entries, newest first."""
        return list(reversed(self._failed))

    # ── Consumer side (QueueEngine) ───────────────────────────────────────────

    def pop_due(self, now: datetime | None = None) -> list[QueueEntry]:
        """Take every entry due at `now`, marking it active."""
        ts = (now or utcnow()).timestamp()
        due: list[QueueEntry] = []
        while self._heap and self._heap[0][0] <= ts:
            _, seq, job_id = heapq.heappop(self._heap)
            entry = self._entries.get(job_id)
            if entry is None or entry.seq != seq:
                continue
            entry.state = EntryState.ACTIVE
            due.append(entry)
        return due

    def seconds_until_next(self, now: datetime | None = None) -> float | None:
        """Seconds until the earliest scheduled entry, None when idle."""
        while self._heap:
            fire_ts, seq, job_id = self._heap[0]
            entry = self._entries.get(job_id)
            if entry is None or entry.seq != seq:
                heapq.heappop(self._heap)
                continue
            return max(0.0, fire_ts - (now or utcnow()).timestamp())
        return None

    async def wait_for_change(self, timeout: float | None) -> None:
        """Sleep until an add/remove/reschedule or until timeout."""
        timeout = MAX_IDLE_SECONDS if timeout is None else min(timeout, MAX_IDLE_SECONDS)
        try:
            await asyncio.wait_for(self._changed.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        self._changed.clear()

    def is_current(self, entry: QueueEntry) -> bool:
        """False once the entry was removed or replaced while in flight."""
        return self._entries.get(entry.id) is entry

    def defer(self, entry: QueueEntry, delay_seconds: float) -> None:
        """Put a popped entry back, due in delay_seconds."""
        if self.is_current(entry):
            now = utcnow()
            self._schedule(entry, now + timedelta(seconds=delay_seconds), now)

    def retry(self, entry: QueueEntry, delay_seconds: float, reason: str) -> None:
        entry.failed_reason = reason
        self.defer(entry, delay_seconds)

    def complete(self, entry: QueueEntry) -> bool:
        """
        Finish a successful run. Repeating entries are re-armed.

        Returns True if the entry was re-armed.
        """
        entry.finished_at = utcnow()
        entry.failed_reason = None
        return self._settle(entry, EntryState.COMPLETED)

    def fail(self, entry: QueueEntry, reason: str) -> bool:
        """
        Record an exhausted entry in the failed list.

        Repeating entries still get their next occurrence; the failed run
        is kept as a snapshot. Returns True if the entry was re-armed.
        """
        entry.finished_at = utcnow()
        entry.failed_reason = reason
        self._failed.append(replace(entry, state=EntryState.FAILED, data=dict(entry.data)))
        return self._settle(entry, EntryState.FAILED)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _settle(self, entry: QueueEntry, final_state: str) -> bool:
        if not self.is_current(entry):
            return False
        if entry.repeat is not None:
            now = utcnow()
            entry.attempts_made = 0
            self._schedule(entry, entry.repeat.next_after(now), now)
            return True
        if final_state == EntryState.COMPLETED and not entry.remove_on_complete:
            entry.state = final_state
            return False
        self._entries.pop(entry.id, None)
        return False

    def _compact(self) -> None:
        """Drop stale heap items once they outnumber the live entries."""
        if len(self._heap) <= 2 * len(self._entries):
            return
        live = {entry.id: entry.seq for entry in self._entries.values()}
        self._heap = [item for item in self._heap if live.get(item[2]) == item[1]]
        heapq.heapify(self._heap)

    def _schedule(self, entry: QueueEntry, fire_at: datetime, now: datetime) -> None:
        entry.seq = next(self._seq)
        entry.fire_at = fire_at
        entry.state = EntryState.DELAYED if fire_at > now else EntryState.WAITING
        heapq.heappush(self._heap, (fire_at.timestamp(), entry.seq, entry.id))
        self._changed.set()
