"""Tests for pingsched/scheduler/lifecycle.py"""
from __future__ import annotations

from datetime import timedelta

import pytest

from pingsched.core.errors import NotFoundError, ValidationError
from pingsched.scheduler.job import Interval, Job, JobStatus, ScheduleType, utcnow
from pingsched.scheduler.lifecycle import JobLifecycleController, compute_placement
from pingsched.scheduler.queue import EntryState


def _in_one_lane(job_id, active_queue, dead_letter) -> bool:
    return (job_id in active_queue) != (job_id in dead_letter)


@pytest.mark.asyncio
class TestCreate:
    async def test_recurring_job(self, controller, store, active_queue, dead_letter, recurring_body):
        recurring_body["interval"] = "day"
        before = utcnow()
        job = await controller.create(recurring_body)

        assert job.status is JobStatus.ACTIVE
        assert before + timedelta(days=1) <= job.next_run <= utcnow() + timedelta(days=1)
        assert len(active_queue) == 1
        entry = active_queue.get(job.id)
        assert entry.name == "monthly-invoice"
        assert entry.repeat.every is Interval.DAY
        assert entry.fire_at == job.next_run
        assert job.id not in dead_letter
        assert (await store.get(job.id)) is not None

    async def test_one_shot_job_delay(self, controller, active_queue):
        at = utcnow() + timedelta(minutes=5)
        job = await controller.create({
            "name": "reminder",
            "target": "https://api.example.com/remind",
            "schedule_type": "specific_time",
            "specific_time": at.isoformat(),
        })
        entry = active_queue.get(job.id)
        assert entry.repeat is None
        assert abs((entry.fire_at - at).total_seconds()) < 0.01
        assert job.next_run == job.specific_time

    async def test_past_specific_time_rejected_without_writes(self, controller, store, active_queue):
        with pytest.raises(ValidationError) as exc:
            await controller.create({
                "name": "late",
                "target": "https://api.example.com/late",
                "schedule_type": "specific_time",
                "specific_time": (utcnow() - timedelta(minutes=1)).isoformat(),
            })
        assert exc.value.details == {"specific_time": "Specific time must be in the future"}
        assert await store.get_all() == []
        assert len(active_queue) == 0

    async def test_invalid_body(self, controller, cron_body):
        cron_body["cron_expression"] = "sometimes"
        with pytest.raises(ValidationError):
            await controller.create(cron_body)

    async def test_create_inactive_goes_to_dead_letter(
        self, controller, active_queue, dead_letter, cron_body
    ):
        cron_body["status"] = "inactive"
        job = await controller.create(cron_body)
        assert job.status is JobStatus.INACTIVE
        assert job.id in dead_letter
        assert job.id not in active_queue


@pytest.mark.asyncio
class TestUpdate:
    async def test_reschedules_under_same_id(self, controller, active_queue, cron_body, recurring_body):
        job = await controller.create(cron_body)
        updated = await controller.update(job.id, recurring_body)

        assert updated.id == job.id
        assert updated.schedule_type is ScheduleType.RECURRING
        assert updated.cron_expression is None
        assert updated.created_at == job.created_at
        assert len(active_queue) == 1
        assert active_queue.get(job.id).repeat.every is Interval.MONTH

    async def test_missing_job(self, controller, cron_body):
        with pytest.raises(NotFoundError):
            await controller.update("ghost", cron_body)

    async def test_invalid_update_leaves_job_untouched(self, controller, store, active_queue, cron_body):
        job = await controller.create(cron_body)
        with pytest.raises(ValidationError):
            await controller.update(job.id, {**cron_body, "target": "not-a-url"})
        assert (await store.get(job.id)).target == cron_body["target"]
        assert job.id in active_queue

    async def test_update_to_inactive_moves_lane(self, controller, active_queue, dead_letter, cron_body):
        job = await controller.create(cron_body)
        await controller.update(job.id, {**cron_body, "status": "inactive"})
        assert job.id not in active_queue
        assert job.id in dead_letter

    async def test_update_keeps_run_history(self, controller, store, cron_body):
        job = await controller.create(cron_body)
        ran_at = utcnow()
        await store.record_success(job.id, last_run=ran_at, next_run=None)
        updated = await controller.update(job.id, {**cron_body, "name": "renamed"})
        assert updated.last_run == ran_at
        assert updated.name == "renamed"

    async def test_past_specific_time_rejected_without_writes(
        self, controller, store, active_queue, cron_body
    ):
        job = await controller.create(cron_body)
        entry = active_queue.get(job.id)
        with pytest.raises(ValidationError) as exc:
            await controller.update(job.id, {
                **cron_body,
                "schedule_type": "specific_time",
                "cron_expression": None,
                "specific_time": (utcnow() - timedelta(minutes=1)).isoformat(),
            })
        assert exc.value.details == {"specific_time": "Specific time must be in the future"}
        stored = await store.get(job.id)
        assert stored.schedule_type is ScheduleType.CRON
        assert stored.specific_time is None
        assert active_queue.get(job.id) is entry


@pytest.mark.asyncio
class TestDelete:
    async def test_delete_removes_row_and_entries(self, controller, store, active_queue, dead_letter, cron_body):
        job = await controller.create(cron_body)
        await controller.delete(job.id)
        assert await store.get(job.id) is None
        assert job.id not in active_queue
        assert job.id not in dead_letter

    async def test_second_delete_raises(self, controller, active_queue, dead_letter, cron_body):
        job = await controller.create(cron_body)
        await controller.delete(job.id)
        with pytest.raises(NotFoundError):
            await controller.delete(job.id)
        assert job.id not in active_queue
        assert job.id not in dead_letter


@pytest.mark.asyncio
class TestStatusTransitions:
    async def test_deactivate_then_activate(self, controller, active_queue, dead_letter, cron_body):
        job = await controller.create(cron_body)

        inactive = await controller.set_status(job.id, "inactive")
        assert inactive.status is JobStatus.INACTIVE
        assert job.id not in active_queue
        entry = dead_letter.get(job.id)
        assert entry.name == "nightly-charge-inactive"
        assert entry.remove_on_complete is False

        active = await controller.set_status(job.id, JobStatus.ACTIVE)
        assert active.status is JobStatus.ACTIVE
        assert job.id not in dead_letter
        assert active_queue.get(job.id).repeat.pattern == "0 0 * * *"

    async def test_mutual_exclusion_across_transitions(self, controller, active_queue, dead_letter, cron_body):
        job = await controller.create(cron_body)
        for status in ("inactive", "inactive", "active", "active", "inactive"):
            await controller.set_status(job.id, status)
            assert _in_one_lane(job.id, active_queue, dead_letter)
        await controller.reactivate(job.id)
        assert _in_one_lane(job.id, active_queue, dead_letter)

    @pytest.mark.parametrize("status", ["failed", "paused", None])
    async def test_rejects_other_statuses(self, controller, cron_body, status):
        job = await controller.create(cron_body)
        with pytest.raises(ValidationError):
            await controller.set_status(job.id, status)

    async def test_missing_job(self, controller):
        with pytest.raises(NotFoundError):
            await controller.set_status("ghost", "inactive")

    async def test_activating_expired_one_shot_fails_closed(self, controller, store, dead_letter):
        job = await store.insert(Job(
            name="expired",
            target="https://api.example.com/x",
            schedule_type=ScheduleType.SPECIFIC_TIME,
            specific_time=utcnow() - timedelta(hours=1),
            status=JobStatus.INACTIVE,
        ))
        with pytest.raises(ValidationError):
            await controller.set_status(job.id, "active")
        assert (await store.get(job.id)).status is JobStatus.INACTIVE


@pytest.mark.asyncio
class TestDeadLetter:
    async def test_list_dead_letter(self, controller, cron_body, recurring_body):
        a = await controller.create(cron_body)
        b = await controller.create(recurring_body)
        await controller.set_status(a.id, "inactive")

        assert [j.id for j in await controller.list_dead_letter()] == [a.id]
        assert [j.id for j in await controller.list("active")] == [b.id]

    async def test_reactivate(self, controller, active_queue, dead_letter, cron_body):
        job = await controller.create(cron_body)
        await controller.set_status(job.id, "inactive")
        reactivated = await controller.reactivate(job.id)
        assert reactivated.status is JobStatus.ACTIVE
        assert job.id in active_queue
        assert job.id not in dead_letter

    async def test_reactivate_requires_inactive(self, controller, cron_body):
        job = await controller.create(cron_body)
        with pytest.raises(ValidationError) as exc:
            await controller.reactivate(job.id)
        assert exc.value.message == "Only inactive jobs can be reactivated"

    async def test_complete(self, controller, active_queue, dead_letter, cron_body):
        job = await controller.create(cron_body)
        await controller.set_status(job.id, "inactive")
        done = await controller.complete(job.id)

        assert done.status is JobStatus.INACTIVE
        assert done.last_run is not None
        assert done.next_run is None
        assert job.id not in dead_letter
        assert job.id not in active_queue

    async def test_complete_requires_inactive(self, controller, cron_body):
        job = await controller.create(cron_body)
        with pytest.raises(ValidationError):
            await controller.complete(job.id)

    async def test_missing_job(self, controller):
        with pytest.raises(NotFoundError):
            await controller.reactivate("ghost")
        with pytest.raises(NotFoundError):
            await controller.complete("ghost")


@pytest.mark.asyncio
class TestRunNow:
    async def test_adds_manual_entry_alongside_schedule(self, controller, active_queue, cron_body):
        job = await controller.create(cron_body)
        entry_id = await controller.run_now(job.id)

        assert entry_id.startswith(f"{job.id}-manual-")
        manual = active_queue.get(entry_id)
        assert manual.name == "nightly-charge-manual"
        assert manual.state == EntryState.WAITING
        assert manual.job_id == job.id
        assert job.id in active_queue
        assert (await controller.get(job.id)).next_run == job.next_run

    async def test_missing_job(self, controller):
        with pytest.raises(NotFoundError):
            await controller.run_now("ghost")


@pytest.mark.asyncio
class TestReconciliation:
    async def test_every_mutation_reaches_the_lanes(
        self, controller, store, active_queue, dead_letter, cron_body, caplog
    ):
        job = await controller.create(cron_body)
        assert active_queue.get(job.id).id == job.id

        await controller.update(job.id, {**cron_body, "name": "renamed"})
        assert active_queue.get(job.id).name == "renamed"

        await controller.set_status(job.id, "inactive")
        assert dead_letter.get(job.id).id == job.id

        await controller.reactivate(job.id)
        assert job.id in active_queue

        entry_id = await controller.run_now(job.id)
        assert entry_id in active_queue

        assert "Failed to" not in caplog.text
        assert len(await store.get_all()) == 1

    async def test_lane_failure_does_not_undo_store_write(
        self, store, active_queue, dead_letter, cron_body, monkeypatch, caplog
    ):
        controller = JobLifecycleController(store, active_queue, dead_letter)

        def broken_add(*args, **kwargs):
            raise RuntimeError("queue unavailable")

        monkeypatch.setattr(active_queue, "add", broken_add)
        job = await controller.create(cron_body)

        assert (await store.get(job.id)) is not None
        assert job.id not in active_queue
        assert "queue unavailable" in caplog.text

    async def test_rebuild_from_store(self, store, active_queue, dead_letter):
        past = utcnow() - timedelta(days=3)
        recurring = await store.insert(Job(
            name="r", target="https://a.example.com", schedule_type=ScheduleType.RECURRING,
            interval=Interval.HOUR, interval_value=1, next_run=past,
        ))
        failed = await store.insert(Job(
            name="f", target="https://a.example.com", schedule_type=ScheduleType.CRON,
            cron_expression="*/5 * * * *", status=JobStatus.FAILED,
        ))
        inactive = await store.insert(Job(
            name="i", target="https://a.example.com", schedule_type=ScheduleType.CRON,
            cron_expression="0 0 * * *", status=JobStatus.INACTIVE,
        ))
        expired = await store.insert(Job(
            name="e", target="https://a.example.com", schedule_type=ScheduleType.SPECIFIC_TIME,
            specific_time=past,
        ))

        controller = JobLifecycleController(store, active_queue, dead_letter)
        await controller.rebuild()

        assert recurring.id in active_queue
        assert failed.id in active_queue
        assert inactive.id in dead_letter
        assert expired.id not in active_queue
        assert expired.id not in dead_letter
        assert (await store.get(recurring.id)).next_run > utcnow()


def test_compute_placement():
    now = utcnow()
    oneshot = Job(
        name="o", target="https://a.example.com", schedule_type=ScheduleType.SPECIFIC_TIME,
        specific_time=now + timedelta(seconds=10),
    )
    assert compute_placement(oneshot, now).delay == 10_000

    bad = Job(name="b", target="https://a.example.com", schedule_type=ScheduleType.CRON)
    with pytest.raises(ValidationError):
        compute_placement(bad, now)
