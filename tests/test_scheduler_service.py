"""Tests for the task scheduling service."""

import asyncio
from datetime import timedelta

import pytest

from fakes import FakeTrigger, dt, make_template
from taskcadence.db.models import EndCondition, RecurrenceConfig, RecurrenceRule
from taskcadence.service.scheduler import TaskSchedulingService, trigger_id_for
from taskcadence.utils.errors import (
    ExternalCollaboratorError,
    NotFoundError,
    PolicyViolation,
    TransitionError,
    ValidationError,
)


async def _active_template(service, **kwargs):
    template = make_template(**{"minutes_before": [15], **kwargs})
    await service.create_template(template)
    await service.activate_template(template.id)
    return template


def _alert_id(template, minutes_before=15):
    for alert in template.reminder_config.alerts:
        if alert.timing.minutes_before == minutes_before:
            return alert.id
    raise AssertionError(f"no {minutes_before} minute alert")


# Generation


@pytest.mark.asyncio
async def test_generate_arms_future_reminders(service, repo, trigger):
    template = await _active_template(service)

    instances = await service.generate_instances(template.id)

    assert [i.scheduled_time.day for i in instances] == [1, 2, 3, 4, 5]
    alert_id = _alert_id(template)
    first = instances[0]
    assert trigger.scheduled[trigger_id_for(first.id, alert_id)][0] == dt(2024, 1, 1, 8, 45)
    assert len(trigger.scheduled) == 5

    stored = await repo.get_instance(first.id)
    assert stored.reminder_status.enabled
    assert stored.reminder_status.find(alert_id).status == "pending"

    stored_template = await repo.get_template(template.id)
    assert stored_template.analytics.total_instances == 5
    assert stored_template.analytics.last_instance_date == dt(2024, 1, 5, 9)


@pytest.mark.asyncio
async def test_generate_requires_active_template(service):
    template = make_template()
    await service.create_template(template)

    with pytest.raises(PolicyViolation):
        await service.generate_instances(template.id)

    with pytest.raises(NotFoundError):
        await service.generate_instances("missing")


@pytest.mark.asyncio
async def test_generate_skips_existing_occurrences(service, repo):
    template = await _active_template(service)
    await service.generate_instances(template.id)

    assert await service.generate_instances(template.id) == []

    more = await service.generate_instances(template.id, count=7)
    assert [i.scheduled_time.day for i in more] == [6, 7]
    assert len(repo.instances) == 7


@pytest.mark.asyncio
async def test_generate_range_without_persisting(service, repo, trigger):
    template = await _active_template(service)

    preview = await service.generate_instances(
        template.id, start=dt(2024, 1, 10), end=dt(2024, 1, 12, 23), persist=False
    )

    assert [i.scheduled_time.day for i in preview] == [10, 11, 12]
    assert repo.instances == {}
    assert trigger.scheduled == {}


@pytest.mark.asyncio
async def test_batch_save_failure_keeps_nothing(service, repo, trigger):
    """A failed save removes the part of the batch already stored."""
    template = await _active_template(service)
    repo.fail_instance_saves_after = 3

    with pytest.raises(ExternalCollaboratorError):
        await service.generate_instances(template.id)

    assert repo.instances == {}
    assert trigger.scheduled == {}
    assert (await repo.get_template(template.id)).analytics.total_instances == 0


@pytest.mark.asyncio
async def test_skip_conflicts_drops_overlapping_occurrences(service):
    standup = await _active_template(service)
    review = await _active_template(service, title="Review")
    await service.generate_instances(standup.id)

    assert await service.generate_instances(review.id, skip_conflicts=True) == []
    assert len(await service.generate_instances(review.id)) == 5


# Arming


@pytest.mark.asyncio
async def test_failed_registration_is_detached(service, repo, trigger):
    template = await _active_template(service, minutes_before=[30, 15])
    failing = _alert_id(template, 15)
    trigger.fail_schedule_for = {failing}

    first = (await service.generate_instances(template.id))[0]

    stored = await repo.get_instance(first.id)
    assert [a.id for a in stored.reminder_status.alerts] == [_alert_id(template, 30)]
    assert len(trigger.scheduled) == 5

    report = await service.arm_reminders(first.id)
    assert not report.ok
    assert list(report.failed) == [failing]

    trigger.fail_schedule_for.clear()
    report = await service.arm_reminders(first.id)
    assert report.ok
    assert report.armed == [failing]
    assert trigger_id_for(first.id, failing) in trigger.scheduled


@pytest.mark.asyncio
async def test_disarm_is_idempotent(service, repo, trigger):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    trigger_id = trigger_id_for(first.id, _alert_id(template))

    assert await service.disarm_reminders(first.id) == 1
    assert trigger.cancelled == [trigger_id]
    assert (await repo.get_instance(first.id)).reminder_status.alerts == []

    assert await service.disarm_reminders(first.id) == 0
    assert await service.disarm_reminders("missing") == 0


@pytest.mark.asyncio
async def test_disarm_cancel_failure_keeps_alerts(service, repo, trigger):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    trigger.fail_cancel = True

    with pytest.raises(ExternalCollaboratorError) as exc_info:
        await service.disarm_reminders(first.id)

    assert exc_info.value.collaborator == "trigger"
    stored = await repo.get_instance(first.id)
    assert stored.reminder_status.find(_alert_id(template)).status == "pending"


@pytest.mark.asyncio
async def test_rearm_all_after_restart(service, repo, clock, notifier):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    clock.current = dt(2024, 1, 1, 8, 50)

    fresh_trigger = FakeTrigger()
    restarted = TaskSchedulingService(repo, clock, fresh_trigger, notifier, batch_size=5)

    assert await restarted.rearm_all() == 5
    trigger_id = trigger_id_for(first.id, _alert_id(template))
    assert fresh_trigger.scheduled[trigger_id][0] == dt(2024, 1, 1, 8, 50)

    await fresh_trigger.fire(trigger_id)
    assert len(notifier.sent) == 1



@pytest.mark.asyncio
async def test_rearm_all_detaches_alerts_it_cannot_register(service, repo, clock, notifier):
    """One failing registration does not stop the rest of the restart."""
    template = await _active_template(service)
    first, *rest = await service.generate_instances(template.id)

    fresh_trigger = FakeTrigger()
    fresh_trigger.fail_schedule_for = {first.id}
    restarted = TaskSchedulingService(repo, clock, fresh_trigger, notifier, batch_size=5)

    assert await restarted.rearm_all() == 4

    stored = await repo.get_instance(first.id)
    assert stored.reminder_status.alerts == []
    assert stored.events[-1].type == "reminder_cancelled"
    assert stored.events[-1].details["reason"] == "trigger_failed"
    alert_id = _alert_id(template)
    assert set(fresh_trigger.scheduled) == {trigger_id_for(i.id, alert_id) for i in rest}


class BlockingTrigger(FakeTrigger):
    """Hangs in ``schedule`` once ``block_after`` registrations exist."""

    def __init__(self):
        super().__init__()
        self.block_after = None
        self.blocked = asyncio.Event()

    async def schedule(self, trigger_id, fire_at, payload):
        if self.block_after is not None and len(self.scheduled) >= self.block_after:
            self.blocked.set()
            await asyncio.Event().wait()
        await super().schedule(trigger_id, fire_at, payload)


@pytest.mark.asyncio
async def test_cancelled_arming_cancels_issued_registrations(repo, clock, notifier):
    trigger = BlockingTrigger()
    service = TaskSchedulingService(repo, clock, trigger, notifier, batch_size=5)
    template = await _active_template(service, minutes_before=[30, 15])
    instance = (await service.generate_instances(template.id, count=1, persist=False))[0]
    await repo.save_instance(instance)
    trigger.block_after = 1

    task = asyncio.create_task(service.arm_reminders(instance.id))
    await trigger.blocked.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    issued = {trigger_id_for(instance.id, _alert_id(template, m)) for m in (30, 15)}
    assert set(trigger.cancelled) == issued
    assert trigger.scheduled == {}
    assert (await repo.get_instance(instance.id)).reminder_status.alerts == []
    assert service._locks == {}

# Trigger deliveries


@pytest.mark.asyncio
async def test_duplicate_delivery_notifies_once(service, repo, clock, trigger, notifier):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    alert_id = _alert_id(template)
    trigger_id = trigger_id_for(first.id, alert_id)
    clock.current = dt(2024, 1, 1, 8, 45)

    await trigger.fire(trigger_id)
    await trigger.fire(trigger_id)

    assert notifier.sent == [(first.id, alert_id, 'Task "Stand-up" starts in 15 minutes (09:00).')]
    stored = await repo.get_instance(first.id)
    assert stored.reminder_status.find(alert_id).status == "triggered"
    assert stored.reminder_status.last_triggered_at == dt(2024, 1, 1, 8, 45)


@pytest.mark.asyncio
async def test_early_delivery_is_ignored(service, repo, clock, trigger, notifier):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    clock.current = dt(2024, 1, 1, 8)

    await trigger.fire(trigger_id_for(first.id, _alert_id(template)))

    assert notifier.sent == []
    stored = await repo.get_instance(first.id)
    assert stored.reminder_status.find(_alert_id(template)).status == "pending"


@pytest.mark.asyncio
async def test_delivery_for_deleted_instance_is_ignored(service, notifier):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    await service.delete_instance(first.id)

    await service.handle_trigger_fired(
        "late", {"instance_id": first.id, "alert_id": _alert_id(template)}
    )

    assert notifier.sent == []


@pytest.mark.asyncio
async def test_notifier_failure_does_not_raise(repo, clock, trigger):
    class BrokenNotifier:
        async def notify(self, instance, alert, text):
            raise ConnectionError("chat unreachable")

    service = TaskSchedulingService(repo, clock, trigger, BrokenNotifier(), batch_size=5)
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    clock.current = dt(2024, 1, 1, 8, 45)

    await trigger.fire(trigger_id_for(first.id, _alert_id(template)))

    stored = await repo.get_instance(first.id)
    assert stored.reminder_status.find(_alert_id(template)).status == "triggered"


# Snoozing


@pytest.mark.asyncio
async def test_snooze_reregisters_and_enforces_limit(service, repo, clock, trigger, notifier):
    template = make_template(minutes_before=[15])
    template.reminder_config.snooze.max_count = 1
    await service.create_template(template)
    await service.activate_template(template.id)
    first = (await service.generate_instances(template.id))[0]
    alert_id = _alert_id(template)
    trigger_id = trigger_id_for(first.id, alert_id)

    clock.current = dt(2024, 1, 1, 8, 45)
    await trigger.fire(trigger_id)
    alert = await service.snooze_alert(first.id, alert_id, reason="in a call")

    assert alert.status == "snoozed"
    assert trigger.scheduled[trigger_id][0] == dt(2024, 1, 1, 8, 55)

    clock.current = dt(2024, 1, 1, 8, 55)
    await trigger.fire(trigger_id)
    assert len(notifier.sent) == 2

    with pytest.raises(PolicyViolation):
        await service.snooze_alert(first.id, alert_id)

    stored = await repo.get_instance(first.id)
    assert stored.reminder_status.global_snooze_count == 1
    assert stored.reminder_status.find(alert_id).status == "triggered"


@pytest.mark.asyncio
async def test_snooze_registration_failure_saves_nothing(service, repo, clock, trigger):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    alert_id = _alert_id(template)
    clock.current = dt(2024, 1, 1, 8, 45)
    await trigger.fire(trigger_id_for(first.id, alert_id))
    trigger.fail_schedule_for = {alert_id}

    with pytest.raises(ExternalCollaboratorError):
        await service.snooze_alert(first.id, alert_id, dt(2024, 1, 1, 9, 30))

    stored = await repo.get_instance(first.id)
    assert stored.reminder_status.global_snooze_count == 0
    assert stored.reminder_status.find(alert_id).status == "triggered"


@pytest.mark.asyncio
async def test_dismiss_alert(service, repo, clock, trigger):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    alert_id = _alert_id(template)

    with pytest.raises(TransitionError):
        await service.dismiss_alert(first.id, alert_id)

    clock.current = dt(2024, 1, 1, 8, 45)
    await service.trigger_alert(first.id, alert_id)
    await service.dismiss_alert(first.id, alert_id)

    stored = await repo.get_instance(first.id)
    assert stored.reminder_status.find(alert_id).status == "dismissed"


# Instance lifecycle


@pytest.mark.asyncio
async def test_complete_disarms_and_updates_analytics(service, repo, clock, trigger):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]

    await service.start(first.id)
    clock.advance(minutes=20)
    completed = await service.complete(first.id)

    assert completed.status == "completed"
    assert completed.actual_duration == timedelta(minutes=20)
    assert trigger.cancelled == [trigger_id_for(first.id, _alert_id(template))]
    assert (await repo.get_instance(first.id)).reminder_status.alerts == []

    analytics = (await repo.get_template(template.id)).analytics
    assert analytics.completed_instances == 1
    assert analytics.success_rate == 20.0
    assert analytics.average_completion_minutes == 20.0


@pytest.mark.asyncio
async def test_undo_rearms_future_reminders(service, repo, trigger):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    trigger_id = trigger_id_for(first.id, _alert_id(template))
    await service.complete(first.id)
    assert trigger_id not in trigger.scheduled

    reopened = await service.undo(first.id)

    assert reopened.status == "pending"
    assert trigger.scheduled[trigger_id][0] == dt(2024, 1, 1, 8, 45)
    assert (await repo.get_template(template.id)).analytics.completed_instances == 0


@pytest.mark.asyncio
async def test_cancel_disarms(service, trigger):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]

    cancelled = await service.cancel(first.id, reason="holiday")

    assert cancelled.status == "cancelled"
    assert trigger_id_for(first.id, _alert_id(template)) not in trigger.scheduled
    with pytest.raises(TransitionError):
        await service.start(first.id)


@pytest.mark.asyncio
async def test_reschedule_replans_reminders(service, repo, trigger):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    trigger_id = trigger_id_for(first.id, _alert_id(template))

    moved = await service.reschedule(first.id, dt(2024, 1, 1, 12), reason="dentist")

    assert moved.scheduled_time == dt(2024, 1, 1, 12)
    assert trigger_id in trigger.cancelled
    assert trigger.scheduled[trigger_id][0] == dt(2024, 1, 1, 11, 45)


@pytest.mark.asyncio
async def test_reschedule_past_max_delay_changes_nothing(service, repo, trigger):
    """A day 0 task with a 7 day limit cannot move to day 8."""
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]
    trigger_id = trigger_id_for(first.id, _alert_id(template))

    with pytest.raises(PolicyViolation):
        await service.reschedule(first.id, dt(2024, 1, 9, 9))

    stored = await repo.get_instance(first.id)
    assert stored.scheduled_time == dt(2024, 1, 1, 9)
    assert trigger.cancelled == []
    assert trigger.scheduled[trigger_id][0] == dt(2024, 1, 1, 8, 45)


@pytest.mark.asyncio
async def test_delete_instance(service, repo, trigger):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]

    assert await service.delete_instance(first.id)

    assert trigger.cancelled == [trigger_id_for(first.id, _alert_id(template))]
    assert await repo.get_instance(first.id) is None
    assert (await repo.get_template(template.id)).analytics.total_instances == 4
    assert not await service.delete_instance(first.id)


@pytest.mark.asyncio
async def test_sweep_overdue(service, repo, clock):
    template = await _active_template(service)
    instances = await service.generate_instances(template.id)
    clock.current = dt(2024, 1, 2, 10)

    marked = await service.sweep_overdue()

    assert marked == [instances[0].id, instances[1].id]
    assert (await repo.get_instance(instances[0].id)).status == "overdue"
    assert (await repo.get_instance(instances[2].id)).status == "pending"
    assert await service.sweep_overdue() == []


@pytest.mark.asyncio
async def test_available_actions_and_upcoming(service, clock):
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]

    actions = {a.action: a.available for a in await service.available_actions(first.id)}
    assert actions["complete"]
    assert not actions["undo"]

    clock.current = dt(2024, 1, 1, 8, 40)
    upcoming = await service.upcoming_reminders(within_minutes=60)
    assert [(u.instance_id, u.minutes_until) for u in upcoming] == [(first.id, 5)]


# Template lifecycle


@pytest.mark.asyncio
async def test_pause_removes_pending_and_resume_regenerates(service, repo, clock, trigger):
    template = await _active_template(service)
    instances = await service.generate_instances(template.id)
    await service.start(instances[0].id)

    removed = await service.pause_template(template.id)

    assert removed == 4
    assert len(trigger.cancelled) == 4
    assert list(repo.instances) == [instances[0].id]
    paused = await repo.get_template(template.id)
    assert paused.status == "paused"
    assert paused.analytics.total_instances == 1

    with pytest.raises(PolicyViolation):
        await service.generate_instances(template.id)

    clock.current = dt(2024, 1, 3, 8)
    resumed = await service.resume_template(template.id)

    assert [i.scheduled_time.day for i in resumed] == [3, 4, 5, 6, 7]
    assert (await repo.get_template(template.id)).status == "active"
    assert trigger_id_for(resumed[0].id, _alert_id(template)) in trigger.scheduled


@pytest.mark.asyncio
async def test_archive_is_final(service, repo):
    template = await _active_template(service)
    await service.generate_instances(template.id)

    archived = await service.archive_template(template.id)

    assert archived.status == "archived"
    assert repo.instances == {}
    with pytest.raises(TransitionError):
        await service.activate_template(template.id)


@pytest.mark.asyncio
async def test_update_recurrence_replaces_pending_instances(service, repo, trigger):
    template = await _active_template(service)
    instances = await service.generate_instances(template.id)
    await service.start(instances[0].id)

    # 2024-01-01 is a Monday and already has an instance
    mondays = RecurrenceRule(type="weekly", config=RecurrenceConfig(weekdays=[0]))
    created = await service.update_recurrence(template.id, mondays)

    assert [i.scheduled_time.day for i in created] == [8, 15, 22, 29]
    assert len(trigger.cancelled) == 4
    remaining = await repo.get_instances_by_template(template.id)
    assert [i.id for i in remaining][0] == instances[0].id
    assert len(remaining) == 5
    assert (await repo.get_template(template.id)).time_config.recurrence.type == "weekly"


@pytest.mark.asyncio
async def test_update_recurrence_rejects_invalid_rule(service, repo):
    template = await _active_template(service)
    await service.generate_instances(template.id)
    bad = RecurrenceRule(type="daily", end_condition=EndCondition(type="count", count=0))

    with pytest.raises(ValidationError):
        await service.update_recurrence(template.id, bad)

    assert len(repo.instances) == 5
    assert (await repo.get_template(template.id)).time_config.recurrence.type == "daily"


# Locking


@pytest.mark.asyncio
async def test_waiting_callers_share_one_lock(service):
    """A lock stays registered while anyone waits on it and is dropped after."""
    template = await _active_template(service)
    first = (await service.generate_instances(template.id))[0]

    async with service._locked(first.id):
        waiting = asyncio.create_task(service.complete(first.id))
        await asyncio.sleep(0)
        assert not waiting.done()
        assert service._lock_users[first.id] == 2

    assert (await waiting).status == "completed"
    assert service._locks == {}
    assert not service._lock_users

    with pytest.raises(TransitionError):
        await service.complete(first.id)
    assert service._locks == {}
