"""Reminder planning: concrete fire times for an instance's alerts."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from taskcadence.db.models import (
    AbsoluteTiming,
    ReminderAlert,
    ReminderConfig,
    ReminderStatusAlert,
    TaskInstance,
)
from taskcadence.utils.constants import ARMED_ALERT_STATUSES
from taskcadence.utils.time_utils import from_utc


@dataclass(frozen=True)
class UpcomingReminder:
    instance_id: str
    alert_id: str
    fire_at: datetime
    minutes_until: int


def compute_fire_time(alert: ReminderAlert, scheduled_time: datetime) -> datetime:
    """Relative alerts fire ``minutes_before`` the task; absolute ones at their time."""
    if isinstance(alert.timing, AbsoluteTiming):
        return alert.timing.at
    return scheduled_time - timedelta(minutes=alert.timing.minutes_before)


def plan(
    instance: TaskInstance, config: ReminderConfig, now: datetime
) -> list[ReminderStatusAlert]:
    """Compute pending alerts for an instance.

    Alerts whose fire time is not strictly after ``now`` are dropped, never
    created in the pending state. Nothing is attached to the instance here;
    the caller arms and attaches.
    """
    if not config.enabled:
        return []

    planned = []
    for alert in config.alerts:
        fire_at = compute_fire_time(alert, instance.scheduled_time)
        if fire_at <= now:
            continue
        planned.append(ReminderStatusAlert(alert=alert, scheduled_time=fire_at))

    planned.sort(key=lambda a: a.scheduled_time)
    return planned


def next_reminder(instance: TaskInstance) -> ReminderStatusAlert | None:
    """Earliest alert still waiting to fire (pending or snoozed)."""
    if not instance.reminder_status.enabled:
        return None

    waiting = [a for a in instance.reminder_status.alerts if a.status in ARMED_ALERT_STATUSES]
    if not waiting:
        return None
    return min(waiting, key=lambda a: a.scheduled_time)


def reminder_stats(instance: TaskInstance) -> dict:
    """Count alerts per status."""
    alerts = instance.reminder_status.alerts
    stats = {status: 0 for status in ("pending", "triggered", "dismissed", "snoozed")}
    for alert in alerts:
        stats[alert.status] += 1
    stats["total"] = len(alerts)
    stats["global_snooze_count"] = instance.reminder_status.global_snooze_count
    return stats


def upcoming_reminders(
    instances: list[TaskInstance], now: datetime, within_minutes: int = 60
) -> list[UpcomingReminder]:
    """Alerts firing in ``(now, now + within_minutes]``, soonest first."""
    cutoff = now + timedelta(minutes=within_minutes)
    upcoming = []

    for instance in instances:
        if not instance.reminder_status.enabled:
            continue
        for alert in instance.reminder_status.alerts:
            if alert.status not in ARMED_ALERT_STATUSES:
                continue
            if now < alert.scheduled_time <= cutoff:
                upcoming.append(
                    UpcomingReminder(
                        instance_id=instance.id,
                        alert_id=alert.id,
                        fire_at=alert.scheduled_time,
                        minutes_until=round((alert.scheduled_time - now).total_seconds() / 60),
                    )
                )

    return sorted(upcoming, key=lambda u: u.fire_at)


def build_reminder_message(instance: TaskInstance, fire_at: datetime, custom: str | None = None) -> str:
    """Reminder text, e.g. ``Task "Stand-up" starts in 15 minutes (09:00).``"""
    if custom:
        return custom

    minutes_before = round((instance.scheduled_time - fire_at).total_seconds() / 60)
    start = from_utc(instance.scheduled_time, instance.timezone)

    if instance.time_type == "allDay":
        when = "today"
    elif instance.time_type == "timeRange" and instance.end_time:
        end = from_utc(instance.end_time, instance.timezone)
        when = f"{start.strftime('%H:%M')} - {end.strftime('%H:%M')}"
    else:
        when = start.strftime("%H:%M")

    if minutes_before > 0:
        return f'Task "{instance.title}" starts in {minutes_before} minutes ({when}).'
    if minutes_before == 0:
        return f'Task "{instance.title}" starts now ({when}).'
    return f'Task "{instance.title}" started {-minutes_before} minutes ago ({when}).'
