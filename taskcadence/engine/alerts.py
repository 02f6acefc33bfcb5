"""Per-alert reminder state machine.

    pending -> triggered -> dismissed
                         -> snoozed -> triggered (re-fire at snooze_until)

The functions mutate the instance in place and do no locking; callers
serialize writes per instance.
"""

from datetime import datetime

from taskcadence.db.models import ReminderStatusAlert, SnoozeEntry, SnoozePolicy, TaskInstance
from taskcadence.utils.constants import ARMED_ALERT_STATUSES
from taskcadence.utils.errors import NotFoundError, PolicyViolation, TransitionError, ValidationError


def _get_alert(instance: TaskInstance, alert_id: str) -> ReminderStatusAlert:
    alert = instance.reminder_status.find(alert_id)
    if alert is None:
        raise NotFoundError(f"Alert {alert_id} not found on instance {instance.id}")
    return alert


def attach(instance: TaskInstance, alert: ReminderStatusAlert, now: datetime) -> None:
    """Locally arm an alert (first step of arming)."""
    if alert.scheduled_time <= now:
        raise PolicyViolation(f"Alert {alert.id} fire time is not in the future")
    if instance.reminder_status.find(alert.id) is not None:
        raise PolicyViolation(f"Alert {alert.id} is already attached to instance {instance.id}")

    instance.reminder_status.alerts.append(alert)
    instance.record_event(
        "reminder_scheduled", now, alert.id, scheduled_for=alert.scheduled_time.isoformat()
    )


def detach(instance: TaskInstance, alert_id: str, now: datetime, reason: str) -> None:
    """Remove an alert locally, e.g. when its trigger registration failed."""
    alert = instance.reminder_status.find(alert_id)
    if alert is None:
        return
    instance.reminder_status.alerts.remove(alert)
    instance.record_event("reminder_cancelled", now, alert_id, reason=reason)


def armed_alerts(instance: TaskInstance) -> list[ReminderStatusAlert]:
    """Alerts that still own a trigger registration."""
    return [a for a in instance.reminder_status.alerts if a.status in ARMED_ALERT_STATUSES]


def discard_alerts(instance: TaskInstance, now: datetime) -> list[ReminderStatusAlert]:
    """Drop every alert from the instance, returning the ones that were armed."""
    armed = armed_alerts(instance)
    if instance.reminder_status.alerts:
        instance.reminder_status.alerts = []
        instance.record_event("reminders_cleared", now, discarded=len(armed))
    return armed


def trigger(instance: TaskInstance, alert_id: str, now: datetime) -> ReminderStatusAlert:
    """Fire an alert. Valid from pending, and from snoozed for the re-fire."""
    alert = _get_alert(instance, alert_id)
    if alert.status not in ("pending", "snoozed"):
        raise TransitionError(alert.status, "trigger", "alert")

    alert.status = "triggered"
    alert.triggered_at = now
    instance.reminder_status.last_triggered_at = now
    instance.record_event("reminder_triggered", now, alert_id)
    return alert


def dismiss(instance: TaskInstance, alert_id: str, now: datetime) -> ReminderStatusAlert:
    alert = _get_alert(instance, alert_id)
    if alert.status != "triggered":
        raise TransitionError(alert.status, "dismiss", "alert")

    alert.status = "dismissed"
    alert.dismissed_at = now
    instance.record_event("reminder_dismissed", now, alert_id)
    return alert


def snooze(
    instance: TaskInstance,
    alert_id: str,
    snooze_until: datetime,
    policy: SnoozePolicy,
    now: datetime,
    reason: str | None = None,
) -> ReminderStatusAlert:
    """Defer a triggered alert to ``snooze_until``.

    Raises:
        TransitionError: alert is not triggered
        PolicyViolation: snoozing disabled or the snooze limit is reached;
            nothing is changed
    """
    alert = _get_alert(instance, alert_id)
    if alert.status != "triggered":
        raise TransitionError(alert.status, "snooze", "alert")
    if not policy.enabled:
        raise PolicyViolation("Snoozing is disabled for this task")
    if instance.reminder_status.global_snooze_count >= policy.max_count:
        raise PolicyViolation(f"Snooze limit of {policy.max_count} reached")
    if snooze_until <= now:
        raise ValidationError([("snooze_until", "Snooze time must be in the future")])

    alert.snooze_history.append(SnoozeEntry(snoozed_at=now, snooze_until=snooze_until, reason=reason))
    alert.status = "snoozed"
    alert.scheduled_time = snooze_until
    instance.reminder_status.global_snooze_count += 1
    instance.record_event(
        "reminder_snoozed", now, alert_id, snooze_until=snooze_until.isoformat(), reason=reason
    )
    return alert
