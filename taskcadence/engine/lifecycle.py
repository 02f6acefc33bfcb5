"""Task instance lifecycle state machine.

    pending --start--> in_progress
    pending, in_progress --complete--> completed
    pending, in_progress --cancel--> cancelled
    completed --undo--> pending
    pending --mark_overdue--> overdue

Anything else raises TransitionError.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from taskcadence.db.models import SchedulingPolicy, TaskInstance
from taskcadence.utils.constants import INSTANCE_TRANSITIONS, RESCHEDULABLE_STATUSES
from taskcadence.utils.errors import PolicyViolation, TransitionError


@dataclass(frozen=True)
class ActionAvailability:
    action: str
    available: bool
    reason: str | None = None


def can_transition(instance: TaskInstance, event: str) -> bool:
    sources, _ = INSTANCE_TRANSITIONS[event]
    return instance.status in sources


def _transition(instance: TaskInstance, event: str) -> str:
    sources, target = INSTANCE_TRANSITIONS[event]
    if instance.status not in sources:
        raise TransitionError(instance.status, event)
    previous = instance.status
    instance.status = target
    return previous


def start(instance: TaskInstance, now: datetime) -> None:
    _transition(instance, "start")
    instance.started_at = now
    instance.record_event("started", now)


def complete(instance: TaskInstance, now: datetime) -> None:
    """Complete the task; actual duration is only known when it was started."""
    previous = _transition(instance, "complete")
    instance.completed_at = now
    if instance.started_at is not None:
        instance.actual_duration = now - instance.started_at
    else:
        instance.actual_duration = None
    instance.record_event("completed", now, previous_status=previous)


def cancel(instance: TaskInstance, now: datetime, reason: str | None = None) -> None:
    previous = _transition(instance, "cancel")
    instance.cancelled_at = now
    instance.record_event("cancelled", now, previous_status=previous, reason=reason)


def undo(instance: TaskInstance, now: datetime) -> None:
    """Revert a completion back to pending."""
    _transition(instance, "undo")
    instance.started_at = None
    instance.completed_at = None
    instance.actual_duration = None
    instance.record_event("undone", now)


def mark_overdue(instance: TaskInstance, now: datetime) -> None:
    """System-driven: still pending after its scheduled time."""
    if instance.status == "pending" and now <= instance.scheduled_time:
        raise TransitionError(instance.status, "mark_overdue")
    _transition(instance, "mark_overdue")
    instance.record_event("overdue", now)


def reschedule_problem(
    instance: TaskInstance, new_time: datetime, policy: SchedulingPolicy
) -> str | None:
    """Why ``new_time`` is not an acceptable reschedule, or None if it is."""
    if instance.status not in RESCHEDULABLE_STATUSES:
        return f"Cannot reschedule a task that is {instance.status}"
    if not policy.allow_reschedule:
        return "Rescheduling is not allowed for this task"
    latest = instance.original_scheduled_time + timedelta(days=policy.max_delay_days)
    if new_time > latest:
        return f"Cannot delay more than {policy.max_delay_days} days"
    return None


def validate_reschedule(
    instance: TaskInstance, new_time: datetime, policy: SchedulingPolicy
) -> bool:
    return reschedule_problem(instance, new_time, policy) is None


def reschedule(
    instance: TaskInstance,
    new_time: datetime,
    policy: SchedulingPolicy,
    now: datetime,
    reason: str | None = None,
) -> None:
    """Move the instance, keeping its duration.

    Raises:
        TransitionError: instance is not pending or in progress
        PolicyViolation: rescheduling disabled or beyond the max delay;
            the instance is left untouched
    """
    if instance.status not in RESCHEDULABLE_STATUSES:
        raise TransitionError(instance.status, "reschedule")
    problem = reschedule_problem(instance, new_time, policy)
    if problem:
        raise PolicyViolation(problem)

    old_time = instance.scheduled_time
    delta = new_time - old_time
    instance.scheduled_time = new_time
    if instance.end_time is not None:
        instance.end_time = instance.end_time + delta
    instance.record_event(
        "rescheduled",
        now,
        old_time=old_time.isoformat(),
        new_time=new_time.isoformat(),
        reason=reason,
    )


def available_actions(
    instance: TaskInstance, policy: SchedulingPolicy
) -> list[ActionAvailability]:
    """Which user actions are possible right now, with reasons when not."""
    actions = []
    for event in ("start", "complete", "cancel", "undo"):
        if can_transition(instance, event):
            actions.append(ActionAvailability(event, True))
        else:
            actions.append(
                ActionAvailability(event, False, f"Cannot {event} a task that is {instance.status}")
            )

    if instance.status not in RESCHEDULABLE_STATUSES:
        actions.append(
            ActionAvailability("reschedule", False, f"Cannot reschedule a task that is {instance.status}")
        )
    elif not policy.allow_reschedule:
        actions.append(
            ActionAvailability("reschedule", False, "Rescheduling is not allowed for this task")
        )
    else:
        actions.append(ActionAvailability("reschedule", True))

    return actions
