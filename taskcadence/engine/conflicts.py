"""Time overlap detection between instances."""

from datetime import datetime, timedelta

from taskcadence.db.models import TaskInstance
from taskcadence.utils.constants import DEFAULT_CONFLICT_DURATION_MINUTES


def occupied_window(instance: TaskInstance) -> tuple[datetime, datetime]:
    """Start and end of the time an instance blocks.

    Without an end time the estimated duration is used, falling back to an
    hour.
    """
    start = instance.scheduled_time
    if instance.end_time is not None:
        return start, instance.end_time
    minutes = instance.metadata.estimated_duration or DEFAULT_CONFLICT_DURATION_MINUTES
    return start, start + timedelta(minutes=minutes)


def overlaps(first: TaskInstance, second: TaskInstance) -> bool:
    start1, end1 = occupied_window(first)
    start2, end2 = occupied_window(second)
    return start1 < end2 and start2 < end1


def find_time_conflicts(
    existing: list[TaskInstance], candidate: TaskInstance
) -> list[TaskInstance]:
    """Active instances from ``existing`` that overlap ``candidate``."""
    return [
        instance
        for instance in existing
        if instance.id != candidate.id
        and instance.status not in ("completed", "cancelled")
        and overlaps(instance, candidate)
    ]
