"""Template lifecycle and analytics counters."""

from datetime import datetime, timedelta

from taskcadence.db.models import TaskInstance, TaskTemplate
from taskcadence.utils.constants import TEMPLATE_TRANSITIONS
from taskcadence.utils.errors import TransitionError


def _transition(template: TaskTemplate, event: str, now: datetime) -> None:
    sources, target = TEMPLATE_TRANSITIONS[event]
    if template.lifecycle.status not in sources:
        raise TransitionError(template.lifecycle.status, event, "template")
    template.lifecycle.status = target  # type: ignore[assignment]
    template.touch(now)


def activate(template: TaskTemplate, now: datetime) -> None:
    _transition(template, "activate", now)
    template.lifecycle.activated_at = now


def pause(template: TaskTemplate, now: datetime) -> None:
    _transition(template, "pause", now)
    template.lifecycle.paused_at = now


def resume(template: TaskTemplate, now: datetime) -> None:
    _transition(template, "resume", now)
    template.lifecycle.activated_at = now
    template.lifecycle.paused_at = None


def archive(template: TaskTemplate, now: datetime) -> None:
    _transition(template, "archive", now)
    template.lifecycle.archived_at = now


def record_generated(template: TaskTemplate, instances: list[TaskInstance], now: datetime) -> None:
    """Count a freshly generated batch."""
    if not instances:
        return
    analytics = template.analytics
    analytics.total_instances += len(instances)
    latest = max(i.scheduled_time for i in instances)
    if analytics.last_instance_date is None or latest > analytics.last_instance_date:
        analytics.last_instance_date = latest
    _refresh_success_rate(template)
    template.touch(now)


def record_completed(template: TaskTemplate, instance: TaskInstance, now: datetime) -> None:
    analytics = template.analytics
    analytics.completed_instances += 1

    if instance.actual_duration is not None:
        minutes = instance.actual_duration.total_seconds() / 60
        timed = analytics.timed_completions
        previous_mean = analytics.average_completion_minutes or 0.0
        # Running mean over completions that have a duration
        analytics.average_completion_minutes = (previous_mean * timed + minutes) / (timed + 1)
        analytics.timed_completions = timed + 1

    _refresh_success_rate(template)
    template.touch(now)


def record_undone(template: TaskTemplate, duration: timedelta | None, now: datetime) -> None:
    """Revert a completion; ``duration`` is what the completion recorded."""
    analytics = template.analytics
    analytics.completed_instances = max(0, analytics.completed_instances - 1)

    if duration is not None and analytics.timed_completions > 0:
        timed = analytics.timed_completions
        if timed == 1:
            analytics.average_completion_minutes = None
        else:
            total = (analytics.average_completion_minutes or 0.0) * timed
            minutes = duration.total_seconds() / 60
            analytics.average_completion_minutes = (total - minutes) / (timed - 1)
        analytics.timed_completions = timed - 1

    _refresh_success_rate(template)
    template.touch(now)


def record_removed(template: TaskTemplate, count: int, now: datetime) -> None:
    """Instances deleted without ever completing leave the totals."""
    analytics = template.analytics
    analytics.total_instances = max(analytics.completed_instances, analytics.total_instances - count)
    _refresh_success_rate(template)
    template.touch(now)


def _refresh_success_rate(template: TaskTemplate) -> None:
    analytics = template.analytics
    if analytics.total_instances > 0:
        analytics.success_rate = analytics.completed_instances / analytics.total_instances * 100
    else:
        analytics.success_rate = 0.0
