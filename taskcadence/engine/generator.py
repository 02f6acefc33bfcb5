"""Materialize task instances from a template's recurrence rule."""

from collections.abc import Collection, Iterator
from dataclasses import dataclass, field, replace
from datetime import date, datetime

from taskcadence.db.models import ReminderStatus, TaskInstance, TaskTemplate
from taskcadence.engine.recurrence import next_occurrence, normalize_rule
from taskcadence.engine.validation import validate_time_config
from taskcadence.utils.constants import GENERATION_HARD_CAP
from taskcadence.utils.time_utils import is_weekend, is_within_hours, local_date


@dataclass(frozen=True)
class GenerationOptions:
    """Knobs the caller controls; the template's policy supplies the flags."""

    hard_cap: int = GENERATION_HARD_CAP
    holidays: Collection[date] = field(default_factory=frozenset)
    working_hours: tuple[str, str] = ("09:00", "18:00")


def create_instance(
    template: TaskTemplate, scheduled_time: datetime, now: datetime | None = None
) -> TaskInstance:
    """Create a single pending instance of ``template`` at ``scheduled_time``.

    Template metadata is copied; the reminder alert list starts empty and is
    filled by the reminder planner.
    """
    span = template.time_config.base_time.span()
    end_time = scheduled_time + span if span is not None else None

    return TaskInstance(
        template_id=template.id,
        title=template.title,
        description=template.description,
        time_type=template.time_config.type,
        timezone=template.time_config.timezone,
        scheduled_time=scheduled_time,
        end_time=end_time,
        status="pending",
        reminder_status=ReminderStatus(enabled=template.reminder_config.enabled),
        metadata=replace(template.metadata, tags=list(template.metadata.tags)),
        key_result_links=[replace(link) for link in template.key_result_links],
        created_at=now,
        updated_at=now,
    )


def iter_occurrences(
    template: TaskTemplate, cursor: datetime, hard_cap: int = GENERATION_HARD_CAP
) -> Iterator[datetime]:
    """Yield the rule's occurrences at or after ``cursor``.

    Stops at the rule's own end conditions and after ``hard_cap`` occurrences
    so that even pathological rules terminate.
    """
    time_config = template.time_config
    base = time_config.base_time.start
    rule = normalize_rule(time_config.recurrence)
    end = rule.end_condition
    count_limit = end.count if end.type == "count" and end.count else None

    # The count end condition counts from the series start, not from the cursor
    produced = 0
    if count_limit is not None and cursor > base:
        earlier = next_occurrence(base, rule, base, tz=time_config.timezone, inclusive=True)
        while earlier is not None and earlier < cursor and produced < count_limit:
            produced += 1
            earlier = next_occurrence(base, rule, earlier, tz=time_config.timezone)

    emitted = 0
    current = next_occurrence(base, rule, cursor, tz=time_config.timezone, inclusive=True)
    while current is not None and emitted < hard_cap:
        if count_limit is not None and produced >= count_limit:
            return
        yield current
        produced += 1
        emitted += 1
        current = next_occurrence(base, rule, current, tz=time_config.timezone)


def _passes_policy(template: TaskTemplate, when: datetime, options: GenerationOptions) -> bool:
    policy = template.scheduling_policy
    tz = template.time_config.timezone

    if policy.skip_weekends and is_weekend(when, tz):
        return False
    if policy.skip_holidays and local_date(when, tz) in options.holidays:
        return False
    if policy.working_hours_only and template.time_config.type != "allDay":
        start, end = options.working_hours
        if not is_within_hours(when, start, end, tz):
            return False
    return True


def by_count(
    template: TaskTemplate,
    max_instances: int,
    options: GenerationOptions | None = None,
    now: datetime | None = None,
    after: datetime | None = None,
) -> list[TaskInstance]:
    """Generate up to ``max_instances`` instances from the series start.

    Stops at the smaller of ``max_instances``, the rule's count end
    condition and the hard cap. Past occurrences are included unless
    ``after`` moves the cursor; skipped occurrences still count toward the
    rule's count.
    """
    options = options or GenerationOptions()
    validate_time_config(template.time_config)

    limit = min(max_instances, options.hard_cap)
    instances: list[TaskInstance] = []
    if limit <= 0:
        return instances

    cursor = template.time_config.base_time.start
    if after is not None and after > cursor:
        cursor = after
    for when in iter_occurrences(template, cursor, options.hard_cap):
        if not _passes_policy(template, when, options):
            continue
        instances.append(create_instance(template, when, now))
        if len(instances) >= limit:
            break

    return instances


def by_range(
    template: TaskTemplate,
    start: datetime,
    end: datetime,
    options: GenerationOptions | None = None,
    now: datetime | None = None,
) -> list[TaskInstance]:
    """Generate every instance with ``start <= scheduled_time <= end``.

    The cursor is seeded at ``max(base start, start)``. Past occurrences are
    included.
    """
    options = options or GenerationOptions()
    validate_time_config(template.time_config)

    instances: list[TaskInstance] = []
    if end < start:
        return instances

    cursor = max(template.time_config.base_time.start, start)
    for when in iter_occurrences(template, cursor, options.hard_cap):
        if when > end:
            break
        if not _passes_policy(template, when, options):
            continue
        instances.append(create_instance(template, when, now))

    return instances
