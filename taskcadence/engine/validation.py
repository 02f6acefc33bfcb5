"""Validation of time configs, recurrence rules and templates.

The ``*_problems`` functions return ``(field, message)`` pairs and never
raise; the ``validate_*`` wrappers raise ``ValidationError`` when any
problem is found.
"""

from calendar import monthrange
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from taskcadence.db.models import (
    AbsoluteTiming,
    RecurrenceRule,
    RelativeTiming,
    TaskTemplate,
    TimeConfig,
    TimeRangeTime,
)
from taskcadence.utils.constants import MAX_TITLE_LENGTH, RECURRENCE_TYPES
from taskcadence.utils.errors import ValidationError

Problems = list[tuple[str, str]]


def _is_naive(dt: datetime) -> bool:
    return dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None


def rule_problems(rule: RecurrenceRule, base_start: datetime) -> Problems:
    """Check a recurrence rule against the series start.

    A zero or negative interval is not a problem: it is normalized to 1.
    """
    problems: Problems = []

    if rule.type not in RECURRENCE_TYPES:
        problems.append(("recurrence.type", f"Unknown recurrence type: {rule.type}"))

    end = rule.end_condition
    if end.type == "date":
        if end.end_date is None:
            problems.append(("recurrence.end_condition", "Date end condition requires an end date"))
        elif _is_naive(end.end_date):
            problems.append(("recurrence.end_condition", "End date must be timezone-aware"))
        elif not _is_naive(base_start) and end.end_date < base_start:
            problems.append(
                ("recurrence.end_condition", "End date is before the first occurrence")
            )
    elif end.type == "count":
        if end.count is None or end.count < 1:
            problems.append(("recurrence.end_condition", "Count must be at least 1"))
    elif end.type != "never":
        problems.append(("recurrence.end_condition", f"Unknown end condition: {end.type}"))

    config = rule.config
    if config:
        if any(not 0 <= d <= 6 for d in config.weekdays):
            problems.append(("recurrence.config.weekdays", "Weekdays must be between 0 and 6"))
        if any(not 1 <= d <= 31 for d in config.month_days):
            problems.append(("recurrence.config.month_days", "Month days must be between 1 and 31"))
        if any(not 1 <= m <= 12 for m in config.months):
            problems.append(("recurrence.config.months", "Months must be between 1 and 12"))
        elif rule.type == "custom" and not _has_calendar_date(config.months, config.month_days):
            problems.append(
                ("recurrence.config", "No calendar date matches the configured months and days")
            )

    return problems


def _has_calendar_date(months: list[int], month_days: list[int]) -> bool:
    if not month_days:
        return True
    # 2000 is a leap year, so Feb 29 counts as reachable
    return any(
        day <= monthrange(2000, month)[1]
        for month in (months or range(1, 13))
        for day in month_days
    )


def time_config_problems(config: TimeConfig) -> Problems:
    problems: Problems = []
    base = config.base_time

    if _is_naive(base.start):
        problems.append(("time_config.start", "Start time must be timezone-aware"))

    try:
        ZoneInfo(config.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        problems.append(("time_config.timezone", f"Unknown timezone: {config.timezone}"))

    if isinstance(base, TimeRangeTime):
        if base.end is None:
            problems.append(("time_config.end", "Time range requires an end time"))
        elif _is_naive(base.end):
            problems.append(("time_config.end", "End time must be timezone-aware"))
        elif not _is_naive(base.start) and base.end <= base.start:
            problems.append(("time_config.end", "End time must be after start time"))

    problems.extend(rule_problems(config.recurrence, base.start))
    return problems


def template_problems(template: TaskTemplate) -> Problems:
    """Collect every configuration problem of a template."""
    problems: Problems = []

    if not template.title or not template.title.strip():
        problems.append(("title", "Title cannot be empty"))
    elif len(template.title) > MAX_TITLE_LENGTH:
        problems.append(("title", f"Title is longer than {MAX_TITLE_LENGTH} characters"))

    problems.extend(time_config_problems(template.time_config))

    reminders = template.reminder_config
    if reminders.enabled and not reminders.alerts:
        problems.append(("reminder_config", "Enabled reminders need at least one alert"))
    for alert in reminders.alerts:
        timing = alert.timing
        if isinstance(timing, RelativeTiming) and timing.minutes_before < 0:
            problems.append(("reminder_config.alerts", f"Alert {alert.id}: minutes_before is negative"))
        elif isinstance(timing, AbsoluteTiming) and _is_naive(timing.at):
            problems.append(("reminder_config.alerts", f"Alert {alert.id}: time must be timezone-aware"))
    if reminders.snooze.max_count < 0:
        problems.append(("reminder_config.snooze", "Snooze max count cannot be negative"))
    if reminders.snooze.interval_minutes <= 0:
        problems.append(("reminder_config.snooze", "Snooze interval must be positive"))

    if template.scheduling_policy.max_delay_days < 0:
        problems.append(("scheduling_policy", "max_delay_days cannot be negative"))

    duration = template.metadata.estimated_duration
    if duration is not None and duration <= 0:
        problems.append(("metadata.estimated_duration", "Estimated duration must be positive"))

    return problems


def validate_time_config(config: TimeConfig) -> None:
    problems = time_config_problems(config)
    if problems:
        raise ValidationError(problems)


def validate_template(template: TaskTemplate) -> None:
    problems = template_problems(template)
    if problems:
        raise ValidationError(problems)


def validate_rule(rule: RecurrenceRule, base_start: datetime) -> None:
    problems = rule_problems(rule, base_start)
    if problems:
        raise ValidationError(problems)
