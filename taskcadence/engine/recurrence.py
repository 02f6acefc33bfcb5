"""Recurrence rule evaluation.

Pure functions: no I/O, no shared state. All calendar arithmetic runs on the
wall clock of the template timezone, so a daily 08:00 task stays at 08:00
across daylight-saving changes.
"""

from dataclasses import replace
from datetime import datetime, timedelta, tzinfo
from typing import Callable, Iterable
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, MO, WEEKLY, rrule

from taskcadence.db.models import RecurrenceConfig, RecurrenceRule
from taskcadence.utils.constants import WEEKDAY_SHORT_NAMES

Accept = Callable[[datetime], bool]

GREGORIAN_CYCLE_YEARS = 400


def normalize_rule(rule: RecurrenceRule) -> RecurrenceRule:
    """Return the rule with ``interval`` raised to at least 1."""
    if rule.interval >= 1:
        return rule
    return replace(rule, interval=1)


def next_occurrence(
    base: datetime,
    rule: RecurrenceRule,
    from_: datetime,
    *,
    tz: str | None = None,
    inclusive: bool = False,
) -> datetime | None:
    """Get the first occurrence of ``rule`` strictly after ``from_``.

    Args:
        base: First occurrence of the series (timezone-aware)
        rule: Recurrence rule; interval is normalized up to 1
        from_: Reference time (timezone-aware)
        tz: Timezone whose wall clock drives the arithmetic; defaults to base's
        inclusive: Also accept an occurrence equal to ``from_``

    Returns:
        Next occurrence, or None when the series is exhausted. The count end
        condition is not evaluated here; the generator tracks it.
    """
    rule = normalize_rule(rule)
    end = rule.end_condition

    if end.type == "date" and end.end_date is not None and from_ > end.end_date:
        return None

    def accept(candidate: datetime) -> bool:
        return candidate >= from_ if inclusive else candidate > from_

    if rule.type == "none":
        candidate = base if accept(base) else None
    else:
        zone: tzinfo = ZoneInfo(tz) if tz else base.tzinfo  # type: ignore[assignment]
        base_wall = base.astimezone(zone).replace(tzinfo=None)
        from_wall = from_.astimezone(zone).replace(tzinfo=None)

        def accept_wall(wall: datetime) -> bool:
            return accept(wall.replace(tzinfo=zone))

        finder = _FINDERS[rule.type]
        wall = finder(base_wall, from_wall, rule.interval, rule.config, accept_wall)
        candidate = wall.replace(tzinfo=zone) if wall is not None else None

    if (
        candidate is not None
        and end.type == "date"
        and end.end_date is not None
        and candidate > end.end_date
    ):
        return None

    return candidate


def _series_day_on_or_before(base: datetime, from_: datetime, interval: int) -> datetime:
    """Latest day of an every-``interval``-days series at or before ``from_``'s date."""
    offset_days = (from_.date() - base.date()).days
    return base + timedelta(days=interval * max(0, offset_days // interval))


def _first_accepted(candidates: Iterable[datetime], accept: Accept) -> datetime | None:
    for candidate in candidates:
        if accept(candidate):
            return candidate
    return None


def _next_daily(
    base: datetime, from_: datetime, interval: int, config: RecurrenceConfig | None, accept: Accept
) -> datetime | None:
    start = _series_day_on_or_before(base, from_, interval)
    return _first_accepted(rrule(DAILY, interval=interval, dtstart=start), accept)


def _next_weekly(
    base: datetime, from_: datetime, interval: int, config: RecurrenceConfig | None, accept: Accept
) -> datetime | None:
    weekdays = sorted({d for d in (config.weekdays if config else []) if 0 <= d <= 6})
    if not weekdays:
        weekdays = [base.weekday()]

    # Monday of the base week, at the base time of day
    anchor = base - timedelta(days=base.weekday())
    offset_weeks = (from_.date() - anchor.date()).days // 7
    period = max(0, offset_weeks // interval)
    start = anchor + timedelta(weeks=period * interval) if period else base

    weekly = rrule(WEEKLY, interval=interval, dtstart=start, byweekday=weekdays, wkst=MO)
    return _first_accepted(weekly, accept)


def _next_monthly(
    base: datetime, from_: datetime, interval: int, config: RecurrenceConfig | None, accept: Accept
) -> datetime:
    days = sorted({d for d in (config.month_days if config else []) if 1 <= d <= 31})
    if not days:
        days = [base.day]

    months_apart = (from_.year - base.year) * 12 + (from_.month - base.month)
    period = max(0, months_apart // interval)

    while True:
        month_start = base + relativedelta(months=period * interval, day=1)
        for day in days:
            # relativedelta clamps day 31 to the last day of shorter months
            candidate = month_start + relativedelta(day=day)
            if candidate >= base and accept(candidate):
                return candidate
        period += 1


def _next_yearly(
    base: datetime, from_: datetime, interval: int, config: RecurrenceConfig | None, accept: Accept
) -> datetime:
    months = sorted({m for m in (config.months if config else []) if 1 <= m <= 12})
    days = sorted({d for d in (config.month_days if config else []) if 1 <= d <= 31})
    months = months or [base.month]
    days = days or [base.day]

    period = max(0, (from_.year - base.year) // interval)

    while True:
        year_start = base + relativedelta(years=period * interval, month=1, day=1)
        for month in months:
            for day in days:
                candidate = year_start + relativedelta(month=month, day=day)
                if candidate >= base and accept(candidate):
                    return candidate
        period += 1


def _next_custom(
    base: datetime, from_: datetime, interval: int, config: RecurrenceConfig | None, accept: Accept
) -> datetime | None:
    config = config or RecurrenceConfig()
    start = _series_day_on_or_before(base, from_, interval)
    custom = rrule(
        DAILY,
        interval=interval,
        dtstart=start,
        byweekday=sorted(set(config.weekdays)) or None,
        bymonthday=sorted(set(config.month_days)) or None,
        bymonth=sorted(set(config.months)) or None,
        # Every reachable date and weekday combination recurs within one Gregorian cycle
        until=start + relativedelta(years=GREGORIAN_CYCLE_YEARS),
    )
    return _first_accepted(custom, accept)


_FINDERS = {
    "daily": _next_daily,
    "weekly": _next_weekly,
    "monthly": _next_monthly,
    "yearly": _next_yearly,
    "custom": _next_custom,
}


def describe_rule(rule: RecurrenceRule) -> str:
    """Build a human-readable description of a rule.

    Examples:
        daily, interval 1 -> "every day"
        weekly, interval 2, weekdays [0, 2] -> "every 2 weeks on Mon, Wed"
        monthly, count 3 -> "every month, 3 times"
    """
    rule = normalize_rule(rule)
    if rule.type == "none":
        return "does not repeat"

    units = {"daily": "day", "weekly": "week", "monthly": "month", "yearly": "year"}
    if rule.type in units:
        unit = units[rule.type]
        text = f"every {unit}" if rule.interval == 1 else f"every {rule.interval} {unit}s"
    else:
        text = "custom" if rule.interval == 1 else f"custom, every {rule.interval} days"

    config = rule.config
    if config and config.weekdays and rule.type in ("weekly", "custom"):
        names = [WEEKDAY_SHORT_NAMES[d] for d in sorted(set(config.weekdays)) if 0 <= d <= 6]
        text += f" on {', '.join(names)}"
    if config and config.month_days and rule.type in ("monthly", "yearly", "custom"):
        text += f" on day {', '.join(str(d) for d in sorted(set(config.month_days)))}"

    end = rule.end_condition
    if end.type == "date" and end.end_date:
        text += f", until {end.end_date.strftime('%Y-%m-%d')}"
    elif end.type == "count" and end.count:
        text += f", {end.count} time{'s' if end.count != 1 else ''}"

    return text
