"""Time and timezone utilities."""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

UTC = ZoneInfo("UTC")


def to_utc(dt: datetime, tz: str) -> datetime:
    """Convert a timezone-aware datetime to UTC."""
    if dt.tzinfo is None:
        # Assume it's in the given timezone
        dt = dt.replace(tzinfo=ZoneInfo(tz))
    return dt.astimezone(UTC)


def from_utc(dt: datetime, tz: str) -> datetime:
    """Convert a UTC datetime to the given timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(ZoneInfo(tz))


def to_epoch_ms(dt: datetime) -> int:
    """Canonical epoch-millisecond value of an aware datetime."""
    return int(dt.timestamp() * 1000)


def from_epoch_ms(value: int, tz: str = "UTC") -> datetime:
    """Build an aware datetime in ``tz`` from epoch milliseconds."""
    return datetime.fromtimestamp(value / 1000, tz=ZoneInfo(tz))


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string written by ``datetime.isoformat``."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def format_datetime(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def is_weekend(dt: datetime, tz: str) -> bool:
    """Saturday or Sunday in the given timezone."""
    return from_utc(dt, tz).weekday() >= 5


def local_date(dt: datetime, tz: str) -> date:
    return from_utc(dt, tz).date()


def is_within_hours(dt: datetime, start: str, end: str, tz: str) -> bool:
    """Check if a datetime falls within a daily HH:MM window.

    Args:
        dt: The datetime to check
        start: Window start in HH:MM format (24-hour)
        end: Window end in HH:MM format (24-hour)
        tz: Timezone the window is expressed in

    Returns:
        True if the local time is inside the window (inclusive)
    """
    local_time = from_utc(dt, tz).time()

    window_start = time.fromisoformat(start)
    window_end = time.fromisoformat(end)

    # Handle overnight windows (e.g., 22:00 to 06:00)
    if window_start <= window_end:
        return window_start <= local_time <= window_end
    else:
        return local_time >= window_start or local_time <= window_end


def format_duration(minutes: int) -> str:
    """Format minutes into a human-readable duration.

    Examples:
        15 -> "15 minutes"
        60 -> "1 hour"
        90 -> "1.5 hours"
        1440 -> "1 day"
    """
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    elif minutes < 1440:
        hours = minutes / 60
        if hours == int(hours):
            return f"{int(hours)} hour{'s' if hours != 1 else ''}"
        return f"{hours:.1f} hours"
    else:
        days = minutes / 1440
        if days == int(days):
            return f"{int(days)} day{'s' if days != 1 else ''}"
        return f"{days:.1f} days"


def format_relative_time(dt: datetime, now: datetime) -> str:
    """Format a datetime relative to now.

    Examples:
        "in 5 minutes"
        "in 2 hours"
        "tomorrow"
        "2 days overdue"
    """
    delta: timedelta = dt - now
    total_seconds = delta.total_seconds()

    if total_seconds < 0:
        abs_seconds = abs(total_seconds)
        if abs_seconds < 3600:
            minutes = int(abs_seconds / 60)
            return f"{minutes} minute{'s' if minutes != 1 else ''} overdue"
        elif abs_seconds < 86400:
            hours = int(abs_seconds / 3600)
            return f"{hours} hour{'s' if hours != 1 else ''} overdue"
        else:
            days = int(abs_seconds / 86400)
            return f"{days} day{'s' if days != 1 else ''} overdue"
    else:
        if total_seconds < 3600:
            minutes = int(total_seconds / 60)
            return f"in {minutes} minute{'s' if minutes != 1 else ''}"
        elif total_seconds < 86400:
            hours = int(total_seconds / 3600)
            return f"in {hours} hour{'s' if hours != 1 else ''}"
        elif total_seconds < 172800:  # 2 days
            return "tomorrow"
        else:
            days = int(total_seconds / 86400)
            return f"in {days} days"
