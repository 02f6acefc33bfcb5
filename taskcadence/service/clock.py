from datetime import datetime

from taskcadence.utils.time_utils import UTC


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)
