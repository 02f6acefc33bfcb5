"""Data models."""

from base64 import urlsafe_b64encode
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, ClassVar
from uuid import uuid4

from taskcadence.utils.constants import (
    ALERT_STATUSES,
    DEFAULT_CATEGORY,
    DEFAULT_MAX_DELAY_DAYS,
    DEFAULT_SNOOZE_INTERVAL_MINUTES,
    DEFAULT_SNOOZE_MAX_COUNT,
    DEFAULT_TIMEZONE,
    EVENT_LOG_CAPACITY,
    INSTANCE_STATUSES,
    RECURRENCE_TYPES,
    TEMPLATE_STATUSES,
    AlertStatus,
    EndConditionType,
    InstanceStatus,
    RecurrenceType,
    TemplateStatus,
)
from taskcadence.utils.errors import ValidationError
from taskcadence.utils.time_utils import format_datetime, parse_datetime


def new_id() -> str:
    """22-character URL-safe uuid4; two of them fit in chat callback data."""
    return urlsafe_b64encode(uuid4().bytes).rstrip(b"=").decode()


# Recurrence


@dataclass
class EndCondition:
    """When a recurrence stops."""

    type: EndConditionType = "never"
    end_date: datetime | None = None
    count: int | None = None


@dataclass
class RecurrenceConfig:
    """Optional snapping sets. Weekdays: 0 = Monday ... 6 = Sunday."""

    weekdays: list[int] = field(default_factory=list)
    month_days: list[int] = field(default_factory=list)
    months: list[int] = field(default_factory=list)


@dataclass
class RecurrenceRule:
    """Declarative repeat definition."""

    type: RecurrenceType = "none"
    interval: int = 1
    end_condition: EndCondition = field(default_factory=EndCondition)
    config: RecurrenceConfig | None = None


# Time config (tagged union keyed by ``type``)


@dataclass
class AllDayTime:
    """Whole-day task; ``start`` is local midnight."""

    start: datetime
    type: ClassVar[str] = "allDay"

    def span(self) -> timedelta | None:
        return timedelta(days=1)


@dataclass
class TimedTime:
    """Task at a point in time, optionally with an expected duration."""

    start: datetime
    duration_minutes: int | None = None
    type: ClassVar[str] = "timed"

    def span(self) -> timedelta | None:
        if self.duration_minutes:
            return timedelta(minutes=self.duration_minutes)
        return None


@dataclass
class TimeRangeTime:
    """Task occupying ``start`` to ``end``."""

    start: datetime
    end: datetime
    type: ClassVar[str] = "timeRange"

    def span(self) -> timedelta | None:
        return self.end - self.start


BaseTime = AllDayTime | TimedTime | TimeRangeTime


@dataclass
class TimeConfig:
    """When a template's occurrences happen."""

    base_time: BaseTime
    recurrence: RecurrenceRule = field(default_factory=RecurrenceRule)
    timezone: str = DEFAULT_TIMEZONE

    @property
    def type(self) -> str:
        return self.base_time.type


# Reminders


@dataclass
class RelativeTiming:
    """Fire ``minutes_before`` the instance's scheduled time."""

    minutes_before: int
    type: ClassVar[str] = "relative"


@dataclass
class AbsoluteTiming:
    """Fire at a fixed instant."""

    at: datetime
    type: ClassVar[str] = "absolute"


ReminderTiming = RelativeTiming | AbsoluteTiming


@dataclass
class ReminderAlert:
    """Template-level alert descriptor."""

    timing: ReminderTiming
    channel: str = "notification"
    message: str | None = None
    id: str = field(default_factory=new_id)


@dataclass
class SnoozePolicy:
    enabled: bool = True
    interval_minutes: int = DEFAULT_SNOOZE_INTERVAL_MINUTES
    max_count: int = DEFAULT_SNOOZE_MAX_COUNT


@dataclass
class ReminderConfig:
    enabled: bool = False
    alerts: list[ReminderAlert] = field(default_factory=list)
    snooze: SnoozePolicy = field(default_factory=SnoozePolicy)


@dataclass
class SchedulingPolicy:
    allow_reschedule: bool = True
    max_delay_days: int = DEFAULT_MAX_DELAY_DAYS
    skip_weekends: bool = False
    skip_holidays: bool = False
    working_hours_only: bool = False


@dataclass
class TaskMetadata:
    category: str = DEFAULT_CATEGORY
    tags: list[str] = field(default_factory=list)
    estimated_duration: int | None = None  # minutes
    importance: int = 3
    urgency: int = 3
    location: str | None = None


@dataclass
class KeyResultLink:
    """Link from a task to a goal's key result."""

    goal_id: str
    key_result_id: str
    increment_value: float = 1.0


# Template aggregate


@dataclass
class TemplateLifecycle:
    status: TemplateStatus = "draft"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    activated_at: datetime | None = None
    paused_at: datetime | None = None
    archived_at: datetime | None = None


@dataclass
class TemplateAnalytics:
    total_instances: int = 0
    completed_instances: int = 0
    success_rate: float = 0.0
    average_completion_minutes: float | None = None
    timed_completions: int = 0  # completions that contribute to the average
    last_instance_date: datetime | None = None


@dataclass
class TaskTemplate:
    """A repeating task definition."""

    title: str
    time_config: TimeConfig
    description: str | None = None
    reminder_config: ReminderConfig = field(default_factory=ReminderConfig)
    scheduling_policy: SchedulingPolicy = field(default_factory=SchedulingPolicy)
    metadata: TaskMetadata = field(default_factory=TaskMetadata)
    key_result_links: list[KeyResultLink] = field(default_factory=list)
    lifecycle: TemplateLifecycle = field(default_factory=TemplateLifecycle)
    analytics: TemplateAnalytics = field(default_factory=TemplateAnalytics)
    id: str = field(default_factory=new_id)
    version: int = 1

    @property
    def status(self) -> TemplateStatus:
        return self.lifecycle.status

    def touch(self, now: datetime) -> None:
        self.lifecycle.updated_at = now
        self.version += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "time_config": _time_config_to_dict(self.time_config),
            "reminder_config": _reminder_config_to_dict(self.reminder_config),
            "scheduling_policy": vars(self.scheduling_policy).copy(),
            "metadata": {**vars(self.metadata), "tags": list(self.metadata.tags)},
            "key_result_links": [vars(link).copy() for link in self.key_result_links],
            "lifecycle": {
                "status": self.lifecycle.status,
                "created_at": format_datetime(self.lifecycle.created_at),
                "updated_at": format_datetime(self.lifecycle.updated_at),
                "activated_at": format_datetime(self.lifecycle.activated_at),
                "paused_at": format_datetime(self.lifecycle.paused_at),
                "archived_at": format_datetime(self.lifecycle.archived_at),
            },
            "analytics": {
                "total_instances": self.analytics.total_instances,
                "completed_instances": self.analytics.completed_instances,
                "success_rate": self.analytics.success_rate,
                "average_completion_minutes": self.analytics.average_completion_minutes,
                "timed_completions": self.analytics.timed_completions,
                "last_instance_date": format_datetime(self.analytics.last_instance_date),
            },
            "version": self.version,
        }

    @classmethod
    def from_persistence(cls, data: dict[str, Any]) -> "TaskTemplate":
        """Rebuild a template from a stored row, re-validating invariants."""
        lifecycle = data.get("lifecycle") or {}
        status = lifecycle.get("status", "draft")
        if status not in TEMPLATE_STATUSES:
            raise ValidationError([("lifecycle.status", f"Unknown template status: {status}")])

        analytics = data.get("analytics") or {}
        if analytics.get("completed_instances", 0) > analytics.get("total_instances", 0):
            raise ValidationError(
                [("analytics", "completed_instances exceeds total_instances")]
            )

        metadata = data.get("metadata") or {}
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description"),
            time_config=_time_config_from_dict(data["time_config"]),
            reminder_config=_reminder_config_from_dict(data.get("reminder_config") or {}),
            scheduling_policy=SchedulingPolicy(**(data.get("scheduling_policy") or {})),
            metadata=TaskMetadata(**metadata),
            key_result_links=[KeyResultLink(**link) for link in data.get("key_result_links", [])],
            lifecycle=TemplateLifecycle(
                status=status,
                created_at=parse_datetime(lifecycle.get("created_at")),
                updated_at=parse_datetime(lifecycle.get("updated_at")),
                activated_at=parse_datetime(lifecycle.get("activated_at")),
                paused_at=parse_datetime(lifecycle.get("paused_at")),
                archived_at=parse_datetime(lifecycle.get("archived_at")),
            ),
            analytics=TemplateAnalytics(
                total_instances=analytics.get("total_instances", 0),
                completed_instances=analytics.get("completed_instances", 0),
                success_rate=analytics.get("success_rate", 0.0),
                average_completion_minutes=analytics.get("average_completion_minutes"),
                timed_completions=analytics.get("timed_completions", 0),
                last_instance_date=parse_datetime(analytics.get("last_instance_date")),
            ),
            version=data.get("version", 1),
        )


# Instance aggregate


@dataclass
class SnoozeEntry:
    snoozed_at: datetime
    snooze_until: datetime
    reason: str | None = None


@dataclass
class ReminderStatusAlert:
    """Instance-level reminder alert with its own state."""

    alert: ReminderAlert
    scheduled_time: datetime
    status: AlertStatus = "pending"
    triggered_at: datetime | None = None
    dismissed_at: datetime | None = None
    snooze_history: list[SnoozeEntry] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.alert.id


@dataclass
class ReminderStatus:
    enabled: bool = False
    alerts: list[ReminderStatusAlert] = field(default_factory=list)
    global_snooze_count: int = 0
    last_triggered_at: datetime | None = None

    def find(self, alert_id: str) -> ReminderStatusAlert | None:
        for alert in self.alerts:
            if alert.id == alert_id:
                return alert
        return None


@dataclass
class LifecycleEvent:
    type: str
    timestamp: datetime
    alert_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def _event_log(events=()) -> deque:
    return deque(events, maxlen=EVENT_LOG_CAPACITY)


@dataclass
class TaskInstance:
    """A single concrete occurrence of a template.

    ``template_id`` is a plain id; an instance never holds its template.
    """

    template_id: str
    title: str
    scheduled_time: datetime
    original_scheduled_time: datetime | None = None
    time_type: str = "timed"
    timezone: str = DEFAULT_TIMEZONE
    description: str | None = None
    end_time: datetime | None = None
    status: InstanceStatus = "pending"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    actual_duration: timedelta | None = None
    reminder_status: ReminderStatus = field(default_factory=ReminderStatus)
    events: deque = field(default_factory=_event_log)
    metadata: TaskMetadata = field(default_factory=TaskMetadata)
    key_result_links: list[KeyResultLink] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: str = field(default_factory=new_id)
    version: int = 1

    def __post_init__(self) -> None:
        if self.original_scheduled_time is None:
            self.original_scheduled_time = self.scheduled_time
        if not isinstance(self.events, deque) or self.events.maxlen != EVENT_LOG_CAPACITY:
            self.events = _event_log(self.events)

    def record_event(
        self,
        event_type: str,
        timestamp: datetime,
        alert_id: str | None = None,
        **details: Any,
    ) -> LifecycleEvent:
        """Append to the bounded event log; the oldest entry drops out first."""
        event = LifecycleEvent(event_type, timestamp, alert_id, details)
        self.events.append(event)
        self.updated_at = timestamp
        self.version += 1
        return event

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "title": self.title,
            "description": self.description,
            "time_type": self.time_type,
            "timezone": self.timezone,
            "scheduled_time": format_datetime(self.scheduled_time),
            "original_scheduled_time": format_datetime(self.original_scheduled_time),
            "end_time": format_datetime(self.end_time),
            "status": self.status,
            "started_at": format_datetime(self.started_at),
            "completed_at": format_datetime(self.completed_at),
            "cancelled_at": format_datetime(self.cancelled_at),
            "actual_duration_seconds": (
                self.actual_duration.total_seconds() if self.actual_duration is not None else None
            ),
            "reminder_status": {
                "enabled": self.reminder_status.enabled,
                "global_snooze_count": self.reminder_status.global_snooze_count,
                "last_triggered_at": format_datetime(self.reminder_status.last_triggered_at),
                "alerts": [_status_alert_to_dict(a) for a in self.reminder_status.alerts],
            },
            "events": [
                {
                    "type": e.type,
                    "timestamp": format_datetime(e.timestamp),
                    "alert_id": e.alert_id,
                    "details": e.details,
                }
                for e in self.events
            ],
            "metadata": {**vars(self.metadata), "tags": list(self.metadata.tags)},
            "key_result_links": [vars(link).copy() for link in self.key_result_links],
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "version": self.version,
        }

    @classmethod
    def from_persistence(cls, data: dict[str, Any]) -> "TaskInstance":
        """Rebuild an instance from a stored row, re-validating invariants."""
        status = data.get("status", "pending")
        if status not in INSTANCE_STATUSES:
            raise ValidationError([("status", f"Unknown instance status: {status}")])

        reminder = data.get("reminder_status") or {}
        snooze_count = reminder.get("global_snooze_count", 0)
        if snooze_count < 0:
            raise ValidationError([("reminder_status", "global_snooze_count is negative")])

        scheduled_time = parse_datetime(data["scheduled_time"])
        if scheduled_time is None:
            raise ValidationError([("scheduled_time", "missing")])

        duration = data.get("actual_duration_seconds")
        return cls(
            id=data["id"],
            template_id=data["template_id"],
            title=data["title"],
            description=data.get("description"),
            time_type=data.get("time_type", "timed"),
            timezone=data.get("timezone", DEFAULT_TIMEZONE),
            scheduled_time=scheduled_time,
            original_scheduled_time=parse_datetime(data.get("original_scheduled_time")),
            end_time=parse_datetime(data.get("end_time")),
            status=status,
            started_at=parse_datetime(data.get("started_at")),
            completed_at=parse_datetime(data.get("completed_at")),
            cancelled_at=parse_datetime(data.get("cancelled_at")),
            actual_duration=timedelta(seconds=duration) if duration is not None else None,
            reminder_status=ReminderStatus(
                enabled=reminder.get("enabled", False),
                global_snooze_count=snooze_count,
                last_triggered_at=parse_datetime(reminder.get("last_triggered_at")),
                alerts=[_status_alert_from_dict(a) for a in reminder.get("alerts", [])],
            ),
            # Older rows may hold more events than the log keeps
            events=_event_log(
                LifecycleEvent(
                    type=e["type"],
                    timestamp=parse_datetime(e["timestamp"]),
                    alert_id=e.get("alert_id"),
                    details=e.get("details") or {},
                )
                for e in data.get("events", [])
            ),
            metadata=TaskMetadata(**(data.get("metadata") or {})),
            key_result_links=[KeyResultLink(**link) for link in data.get("key_result_links", [])],
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            version=data.get("version", 1),
        )


# Serialization helpers


def _rule_to_dict(rule: RecurrenceRule) -> dict[str, Any]:
    return {
        "type": rule.type,
        "interval": rule.interval,
        "end_condition": {
            "type": rule.end_condition.type,
            "end_date": format_datetime(rule.end_condition.end_date),
            "count": rule.end_condition.count,
        },
        "config": (
            {
                "weekdays": list(rule.config.weekdays),
                "month_days": list(rule.config.month_days),
                "months": list(rule.config.months),
            }
            if rule.config
            else None
        ),
    }


def _rule_from_dict(data: dict[str, Any]) -> RecurrenceRule:
    rule_type = data.get("type", "none")
    if rule_type not in RECURRENCE_TYPES:
        raise ValidationError([("recurrence.type", f"Unknown recurrence type: {rule_type}")])

    end = data.get("end_condition") or {}
    config = data.get("config")
    return RecurrenceRule(
        type=rule_type,
        interval=data.get("interval", 1),
        end_condition=EndCondition(
            type=end.get("type", "never"),
            end_date=parse_datetime(end.get("end_date")),
            count=end.get("count"),
        ),
        config=RecurrenceConfig(**config) if config else None,
    )


def _time_config_to_dict(config: TimeConfig) -> dict[str, Any]:
    base = config.base_time
    data: dict[str, Any] = {
        "type": base.type,
        "start": format_datetime(base.start),
        "timezone": config.timezone,
        "recurrence": _rule_to_dict(config.recurrence),
    }
    if isinstance(base, TimeRangeTime):
        data["end"] = format_datetime(base.end)
    elif isinstance(base, TimedTime):
        data["duration_minutes"] = base.duration_minutes
    return data


def _time_config_from_dict(data: dict[str, Any]) -> TimeConfig:
    kind = data.get("type")
    start = parse_datetime(data.get("start"))
    if start is None:
        raise ValidationError([("time_config.start", "missing")])

    if kind == "allDay":
        base: BaseTime = AllDayTime(start=start)
    elif kind == "timed":
        base = TimedTime(start=start, duration_minutes=data.get("duration_minutes"))
    elif kind == "timeRange":
        end = parse_datetime(data.get("end"))
        if end is None:
            raise ValidationError([("time_config.end", "timeRange requires an end time")])
        base = TimeRangeTime(start=start, end=end)
    else:
        raise ValidationError([("time_config.type", f"Unknown time config type: {kind}")])

    return TimeConfig(
        base_time=base,
        recurrence=_rule_from_dict(data.get("recurrence") or {}),
        timezone=data.get("timezone", DEFAULT_TIMEZONE),
    )


def _alert_to_dict(alert: ReminderAlert) -> dict[str, Any]:
    timing = alert.timing
    return {
        "id": alert.id,
        "channel": alert.channel,
        "message": alert.message,
        "timing": (
            {"type": "relative", "minutes_before": timing.minutes_before}
            if isinstance(timing, RelativeTiming)
            else {"type": "absolute", "at": format_datetime(timing.at)}
        ),
    }


def _alert_from_dict(data: dict[str, Any]) -> ReminderAlert:
    timing = data.get("timing") or {}
    if timing.get("type") == "relative":
        parsed: ReminderTiming = RelativeTiming(minutes_before=timing.get("minutes_before", 0))
    elif timing.get("type") == "absolute":
        at = parse_datetime(timing.get("at"))
        if at is None:
            raise ValidationError([("alert.timing", "absolute timing without a time")])
        parsed = AbsoluteTiming(at=at)
    else:
        raise ValidationError([("alert.timing", f"Unknown timing type: {timing.get('type')}")])

    return ReminderAlert(
        id=data["id"],
        timing=parsed,
        channel=data.get("channel", "notification"),
        message=data.get("message"),
    )


def _reminder_config_to_dict(config: ReminderConfig) -> dict[str, Any]:
    return {
        "enabled": config.enabled,
        "alerts": [_alert_to_dict(a) for a in config.alerts],
        "snooze": vars(config.snooze).copy(),
    }


def _reminder_config_from_dict(data: dict[str, Any]) -> ReminderConfig:
    return ReminderConfig(
        enabled=data.get("enabled", False),
        alerts=[_alert_from_dict(a) for a in data.get("alerts", [])],
        snooze=SnoozePolicy(**(data.get("snooze") or {})),
    )


def _status_alert_to_dict(alert: ReminderStatusAlert) -> dict[str, Any]:
    return {
        "alert": _alert_to_dict(alert.alert),
        "status": alert.status,
        "scheduled_time": format_datetime(alert.scheduled_time),
        "triggered_at": format_datetime(alert.triggered_at),
        "dismissed_at": format_datetime(alert.dismissed_at),
        "snooze_history": [
            {
                "snoozed_at": format_datetime(s.snoozed_at),
                "snooze_until": format_datetime(s.snooze_until),
                "reason": s.reason,
            }
            for s in alert.snooze_history
        ],
    }


def _status_alert_from_dict(data: dict[str, Any]) -> ReminderStatusAlert:
    status = data.get("status", "pending")
    if status not in ALERT_STATUSES:
        raise ValidationError([("reminder_status.alerts", f"Unknown alert status: {status}")])

    return ReminderStatusAlert(
        alert=_alert_from_dict(data["alert"]),
        scheduled_time=parse_datetime(data["scheduled_time"]),
        status=status,
        triggered_at=parse_datetime(data.get("triggered_at")),
        dismissed_at=parse_datetime(data.get("dismissed_at")),
        snooze_history=[
            SnoozeEntry(
                snoozed_at=parse_datetime(s["snoozed_at"]),
                snooze_until=parse_datetime(s["snooze_until"]),
                reason=s.get("reason"),
            )
            for s in data.get("snooze_history", [])
        ],
    )
