"""Constants and default values."""

from typing import Literal

InstanceStatus = Literal["pending", "in_progress", "completed", "cancelled", "overdue"]
AlertStatus = Literal["pending", "triggered", "dismissed", "snoozed"]
TemplateStatus = Literal["draft", "active", "paused", "archived"]
RecurrenceType = Literal["none", "daily", "weekly", "monthly", "yearly", "custom"]
EndConditionType = Literal["never", "date", "count"]
TimeType = Literal["allDay", "timed", "timeRange"]

INSTANCE_STATUSES = ("pending", "in_progress", "completed", "cancelled", "overdue")
ALERT_STATUSES = ("pending", "triggered", "dismissed", "snoozed")
TEMPLATE_STATUSES = ("draft", "active", "paused", "archived")
RECURRENCE_TYPES = ("none", "daily", "weekly", "monthly", "yearly", "custom")

# Instance lifecycle: event -> (allowed source states, target state)
INSTANCE_TRANSITIONS: dict[str, tuple[tuple[str, ...], str]] = {
    "start": (("pending",), "in_progress"),
    "complete": (("pending", "in_progress"), "completed"),
    "cancel": (("pending", "in_progress"), "cancelled"),
    "undo": (("completed",), "pending"),
    "mark_overdue": (("pending",), "overdue"),
}

RESCHEDULABLE_STATUSES = ("pending", "in_progress")

# Alerts that still own a trigger registration
ARMED_ALERT_STATUSES = ("pending", "snoozed")

# Template lifecycle: event -> (allowed source states, target state)
TEMPLATE_TRANSITIONS: dict[str, tuple[tuple[str, ...], str]] = {
    "activate": (("draft", "paused"), "active"),
    "pause": (("active",), "paused"),
    "resume": (("paused",), "active"),
    "archive": (("draft", "active", "paused"), "archived"),
}

# Limits
GENERATION_HARD_CAP = 1000
DEFAULT_BATCH_SIZE = 30
EVENT_LOG_CAPACITY = 50
MAX_TITLE_LENGTH = 200

# Defaults
DEFAULT_TIMEZONE = "UTC"
DEFAULT_MAX_DELAY_DAYS = 7
DEFAULT_SNOOZE_INTERVAL_MINUTES = 10
DEFAULT_SNOOZE_MAX_COUNT = 3
DEFAULT_CONFLICT_DURATION_MINUTES = 60
DEFAULT_CATEGORY = "general"

TRIGGER_ID_PREFIX = "task-reminder"

WEEKDAY_SHORT_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
