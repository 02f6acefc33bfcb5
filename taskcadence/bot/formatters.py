"""Message text formatters."""

from datetime import datetime
from html import escape

from taskcadence.db.models import TaskInstance, TaskTemplate
from taskcadence.engine.recurrence import describe_rule
from taskcadence.engine.reminders import UpcomingReminder, next_reminder
from taskcadence.utils.time_utils import format_relative_time, from_utc

STATUS_EMOJI = {
    "pending": "🔔",
    "in_progress": "▶",
    "completed": "✓",
    "cancelled": "✗",
    "overdue": "💥",
}


def format_reminder_message(instance: TaskInstance, text: str) -> str:
    """Wrap the reminder text for a Telegram message."""
    lines = ["🔔 <b>Reminder</b>\n", escape(text)]
    if instance.description:
        lines.append(f"\n{escape(instance.description)}")
    if instance.metadata.location:
        lines.append(f"📍 {escape(instance.metadata.location)}")
    return "\n".join(lines)


def format_instance(instance: TaskInstance, now: datetime) -> str:
    """Format a task instance as a message."""
    lines = [f"{STATUS_EMOJI.get(instance.status, '')} <b>{escape(instance.title)}</b>"]

    local = from_utc(instance.scheduled_time, instance.timezone)
    if instance.time_type == "allDay":
        when = local.strftime("%b %d, %Y")
    else:
        when = local.strftime("%b %d, %Y at %H:%M")
    relative = format_relative_time(instance.scheduled_time, now)
    lines.append(f"📅 {when} ({relative})")

    if instance.scheduled_time != instance.original_scheduled_time:
        original = from_utc(instance.original_scheduled_time, instance.timezone)
        lines.append(f"↪ Moved from {original.strftime('%b %d at %H:%M')}")

    upcoming = next_reminder(instance)
    if upcoming:
        fire_local = from_utc(upcoming.scheduled_time, instance.timezone)
        lines.append(f"⏰ Next reminder: {fire_local.strftime('%H:%M')}")

    if instance.reminder_status.global_snooze_count:
        lines.append(f"⏸ Snoozed {instance.reminder_status.global_snooze_count} times")

    return "\n".join(lines)


def format_upcoming(
    upcoming: list[UpcomingReminder], instances: dict[str, TaskInstance]
) -> str:
    """Format the reminders due soon."""
    if not upcoming:
        return "No reminders coming up."

    lines = [f"<b>Upcoming reminders ({len(upcoming)})</b>\n"]
    for reminder in upcoming:
        instance = instances.get(reminder.instance_id)
        if instance is None:
            continue
        fire_local = from_utc(reminder.fire_at, instance.timezone)
        lines.append(
            f"⏰ {fire_local.strftime('%H:%M')} <b>{escape(instance.title)}</b> "
            f"(in {reminder.minutes_until} min)"
        )
    return "\n".join(lines)


def format_template_list(templates: list[TaskTemplate]) -> str:
    if not templates:
        return "No active recurring tasks."

    lines = [f"<b>Recurring tasks ({len(templates)})</b>\n"]
    for template in templates:
        analytics = template.analytics
        lines.append(
            f"🔁 <b>{escape(template.title)}</b>: {describe_rule(template.time_config.recurrence)}\n"
            f"   {analytics.completed_instances}/{analytics.total_instances} done "
            f"({analytics.success_rate:.0f}%)"
        )
    return "\n\n".join(lines)


def format_welcome_message() -> str:
    """Format the welcome message for /start."""
    return """
<b>Welcome to TaskCadence!</b>

I turn your recurring tasks into scheduled occurrences and remind you before each one.

<b>Quick Start:</b>
• /upcoming - Reminders due in the next hour
• /tasks - Your recurring tasks
• /help - Full command list
""".strip()


def format_help_message() -> str:
    """Format the help message."""
    return """
<b>TaskCadence Commands</b>

/upcoming [minutes] - Reminders due soon (default: next 60 minutes)
/tasks - Active recurring tasks and their completion rate
/help - This message

<b>Reminder buttons:</b>
• ✓ Done - complete the task
• ✗ Dismiss - silence this reminder
• Snooze - remind me again later (limited per task)
""".strip()
