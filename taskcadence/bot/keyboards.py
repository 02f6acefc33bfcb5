"""Inline keyboard builders."""

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from taskcadence.utils.time_utils import format_duration


def reminder_keyboard(
    instance_id: str, alert_id: str, snooze_options: list[int]
) -> InlineKeyboardMarkup:
    """Keyboard for reminder messages: Dismiss, Snooze options, Done."""
    snooze_row = [
        InlineKeyboardButton(
            f"Snooze {format_duration(minutes)}",
            callback_data=f"snooze:{instance_id}:{alert_id}:{minutes}",
        )
        for minutes in snooze_options
    ]
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton("✓ Done", callback_data=f"done:{instance_id}"),
                InlineKeyboardButton("✗ Dismiss", callback_data=f"dismiss:{instance_id}:{alert_id}"),
            ],
            snooze_row,
        ]
    )


def instance_actions_keyboard(instance_id: str, actions: list[str]) -> InlineKeyboardMarkup:
    """Keyboard for a task detail view, one button per available action."""
    buttons = {
        "start": ("▶ Start", "start"),
        "complete": ("✓ Done", "done"),
        "cancel": ("✗ Cancel", "cancel"),
        "undo": ("↺ Undo", "undo"),
    }
    row = [
        InlineKeyboardButton(buttons[action][0], callback_data=f"{buttons[action][1]}:{instance_id}")
        for action in actions
        if action in buttons
    ]
    return InlineKeyboardMarkup([row])
