"""Tests for chat message formatting and keyboards."""

from fakes import dt, make_template
from taskcadence.bot.formatters import format_instance, format_reminder_message, format_upcoming
from taskcadence.bot.keyboards import instance_actions_keyboard, reminder_keyboard
from taskcadence.engine.generator import create_instance
from taskcadence.engine.reminders import UpcomingReminder


def test_reminder_message_escapes_html():
    template = make_template(title="Fix <b> tags")
    instance = create_instance(template, dt(2024, 1, 1, 9))

    text = format_reminder_message(instance, 'Task "Fix <b> tags" starts now (09:00).')

    assert "Fix &lt;b&gt; tags" in text
    assert text.startswith("🔔 <b>Reminder</b>")


def test_format_instance_shows_local_time_and_move():
    template = make_template(timezone="Europe/Berlin")
    instance = create_instance(template, dt(2024, 1, 1, 9))
    instance.scheduled_time = dt(2024, 1, 2, 9)

    text = format_instance(instance, dt(2024, 1, 1, 8))

    assert "Jan 02, 2024 at 10:00" in text
    assert "Moved from Jan 01 at 10:00" in text


def test_format_upcoming():
    instance = create_instance(make_template(), dt(2024, 1, 1, 9))
    upcoming = [UpcomingReminder(instance.id, "a1", dt(2024, 1, 1, 8, 45), 15)]

    assert format_upcoming([], {}) == "No reminders coming up."
    text = format_upcoming(upcoming, {instance.id: instance})
    assert "08:45 <b>Stand-up</b> (in 15 min)" in text


def test_keyboard_callback_data_fits_limit():
    instance = create_instance(make_template(), dt(2024, 1, 1, 9))
    keyboard = reminder_keyboard(instance.id, "x" * 22, [10, 60])

    for row in keyboard.inline_keyboard:
        for button in row:
            assert len(button.callback_data.encode()) <= 64

    assert keyboard.inline_keyboard[1][0].callback_data == f"snooze:{instance.id}:{'x' * 22}:10"


def test_actions_keyboard_maps_complete_to_done():
    keyboard = instance_actions_keyboard("abc", ["start", "complete", "reschedule"])

    assert [b.callback_data for b in keyboard.inline_keyboard[0]] == ["start:abc", "done:abc"]
