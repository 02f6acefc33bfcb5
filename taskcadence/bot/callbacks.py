"""Callback query handlers for inline buttons."""

import logging
from datetime import timedelta
from html import escape

from telegram import Update
from telegram.ext import ContextTypes

from taskcadence.bot.formatters import format_instance
from taskcadence.bot.keyboards import instance_actions_keyboard
from taskcadence.service.scheduler import TaskSchedulingService
from taskcadence.utils.error_handler import describe_error
from taskcadence.utils.errors import SchedulingError
from taskcadence.utils.time_utils import format_duration

logger = logging.getLogger(__name__)


async def handle_done_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE, instance_id: str
) -> None:
    """Handle 'Done' button press."""
    service: TaskSchedulingService = context.bot_data["service"]
    instance = await service.complete(instance_id)

    if update.callback_query.message:
        await update.callback_query.message.edit_text(
            f"✓ <b>Completed:</b> <s>{escape(instance.title)}</s>",
            parse_mode="HTML",
            reply_markup=instance_actions_keyboard(instance_id, ["undo"]),
        )
    await update.callback_query.answer(f"✓ Marked {instance.title} as done!")


async def handle_dismiss_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE, instance_id: str, alert_id: str
) -> None:
    """Handle 'Dismiss' button press."""
    service: TaskSchedulingService = context.bot_data["service"]
    await service.dismiss_alert(instance_id, alert_id)

    if update.callback_query.message:
        await update.callback_query.message.edit_reply_markup(reply_markup=None)
    await update.callback_query.answer("Reminder dismissed")


async def handle_snooze_callback(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    instance_id: str,
    alert_id: str,
    minutes: int,
) -> None:
    """Handle 'Snooze' button press."""
    service: TaskSchedulingService = context.bot_data["service"]
    snooze_until = service.clock.now() + timedelta(minutes=minutes)
    await service.snooze_alert(instance_id, alert_id, snooze_until, reason="snooze button")

    if update.callback_query.message:
        await update.callback_query.message.edit_reply_markup(reply_markup=None)
    await update.callback_query.answer(f"⏸ Snoozed for {format_duration(minutes)}")


async def handle_lifecycle_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE, action: str, instance_id: str
) -> None:
    """Handle Start / Cancel / Undo buttons on a task detail view."""
    service: TaskSchedulingService = context.bot_data["service"]
    operations = {"start": service.start, "cancel": service.cancel, "undo": service.undo}
    instance = await operations[action](instance_id)

    if update.callback_query.message:
        available = [a.action for a in await service.available_actions(instance_id) if a.available]
        await update.callback_query.message.edit_text(
            format_instance(instance, service.clock.now()),
            parse_mode="HTML",
            reply_markup=instance_actions_keyboard(instance_id, available),
        )
    await update.callback_query.answer()


async def callback_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Route callback queries to the appropriate handler.

    Callback data formats:
        done:<instance_id>
        dismiss:<instance_id>:<alert_id>
        snooze:<instance_id>:<alert_id>:<minutes>
        start:<instance_id> / cancel:<instance_id> / undo:<instance_id>
    """
    query = update.callback_query
    if not query or not query.data:
        return

    parts = query.data.split(":")
    action = parts[0]

    try:
        if action == "done" and len(parts) == 2:
            await handle_done_callback(update, context, parts[1])
        elif action == "dismiss" and len(parts) == 3:
            await handle_dismiss_callback(update, context, parts[1], parts[2])
        elif action == "snooze" and len(parts) == 4:
            await handle_snooze_callback(update, context, parts[1], parts[2], int(parts[3]))
        elif action in ("start", "cancel", "undo") and len(parts) == 2:
            await handle_lifecycle_callback(update, context, action, parts[1])
        else:
            logger.warning(f"Unknown callback data: {query.data}")
            await query.answer("Unknown action")
    except SchedulingError as e:
        logger.info(f"Callback {query.data} rejected: {e}")
        # Alert popups are limited to 200 characters
        await query.answer(describe_error(e)[:200], show_alert=True)
