"""Command handlers."""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from taskcadence.bot.formatters import (
    format_help_message,
    format_template_list,
    format_upcoming,
    format_welcome_message,
)
from taskcadence.db.repository import Repository
from taskcadence.service.scheduler import TaskSchedulingService

logger = logging.getLogger(__name__)


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start command."""
    if not update.effective_user or not update.message:
        return

    logger.info(f"/start from {update.effective_user.id}")
    await update.message.reply_html(format_welcome_message())


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command."""
    if not update.message:
        return

    await update.message.reply_html(format_help_message())


async def upcoming_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /upcoming [minutes] - reminders that will fire soon."""
    if not update.message:
        return

    within = 60
    if context.args:
        try:
            within = int(context.args[0])
        except ValueError:
            await update.message.reply_text("Usage: /upcoming [minutes]")
            return
        if within <= 0:
            await update.message.reply_text("Minutes must be positive.")
            return

    service: TaskSchedulingService = context.bot_data["service"]
    upcoming = await service.upcoming_reminders(within_minutes=within)

    instances = {}
    for reminder in upcoming:
        if reminder.instance_id not in instances:
            instances[reminder.instance_id] = await service.get_instance(reminder.instance_id)

    await update.message.reply_html(format_upcoming(upcoming, instances))


async def tasks_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tasks - list active recurring tasks."""
    if not update.message:
        return

    repo: Repository = context.bot_data["repo"]
    templates = await repo.get_templates_by_status("active")
    await update.message.reply_html(format_template_list(templates))
