"""Reminder delivery through Telegram."""

import logging

from telegram import Bot

from taskcadence.bot.formatters import format_reminder_message
from taskcadence.bot.keyboards import reminder_keyboard
from taskcadence.db.models import ReminderStatusAlert, TaskInstance

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sends triggered reminders to one chat with Done / Dismiss / Snooze buttons."""

    def __init__(self, bot: Bot, chat_id: int | str, snooze_options: list[int]):
        self.bot = bot
        self.chat_id = chat_id
        self.snooze_options = snooze_options

    async def notify(self, instance: TaskInstance, alert: ReminderStatusAlert, text: str) -> None:
        sent = await self.bot.send_message(
            chat_id=self.chat_id,
            text=format_reminder_message(instance, text),
            parse_mode="HTML",
            reply_markup=reminder_keyboard(instance.id, alert.id, self.snooze_options),
        )
        logger.info(f"Sent reminder {alert.id} for instance {instance.id} (message {sent.message_id})")
