"""Global error handler for the bot."""

import logging
import traceback

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from taskcadence.utils.errors import (
    ExternalCollaboratorError,
    NotFoundError,
    PolicyViolation,
    SchedulingError,
    TransitionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def describe_error(error: BaseException) -> str:
    """User-facing text for an error raised while handling an update."""
    if isinstance(error, PolicyViolation):
        return f"🚫 {error}"
    if isinstance(error, TransitionError):
        return f"❌ That action is not possible right now: the {error.subject} is {error.current}."
    if isinstance(error, ValidationError):
        return "❌ Invalid task configuration:\n" + "\n".join(
            f"• {message}" for _, message in error.problems
        )
    if isinstance(error, NotFoundError):
        return "❌ That task no longer exists."
    if isinstance(error, ExternalCollaboratorError):
        return "⚠️ Could not reach storage or the scheduler. Please try again in a moment."
    if isinstance(error, SchedulingError):
        return f"❌ {error}"

    if "Timeout" in str(error):
        return "⏱️ Request timed out.\n\nPlease try again in a moment."
    if "Network" in str(error):
        return "🌐 Network error.\n\nPlease check your connection and try again."
    return (
        "😅 Oops! Something went wrong.\n\n"
        "The error has been logged. Please try again or use /help for assistance."
    )


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle errors in the bot."""
    logger.error("Exception while handling an update:", exc_info=context.error)

    tb_list = traceback.format_exception(None, context.error, context.error.__traceback__)
    tb_string = "".join(tb_list)
    logger.debug(f"Traceback:\n{tb_string}")

    if isinstance(update, Update) and update.effective_message:
        try:
            await update.effective_message.reply_text(describe_error(context.error))
        except TelegramError as e:
            logger.error(f"Failed to send error message to user: {e}")
