"""Main entry point for the TaskCadence bot."""

import logging
import sys

from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes

from taskcadence.bot.callbacks import callback_router
from taskcadence.bot.handlers import help_command, start_command, tasks_command, upcoming_command
from taskcadence.bot.notifier import TelegramNotifier
from taskcadence.bot.trigger import JobQueueTrigger
from taskcadence.config import Config
from taskcadence.db.migrations import run_migrations
from taskcadence.db.repository import Repository
from taskcadence.engine.generator import GenerationOptions
from taskcadence.service.clock import SystemClock
from taskcadence.service.scheduler import TaskSchedulingService
from taskcadence.utils.error_handler import error_handler
from taskcadence.utils.errors import ExternalCollaboratorError

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, Config.LOG_LEVEL),
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


async def overdue_sweep_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Job callback marking missed tasks overdue."""
    service: TaskSchedulingService = context.bot_data["service"]
    try:
        await service.sweep_overdue()
    except ExternalCollaboratorError as e:
        logger.error(f"Overdue sweep failed: {e}")


async def post_init(application: Application) -> None:
    """Initialize bot resources after application is created."""
    await run_migrations(Config.DATABASE_PATH)

    repo = Repository(Config.DATABASE_PATH)
    await repo.connect()
    application.bot_data["repo"] = repo

    job_queue = application.job_queue
    if job_queue is None:
        raise RuntimeError("python-telegram-bot was installed without the job-queue extra")

    service = TaskSchedulingService(
        repo=repo,
        clock=SystemClock(),
        trigger=JobQueueTrigger(job_queue),
        notifier=TelegramNotifier(application.bot, Config.TELEGRAM_CHAT_ID, Config.SNOOZE_OPTIONS),
        options=GenerationOptions(
            hard_cap=Config.GENERATION_HARD_CAP,
            working_hours=(Config.WORKING_HOURS_START, Config.WORKING_HOURS_END),
        ),
        batch_size=Config.DEFAULT_BATCH_SIZE,
    )
    application.bot_data["service"] = service

    # Job queue registrations do not survive a restart
    try:
        await service.rearm_all()
    except ExternalCollaboratorError as e:
        logger.error(f"Startup re-arm failed: {e}")

    job_queue.run_repeating(
        overdue_sweep_job,
        interval=Config.OVERDUE_SWEEP_INTERVAL,
        first=10,
        name="overdue-sweep",
    )
    logger.info(f"Overdue sweep scheduled (interval: {Config.OVERDUE_SWEEP_INTERVAL}s)")

    logger.info("TaskCadence initialized successfully")


async def post_shutdown(application: Application) -> None:
    """Cleanup resources on shutdown."""
    repo: Repository = application.bot_data.get("repo")
    if repo:
        await repo.close()

    logger.info("TaskCadence shut down")


def main() -> None:
    """Start the bot."""
    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    application = (
        Application.builder()
        .token(Config.TELEGRAM_BOT_TOKEN)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    # Commands
    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("upcoming", upcoming_command))
    application.add_handler(CommandHandler("tasks", tasks_command))

    # Callback queries (buttons)
    application.add_handler(CallbackQueryHandler(callback_router))

    application.add_error_handler(error_handler)

    logger.info("Starting TaskCadence bot...")
    application.run_polling(allowed_updates=["message", "callback_query"])


if __name__ == "__main__":
    main()
