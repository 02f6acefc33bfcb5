"""Configuration management from environment variables."""

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from taskcadence.utils.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_TIMEZONE,
    GENERATION_HARD_CAP,
)

# Load .env file if it exists
load_dotenv()


def _int_list(value: str) -> list[int]:
    return [int(part) for part in value.split(",") if part.strip()]


class Config:
    """Application configuration loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_CHAT_ID: str = os.getenv("TELEGRAM_CHAT_ID", "")

    # Database
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "./data/taskcadence.db"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Scheduling
    DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", DEFAULT_TIMEZONE)
    GENERATION_HARD_CAP: int = int(os.getenv("GENERATION_HARD_CAP", str(GENERATION_HARD_CAP)))
    DEFAULT_BATCH_SIZE: int = int(os.getenv("DEFAULT_BATCH_SIZE", str(DEFAULT_BATCH_SIZE)))
    WORKING_HOURS_START: str = os.getenv("WORKING_HOURS_START", "09:00")
    WORKING_HOURS_END: str = os.getenv("WORKING_HOURS_END", "18:00")

    # Engine
    OVERDUE_SWEEP_INTERVAL: int = int(os.getenv("OVERDUE_SWEEP_INTERVAL", "300"))
    SNOOZE_OPTIONS: list[int] = _int_list(os.getenv("SNOOZE_OPTIONS", "10,60"))

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration."""
        if not cls.TELEGRAM_BOT_TOKEN:
            raise ValueError("TELEGRAM_BOT_TOKEN environment variable is required")

        if not cls.TELEGRAM_CHAT_ID:
            raise ValueError("TELEGRAM_CHAT_ID environment variable is required")

        try:
            ZoneInfo(cls.DEFAULT_TIMEZONE)
        except ZoneInfoNotFoundError:
            raise ValueError(f"Unknown DEFAULT_TIMEZONE: {cls.DEFAULT_TIMEZONE}")

        if cls.GENERATION_HARD_CAP < 1:
            raise ValueError("GENERATION_HARD_CAP must be at least 1")

        if any(minutes <= 0 for minutes in cls.SNOOZE_OPTIONS):
            raise ValueError("SNOOZE_OPTIONS must be positive minute values")

        # Ensure database directory exists
        cls.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
