"""
Application Settings

Loads scraper, monitoring and Telegram settings from environment variables
(and a local .env file when present).
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

import pytz
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)

MONITORING_FREQUENCIES = {
    "every_5_minutes": "*/5 * * * *",
    "every_15_minutes": "*/15 * * * *",
    "every_30_minutes": "*/30 * * * *",
    "every_hour": "0 * * * *",
    "every_2_hours": "0 */2 * * *",
    "every_6_hours": "0 */6 * * *",
    "every_12_hours": "0 */12 * * *",
    "daily": "0 0 * * *",
}


def _env_int(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


def _env_bool(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in ("false", "0", "no", "off")


def resolve_schedule(value: str) -> str:
    """
    Turn a named frequency or a cron expression into a cron expression.

    Args:
        value (str): e.g. "every_hour" or "*/10 * * * *"

    Returns:
        str: A five-field cron expression

    Raises:
        ValueError: If the expression is not a valid crontab
    """
    expression = MONITORING_FREQUENCIES.get(value.strip(), value.strip())
    # Raises ValueError for malformed expressions
    CronTrigger.from_crontab(expression)
    return expression


@dataclass
class ScraperConfig:
    base_url: str = "https://peek.tg/search"
    timeout_ms: int = 30000
    retry_attempts: int = 3
    retry_delay_ms: int = 2000
    headless: bool = True
    user_agent: Optional[str] = DEFAULT_USER_AGENT
    item_link_base: str = "https://t.me/nft/"

    @classmethod
    def from_env(cls):
        return cls(
            base_url=os.getenv("CATALOG_BASE_URL", cls.base_url),
            timeout_ms=_env_int("PARSER_TIMEOUT_MS", cls.timeout_ms),
            retry_attempts=max(1, _env_int("PARSER_RETRY_ATTEMPTS", cls.retry_attempts)),
            retry_delay_ms=_env_int("PARSER_RETRY_DELAY_MS", cls.retry_delay_ms),
            headless=_env_bool("PARSER_HEADLESS", True),
            user_agent=os.getenv("PARSER_USER_AGENT", DEFAULT_USER_AGENT),
            item_link_base=os.getenv("ITEM_LINK_BASE", cls.item_link_base),
        )


@dataclass
class MonitoringConfig:
    enabled: bool = True
    schedule: str = "*/1 * * * *"
    subscription_delay_ms: int = 1000
    notification_delay_ms: int = 1000
    confirmation_delay_ms: int = 1500
    confirmation_tolerance: int = 1
    max_plausible_count: int = 1_000_000
    jump_ratio: int = 100
    history_retention_days: int = 30
    results_url: str = "https://peek.tg/gifts"
    display_timezone: str = "UTC"

    @classmethod
    def from_env(cls):
        schedule = os.getenv("MONITORING_CRON", cls.schedule)
        try:
            schedule = resolve_schedule(schedule)
        except ValueError:
            logger.warning(f"Invalid MONITORING_CRON {schedule!r}, using {cls.schedule}")
            schedule = cls.schedule

        display_timezone = os.getenv("DISPLAY_TIMEZONE", cls.display_timezone)
        try:
            pytz.timezone(display_timezone)
        except pytz.UnknownTimeZoneError:
            logger.warning(f"Unknown DISPLAY_TIMEZONE {display_timezone!r}, using {cls.display_timezone}")
            display_timezone = cls.display_timezone

        return cls(
            enabled=_env_bool("MONITORING_ENABLED", True),
            schedule=schedule,
            subscription_delay_ms=_env_int("MONITORING_SUBSCRIPTION_DELAY_MS", cls.subscription_delay_ms),
            notification_delay_ms=_env_int("MONITORING_NOTIFICATION_DELAY_MS", cls.notification_delay_ms),
            confirmation_delay_ms=_env_int("CONFIRMATION_DELAY_MS", cls.confirmation_delay_ms),
            confirmation_tolerance=_env_int("CONFIRMATION_TOLERANCE", cls.confirmation_tolerance),
            max_plausible_count=_env_int("PLAUSIBILITY_MAX_COUNT", cls.max_plausible_count),
            jump_ratio=_env_int("PLAUSIBILITY_JUMP_RATIO", cls.jump_ratio),
            history_retention_days=_env_int("HISTORY_RETENTION_DAYS", cls.history_retention_days),
            results_url=os.getenv("CATALOG_RESULTS_URL", cls.results_url),
            display_timezone=display_timezone,
        )


@dataclass
class TelegramConfig:
    bot_token: Optional[str] = None
    api_url: str = "https://api.telegram.org"
    request_timeout: int = 15

    @classmethod
    def from_env(cls):
        return cls(
            bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            api_url=os.getenv("TELEGRAM_API_URL", cls.api_url),
            request_timeout=_env_int("TELEGRAM_TIMEOUT", cls.request_timeout),
        )
