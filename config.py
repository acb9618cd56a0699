"""Configuration loading and validation."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)


class ScheduleConfig(BaseModel):
    enabled_hours: list[int] = []
    timezone: str = "Asia/Tokyo"

    @field_validator("enabled_hours")
    @classmethod
    def valid_hours(cls, v: list[int]) -> list[int]:
        for hour in v:
            if not 0 <= hour <= 23:
                raise ValueError(f"enabled hour out of range: {hour}")
        return sorted(set(v))


class NotificationConfig(BaseModel):
    webhook_env: str = "DISCORD_WEBHOOK_URL"
    max_items_per_message: int = 10


class AppConfig(BaseModel):
    poll_interval_seconds: int = 3600
    tick_seconds: int = 60
    source_timeout_seconds: float = 30.0
    max_concurrent_watches: int = 8
    schedule: ScheduleConfig = ScheduleConfig()
    blacklist: list[str] = []
    sources: dict[str, Any] = {}
    notifications: NotificationConfig = NotificationConfig()


def load_config(
    config_path: str = "config.json",
    env_path: Optional[str] = ".env",
) -> AppConfig:
    """Load .env and config.json, return validated AppConfig."""
    if env_path:
        env_file = Path(env_path)
        if env_file.exists():
            load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_file) as f:
        raw = json.load(f)

    config = AppConfig(**raw)

    if not os.environ.get(config.notifications.webhook_env) and not is_dry_run():
        logger.warning(
            "Webhook env var %s is not set, notifications will be skipped",
            config.notifications.webhook_env,
        )

    return config


def get_webhook_url(config: AppConfig) -> Optional[str]:
    """Resolve the notification webhook URL from the environment."""
    env_var = config.notifications.webhook_env
    url = os.environ.get(env_var)
    if not url:
        logger.warning("Webhook env var %s is not set", env_var)
        return None
    return url


def is_dry_run() -> bool:
    """Check if DRY_RUN is enabled."""
    return os.environ.get("DRY_RUN", "false").lower() in ("true", "1", "yes")
