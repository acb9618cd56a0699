"""Discord webhook notification for new items, with retry logic."""

import logging
import time

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import AppConfig, get_webhook_url, is_dry_run
from models import IngestResult, Watch

logger = logging.getLogger(__name__)

DISCORD_BLURPLE = 0x5865F2

# Global rate limit tracker: webhook_url -> timestamp when cooldown expires
_rate_limit_cooldowns: dict[str, float] = {}


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def build_embed(delta: IngestResult, watch: Watch, max_items: int = 10) -> dict:
    """Build a Discord embed summarizing the new items of one ingest."""
    count = len(delta.new_items)
    embed = {
        "title": _truncate(f"{watch.name}: {count} new item{'s' if count != 1 else ''}", 256),
        "color": DISCORD_BLURPLE,
        "fields": [],
        "footer": {"text": f"{delta.new_count} unread / {delta.total_count} total"},
    }

    # Discord caps an embed at 25 fields
    for item in delta.new_items[: min(max_items, 25)]:
        value = f"[{item.source}]({item.link})"
        if item.price:
            value = f"{item.price} · {value}"
        embed["fields"].append(
            {"name": _truncate(item.title or item.link, 256), "value": _truncate(value, 1024), "inline": False}
        )

    hidden = count - len(embed["fields"])
    if hidden > 0:
        embed["description"] = f"...and {hidden} more"

    return embed


class DiscordRateLimitError(Exception):
    """Raised on 429 to trigger retry."""

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(f"Rate limited, retry after {retry_after}s")


class DiscordServerError(Exception):
    """Raised on 5xx to trigger retry."""


def notify(delta: IngestResult, watch: Watch, config: AppConfig) -> bool:
    """Post the delta to Discord. Returns True on success or when nothing needed sending."""
    if not delta.new_items or not watch.notify:
        return True

    if is_dry_run():
        logger.info("[DRY RUN] Would notify %d new item(s) for %s", len(delta.new_items), watch.name)
        return True

    webhook_url = get_webhook_url(config)
    if not webhook_url:
        return False

    now = time.time()
    cooldown_until = _rate_limit_cooldowns.get(webhook_url, 0)
    if now < cooldown_until:
        # Still in cooldown, skip without blocking
        return False

    embed = build_embed(delta, watch, config.notifications.max_items_per_message)
    payload = {"embeds": [embed]}

    try:
        _send_with_retry(webhook_url, payload)
        return True
    except DiscordRateLimitError as e:
        _rate_limit_cooldowns[webhook_url] = now + e.retry_after
        logger.warning("Discord rate limited, cooldown until %s", time.ctime(now + e.retry_after))
        return False
    except Exception:
        logger.exception("Failed to send Discord notification for watch %s", watch.id)
        return False


@retry(
    retry=retry_if_exception_type(DiscordServerError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    reraise=True,
)
def _send_with_retry(webhook_url: str, payload: dict) -> None:
    """POST to Discord webhook with retry only on 5xx. Raises DiscordRateLimitError on 429."""
    resp = requests.post(webhook_url, json=payload, timeout=15)

    if resp.status_code == 429:
        # Prefer Retry-After header, fallback to JSON body or default
        if "Retry-After" in resp.headers:
            retry_after = float(resp.headers["Retry-After"])
        else:
            try:
                retry_after = resp.json().get("retry_after", 5)
            except ValueError:
                retry_after = 5
        raise DiscordRateLimitError(retry_after)

    if resp.status_code >= 500:
        logger.warning("Discord server error %d", resp.status_code)
        raise DiscordServerError(f"Status {resp.status_code}")

    resp.raise_for_status()
