"""Main entry point: tick loop driving the scheduler."""

import json
import logging
import os
import signal
import time

from adapters import build_adapters
from aggregator import Aggregator
from blocklist import BlockedItemRepository
from config import AppConfig, is_dry_run, load_config
from database import Database
from notifier import notify
from scheduler import Scheduler
from store import ResultStore
from watchlist import WatchRepository

logger = logging.getLogger(__name__)

_shutdown = False


def _handle_signal(signum, frame):
    global _shutdown
    logger.info("Received signal %d, shutting down gracefully...", signum)
    _shutdown = True


class JsonFormatter(logging.Formatter):
    """Structured JSON logging for production/observability."""

    def format(self, record):
        log_obj = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, ensure_ascii=False)


def setup_logging() -> None:
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    log_format = os.environ.get("LOG_FORMAT", "text").lower()
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.root.handlers = [handler]
        logging.root.setLevel(level)
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s",
        )


def build_scheduler(config: AppConfig, db: Database) -> Scheduler:
    repository = WatchRepository(db)
    store = ResultStore(db)
    aggregator = Aggregator(
        build_adapters(config.sources),
        default_timeout=config.source_timeout_seconds,
        blacklist=config.blacklist,
        blocked_items=BlockedItemRepository(db),
    )
    return Scheduler(
        repository,
        aggregator,
        store,
        config,
        notify_fn=lambda delta, watch: notify(delta, watch, config),
    )


def main():
    setup_logging()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    config_path = os.environ.get("CONFIG_PATH", "config.json")
    env_path = os.environ.get("ENV_PATH", ".env")
    db_path = os.environ.get("DB_PATH", "market_watch.db")

    config = load_config(config_path, env_path)
    if not config.sources:
        logger.warning("No sources configured, exiting")
        return

    db = Database(db_path)
    scheduler = build_scheduler(config, db)

    logger.info(
        "Starting tick loop (tick=%ds, default interval=%ds, dry_run=%s, %d source(s))",
        config.tick_seconds,
        config.poll_interval_seconds,
        is_dry_run(),
        len(config.sources),
    )

    try:
        while not _shutdown:
            scheduler.tick()
            # Sleep in short steps so signals are honoured promptly
            deadline = time.monotonic() + config.tick_seconds
            while not _shutdown and time.monotonic() < deadline:
                time.sleep(1)
    finally:
        scheduler.shutdown()
        db.close()
        logger.info("Shut down cleanly")


if __name__ == "__main__":
    main()
