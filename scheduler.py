"""Per-watch run scheduling with mutual exclusion."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from aggregator import Aggregator
from config import AppConfig
from errors import AggregationPartialFailure, AggregationTotalFailure, StoreError
from models import IngestResult, Watch, utcnow
from store import ResultStore
from watchlist import WatchRepository

logger = logging.getLogger(__name__)

NotifyFn = Callable[[IngestResult, Watch], bool]


class WatchState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DISABLED = "disabled"


class Scheduler:
    """Starts due watches on a worker pool, never more than one run per watch.

    A failed run leaves ``last_run`` untouched so the watch is picked up
    again on the next tick.
    """

    def __init__(
        self,
        repository: WatchRepository,
        aggregator: Aggregator,
        store: ResultStore,
        config: AppConfig,
        notify_fn: Optional[NotifyFn] = None,
    ):
        self._repository = repository
        self._aggregator = aggregator
        self._store = store
        self._config = config
        self._notify = notify_fn
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, config.max_concurrent_watches), thread_name_prefix="watch"
        )
        self._running: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._closed = False

    def state_of(self, watch_id: str) -> WatchState:
        with self._lock:
            if watch_id in self._running:
                return WatchState.RUNNING
        watch = self._repository.get(watch_id)
        if watch is not None and not watch.active:
            return WatchState.DISABLED
        return WatchState.IDLE

    def running(self) -> list[str]:
        with self._lock:
            return list(self._running)

    def is_due(self, watch: Watch, now: Optional[datetime] = None) -> bool:
        if not watch.active:
            return False
        if watch.last_run is None:
            return True
        now = now or utcnow()
        interval = watch.poll_interval_seconds or self._config.poll_interval_seconds
        return now - watch.last_run >= timedelta(seconds=interval)

    def in_schedule_window(self, now: Optional[datetime] = None) -> bool:
        """True when no hours are configured or the local hour is enabled."""
        hours = self._config.schedule.enabled_hours
        if not hours:
            return True
        now = now or utcnow()
        local = now.astimezone(ZoneInfo(self._config.schedule.timezone))
        return local.hour in hours

    def tick(self, now: Optional[datetime] = None) -> list[str]:
        """Submit every due, idle, active watch. Returns the ids started."""
        if self._closed:
            return []
        now = now or utcnow()
        if not self.in_schedule_window(now):
            logger.debug("Outside scheduled hours, skipping tick")
            return []

        started = []
        for watch in self._repository.list_active():
            if not self.is_due(watch, now):
                continue
            with self._lock:
                if watch.id in self._running:
                    logger.debug("Watch %s still running, skipping", watch.id)
                    continue
                # A run may have finished and stamped last_run since list_active()
                fresh = self._repository.get(watch.id)
                if fresh is None or not self.is_due(fresh, now):
                    continue
                self._running[watch.id] = self._executor.submit(self._run_guarded, fresh)
            started.append(watch.id)

        if started:
            logger.info("Started %d watch run(s)", len(started))
        return started

    def _run_guarded(self, watch: Watch) -> Optional[IngestResult]:
        try:
            return self.run_watch(watch)
        except Exception:
            logger.exception("Unexpected error running watch %s", watch.id)
            return None
        finally:
            with self._lock:
                self._running.pop(watch.id, None)

    def run_watch(self, watch: Watch) -> Optional[IngestResult]:
        """Collect, ingest, stamp and notify for one watch.

        Returns the ingest delta, or None when the store rejected the batch.
        """
        logger.info("Running watch %s (%s)", watch.id, watch.name)
        collected = self._aggregator.collect(watch)
        status = collected.status

        if status == "failed":
            logger.error(
                "%s for watch %s: %s",
                AggregationTotalFailure.__name__,
                watch.id,
                collected.errors,
            )
        elif status == "partial":
            logger.warning(
                "%s for watch %s: %s",
                AggregationPartialFailure.__name__,
                watch.id,
                collected.errors,
            )

        try:
            delta = self._store.ingest(watch.id, collected.items)
        except StoreError as e:
            logger.error("Ingest failed for watch %s, will retry next tick: %s", watch.id, e)
            return None

        if status == "failed":
            # Remains due; retried on the next tick
            return delta

        try:
            self._repository.stamp_last_run(watch.id, utcnow(), len(collected.items))
        except StoreError as e:
            logger.error("Could not stamp last run for watch %s: %s", watch.id, e)

        if self._notify is not None and delta.new_items:
            try:
                if not self._notify(delta, watch):
                    logger.warning("Notification for watch %s was not delivered", watch.id)
            except Exception:
                logger.exception("Notifier raised for watch %s", watch.id)

        return delta

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the runs in flight right now have finished."""
        with self._lock:
            futures = list(self._running.values())
        _, pending = wait(futures, timeout=timeout)
        return not pending

    def shutdown(self) -> None:
        """Stop accepting runs and wait for in-flight ones to finish or fail."""
        self._closed = True
        with self._lock:
            in_flight = len(self._running)
        if in_flight:
            logger.info("Waiting for %d in-flight run(s)...", in_flight)
        self._executor.shutdown(wait=True)
