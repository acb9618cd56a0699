"""Concurrent fan-out over source adapters with per-source isolation."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional

from adapters.base import BaseAdapter
from blocklist import BlockedItemRepository
from errors import AdapterError, StoreError
from filtering import filter_items
from models import CollectResult, Watch

logger = logging.getLogger(__name__)


class Aggregator:
    """Collects raw items for a watch from every enabled adapter.

    Never raises: source failures end up in ``CollectResult.errors``.
    """

    def __init__(
        self,
        adapters: list[BaseAdapter],
        default_timeout: float = 30.0,
        blacklist: Optional[list[str]] = None,
        blocked_items: Optional[BlockedItemRepository] = None,
    ):
        self._adapters = list(adapters)
        self._default_timeout = default_timeout
        self._blacklist = list(blacklist or [])
        self._blocked_items = blocked_items

    @property
    def source_names(self) -> list[str]:
        return [a.source_name for a in self._adapters]

    def enabled_adapters(self, watch: Watch) -> list[BaseAdapter]:
        """Adapters switched on for the watch; unlisted sites use the adapter default."""
        return [
            a for a in self._adapters
            if watch.enabled_sites.get(a.source_name, a.enabled_by_default)
        ]

    def collect(self, watch: Watch) -> CollectResult:
        adapters = self.enabled_adapters(watch)
        result = CollectResult(sources=[a.source_name for a in adapters])
        if not adapters:
            logger.warning("Watch %s has no enabled sources", watch.id)
            return result

        # Not a context manager: leaving the block would wait on hung adapters
        executor = ThreadPoolExecutor(
            max_workers=len(adapters), thread_name_prefix=f"collect-{watch.id}"
        )
        try:
            start = time.monotonic()
            futures = {
                adapter.source_name: (adapter, executor.submit(_search, adapter, list(watch.terms)))
                for adapter in adapters
            }

            items = []
            for name, (adapter, future) in futures.items():
                timeout = adapter.timeout_seconds or self._default_timeout
                remaining = max(0.0, start + timeout - time.monotonic())
                try:
                    found = future.result(timeout=remaining)
                except Exception as e:
                    # A finished future re-raises the adapter's own TimeoutError
                    if isinstance(e, FutureTimeout) and not future.done():
                        future.cancel()
                        err = AdapterError(name, f"timed out after {timeout:g}s")
                    else:
                        err = AdapterError(name, f"{type(e).__name__}: {e}")
                    logger.warning("Source failed for watch %s: %s", watch.id, err)
                    result.errors[name] = str(err)
                    continue

                logger.debug("%s: %d raw item(s) for watch %s", name, len(found), watch.id)
                items.extend(found)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        result.items = filter_items(items, watch, self._blacklist, self._blocked_urls())
        if len(result.items) != len(items):
            logger.debug(
                "Watch %s: filtered %d of %d item(s)",
                watch.id,
                len(items) - len(result.items),
                len(items),
            )
        return result

    def _blocked_urls(self) -> set[str]:
        if self._blocked_items is None:
            return set()
        try:
            return self._blocked_items.blocked_urls()
        except StoreError as e:
            logger.warning("Could not read blocked items, not filtering by link: %s", e)
            return set()


def _search(adapter: BaseAdapter, terms: list[str]) -> list:
    # Lazy sequences are drained inside the worker so the timeout covers them
    return list(adapter.search(terms))
