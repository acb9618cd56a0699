"""Adapter for marketplaces that expose a JSON search endpoint."""

import logging
from typing import Any, Optional

from adapters.base import BaseAdapter, resilient_get
from models import RawItem

logger = logging.getLogger(__name__)

DEFAULT_FIELDS = {
    "title": "title",
    "link": "url",
    "price": "price",
    "image": "image",
}


class JsonApiAdapter(BaseAdapter):
    """Queries ``search_url`` once per term and maps each result object.

    Config keys:
        search_url: URL with a ``{query}`` placeholder (required)
        results_key: dotted path to the result list, empty for a top-level list
        fields: mapping of RawItem field -> dotted path inside a result
        link_prefix: prepended to relative links
    """

    adapter_type = "json_api"

    def __init__(self, name: str, source_config: dict):
        super().__init__(name, source_config)
        self._search_url = source_config["search_url"]
        self._results_key = source_config.get("results_key", "items")
        self._fields = {**DEFAULT_FIELDS, **source_config.get("fields", {})}
        self._link_prefix = source_config.get("link_prefix", "")
        self._params = source_config.get("params", {})

    def search(self, terms: list[str]) -> list[RawItem]:
        items = []
        for term in terms:
            url = self._search_url.format(query=term)
            resp = resilient_get(url, params=self._params or None)
            resp.raise_for_status()
            data = resp.json()

            results = _lookup(data, self._results_key) if self._results_key else data
            if not isinstance(results, list):
                logger.warning("%s: response has no result list for %r", self.source_name, term)
                continue

            for entry in results:
                item = self._to_item(entry)
                if item is not None:
                    items.append(item)

        logger.info("%s: %d item(s) for %d term(s)", self.source_name, len(items), len(terms))
        return items

    def _to_item(self, entry: Any) -> Optional[RawItem]:
        if not isinstance(entry, dict):
            return None

        link = _lookup(entry, self._fields["link"])
        title = _lookup(entry, self._fields["title"])
        if not link or not title:
            return None

        link = str(link)
        if self._link_prefix and not link.startswith(("http://", "https://")):
            link = self._link_prefix.rstrip("/") + "/" + link.lstrip("/")

        return RawItem(
            title=str(title),
            link=link,
            price=_lookup(entry, self._fields["price"]) or "",
            source=self.label,
            image=_lookup(entry, self._fields["image"]),
        )


def _lookup(data: Any, path: str) -> Any:
    """Resolve a dotted path like ``data.items`` inside nested dicts."""
    current = data
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
