"""Source adapter registry."""

import logging

from adapters.base import BaseAdapter
from adapters.json_api import JsonApiAdapter

logger = logging.getLogger(__name__)

ADAPTER_REGISTRY: dict[str, type[BaseAdapter]] = {
    "json_api": JsonApiAdapter,
}


def build_adapters(sources: dict) -> list[BaseAdapter]:
    """Instantiate adapters from the ``sources`` section of the config.

    Sources with an unknown ``type`` are skipped with a warning.
    """
    adapters = []
    for name, source_conf in sources.items():
        adapter_cls = ADAPTER_REGISTRY.get(source_conf.get("type", "json_api"))
        if adapter_cls is None:
            logger.warning("Unknown adapter type %r for source '%s'", source_conf.get("type"), name)
            continue
        adapters.append(adapter_cls(name, source_conf))

    logger.info("Built %d adapter(s)", len(adapters))
    return adapters
