"""Abstract base adapter and resilient HTTP helpers."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from models import RawItem

logger = logging.getLogger(__name__)

USER_AGENT = "market-watch/0.1 (+https://github.com/market-watch/market-watch)"
DEFAULT_TIMEOUT = 15


class BaseAdapter(ABC):
    """One marketplace behind a uniform search capability.

    Implementations must be safe to call repeatedly and from worker threads.
    """

    adapter_type: str = ""

    def __init__(self, name: str, source_config: dict):
        self._config = source_config
        self._name = name
        self._label = source_config.get("label", name)

    @property
    def source_name(self) -> str:
        return self._name

    @property
    def label(self) -> str:
        """Human-readable source stamped on every item."""
        return self._label

    @property
    def enabled_by_default(self) -> bool:
        return bool(self._config.get("enabled_by_default", True))

    @property
    def timeout_seconds(self) -> Optional[float]:
        value = self._config.get("timeout_seconds")
        return float(value) if value is not None else None

    @abstractmethod
    def search(self, terms: list[str]) -> list[RawItem]:
        """Return raw items for the given terms. Subclasses must implement."""
        ...


@retry(
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=15),
    reraise=True,
)
def resilient_get(url: str, **kwargs) -> requests.Response:
    """GET with retry on connection errors and timeouts."""
    kwargs.setdefault("timeout", DEFAULT_TIMEOUT)
    kwargs.setdefault("headers", {})
    kwargs["headers"].setdefault("User-Agent", USER_AGENT)
    resp = requests.get(url, **kwargs)
    if resp.status_code >= 500:
        raise requests.ConnectionError(f"Server error {resp.status_code} from {url}")
    return resp
