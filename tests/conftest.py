"""Shared test fixtures."""

import json
import time
from pathlib import Path

import pytest

from adapters.base import BaseAdapter
from config import AppConfig
from database import Database
from models import RawItem
from store import ResultStore
from watchlist import WatchRepository

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeAdapter(BaseAdapter):
    """Adapter returning canned items, optionally slow or failing."""

    adapter_type = "fake"

    def __init__(self, name, items=None, error=None, delay=0.0, **source_config):
        super().__init__(name, source_config)
        self.items = items or []
        self.error = error
        self.delay = delay
        self.calls = []

    def search(self, terms):
        self.calls.append(list(terms))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.items)


def make_item(link: str, title: str = "", source: str = "Test", price: str = "1000") -> RawItem:
    return RawItem(title=title or f"item {link}", link=link, price=price, source=source)


@pytest.fixture
def sample_config():
    return AppConfig(
        poll_interval_seconds=600,
        source_timeout_seconds=2,
        max_concurrent_watches=4,
        blacklist=["broken"],
        notifications={"webhook_env": "DISCORD_WEBHOOK_TEST"},
        sources={},
    )


@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def repo(db):
    return WatchRepository(db)


@pytest.fixture
def store(db):
    return ResultStore(db)


@pytest.fixture
def watch(repo):
    return repo.add(["gundam"], id="w1", strict=False)


@pytest.fixture
def load_fixture():
    """Return a function that loads a JSON fixture."""
    def _load(name: str):
        with open(FIXTURES_DIR / name) as f:
            return json.load(f)
    return _load
