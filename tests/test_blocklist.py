"""Tests for blocklist.py."""

import pytest

from blocklist import BlockedItemRepository


@pytest.fixture
def blocked(db):
    return BlockedItemRepository(db)


class TestBlockedItems:
    def test_add_and_lookup(self, blocked):
        item = blocked.add("https://example.com/item/1", title="Zaku", image="https://img/1.jpg")
        assert item is not None
        assert item.url == "https://example.com/item/1"
        assert blocked.is_blocked("https://example.com/item/1") is True
        assert blocked.is_blocked("https://example.com/item/2") is False
        assert blocked.blocked_urls() == {"https://example.com/item/1"}

    def test_duplicate_returns_none(self, blocked):
        assert blocked.add("u1") is not None
        assert blocked.add("u1", title="again") is None
        assert len(blocked.list_all()) == 1

    def test_empty_url_ignored(self, blocked):
        assert blocked.add("") is None
        assert blocked.add("   ") is None
        assert blocked.list_all() == []

    def test_remove(self, blocked):
        blocked.add("u1")
        assert blocked.remove("u1") is True
        assert blocked.remove("u1") is False
        assert blocked.is_blocked("u1") is False

    def test_list_all_carries_metadata(self, blocked):
        blocked.add("u1", title="first", image="i1")
        [item] = blocked.list_all()
        assert (item.url, item.title, item.image) == ("u1", "first", "i1")
        assert item.blocked_at.tzinfo is not None
