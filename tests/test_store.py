"""Tests for store.py."""

import gc
from datetime import datetime, timezone

import pytest

from conftest import make_item
from errors import StoreError, StoreNotFound, StoreTransactionError


def _counts(db, watch_id):
    total, new = db.query(
        "SELECT COUNT(*), COALESCE(SUM(is_new), 0) FROM results WHERE watch_id = ?", (watch_id,)
    )[0]
    return total, new


class TestIngest:
    def test_first_ingest_all_new(self, store, watch):
        delta = store.ingest(watch.id, [make_item("a"), make_item("b")])
        assert [i.link for i in delta.new_items] == ["a", "b"]
        assert delta.total_count == 2
        assert delta.new_count == 2
        assert all(i.is_new for i in delta.new_items)

    def test_idempotent_batch(self, store, watch):
        batch = [make_item("a"), make_item("b"), make_item("c")]
        store.ingest(watch.id, batch)
        second = store.ingest(watch.id, batch)
        assert second.new_items == []
        assert second.total_count == 3
        assert second.new_count == 3

    def test_existing_link_not_updated(self, store, watch):
        store.ingest(watch.id, [make_item("a", title="Old title", price="100")])
        store.ingest(watch.id, [make_item("a", title="New title", price="999")])
        [item] = store.get_results(watch.id)
        assert item.title == "Old title"
        assert item.price == "100"

    def test_resighting_keeps_read_flag(self, store, watch):
        store.ingest(watch.id, [make_item("a")])
        store.acknowledge(watch.id)
        delta = store.ingest(watch.id, [make_item("a")])
        assert delta.new_count == 0
        assert store.get_results(watch.id)[0].is_new is False

    def test_duplicate_links_in_batch_count_once(self, store, watch):
        delta = store.ingest(watch.id, [make_item("a", title="first"), make_item("a", title="second")])
        assert len(delta.new_items) == 1
        assert delta.new_items[0].title == "first"
        assert delta.total_count == 1

    def test_empty_batch(self, store, watch):
        delta = store.ingest(watch.id, [])
        assert delta.new_items == []
        assert delta.total_count == 0
        assert store.get_meta(watch.id).total_count == 0

    def test_total_count_monotonic(self, store, watch):
        totals = []
        for batch in (["a", "b"], ["b"], [], ["c", "a", "d"], ["a"]):
            totals.append(store.ingest(watch.id, [make_item(x) for x in batch]).total_count)
        assert totals == sorted(totals)
        assert totals[-1] == 4

    def test_first_seen_uses_given_time(self, store, watch):
        at = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
        delta = store.ingest(watch.id, [make_item("a")], now=at)
        assert delta.new_items[0].first_seen_at == at
        assert store.get_results(watch.id)[0].first_seen_at == at

    def test_watches_are_independent(self, store, repo, watch):
        other = repo.add(["zaku"], id="w2")
        store.ingest(watch.id, [make_item("a")])
        delta = store.ingest(other.id, [make_item("a")])
        assert len(delta.new_items) == 1
        assert store.get_meta(watch.id).total_count == 1
        assert store.get_meta(other.id).total_count == 1

    def test_unknown_watch(self, store):
        with pytest.raises(StoreNotFound):
            store.ingest("missing", [make_item("a")])

    def test_failure_leaves_state_unchanged(self, store, db, watch):
        store.ingest(watch.id, [make_item("a")])
        # Force the meta upsert to fail after the item insert
        with db.transaction() as conn:
            conn.execute("DROP TABLE results_meta")
            conn.execute("CREATE TABLE results_meta (watch_id TEXT PRIMARY KEY)")

        with pytest.raises(StoreTransactionError):
            store.ingest(watch.id, [make_item("b")])

        assert [i.link for i in store.get_results(watch.id)] == ["a"]

    def test_disk_full_surfaces_and_recovers(self, store, db, watch):
        pages = db.query("PRAGMA page_count")[0][0]
        db.query(f"PRAGMA max_page_count = {pages + 2}")
        batch = [make_item(f"link-{n}", title="x" * 3000) for n in range(200)]

        with pytest.raises(StoreError, match="full"):
            store.ingest(watch.id, batch)

        assert store.get_results(watch.id) == []
        assert store.verify_meta(watch.id)

        db.query("PRAGMA max_page_count = 1000000")
        delta = store.ingest(watch.id, [make_item("a")])
        assert delta.total_count == 1


class TestAcknowledge:
    def test_clears_all_flags(self, store, db, watch):
        store.ingest(watch.id, [make_item(x) for x in "abcde"])
        store.acknowledge(watch.id)
        assert store.get_meta(watch.id).new_count == 0
        assert store.get_meta(watch.id).total_count == 5
        assert all(not i.is_new for i in store.get_results(watch.id))
        assert _counts(db, watch.id) == (5, 0)

    def test_zero_items_is_noop(self, store, watch):
        store.acknowledge(watch.id)
        meta = store.get_meta(watch.id)
        assert meta.total_count == 0
        assert meta.new_count == 0

    def test_unknown_watch(self, store):
        with pytest.raises(StoreNotFound):
            store.acknowledge("missing")

    def test_acknowledge_all(self, store, repo, watch):
        other = repo.add(["zaku"], id="w2")
        store.ingest(watch.id, [make_item("a")])
        store.ingest(other.id, [make_item("b"), make_item("c")])
        assert store.acknowledge_all() == 2
        assert store.new_counts() == {watch.id: 0, other.id: 0}


class TestMetaConsistency:
    def test_sequence_keeps_meta_in_step(self, store, db, watch):
        steps = [
            ("ingest", ["a", "b"]),
            ("ingest", ["b", "c"]),
            ("ack", None),
            ("ingest", ["d"]),
            ("ingest", ["a", "d", "e"]),
            ("ack", None),
            ("ingest", ["f"]),
        ]
        for op, links in steps:
            if op == "ingest":
                store.ingest(watch.id, [make_item(x) for x in links])
            else:
                store.acknowledge(watch.id)
            meta = store.get_meta(watch.id)
            assert (meta.total_count, meta.new_count) == _counts(db, watch.id)
            assert store.verify_meta(watch.id)

    def test_drifted_meta_repaired_on_next_ingest(self, store, db, watch):
        store.ingest(watch.id, [make_item("a"), make_item("b")])
        with db.transaction() as conn:
            conn.execute(
                "UPDATE results_meta SET total_count = 99, new_count = 42 WHERE watch_id = ?",
                (watch.id,),
            )
        assert store.verify_meta(watch.id) is False

        delta = store.ingest(watch.id, [])
        assert (delta.total_count, delta.new_count) == (2, 2)
        assert store.verify_meta(watch.id)

    def test_unique_constraint_enforced(self, db, store, watch):
        store.ingest(watch.id, [make_item("a")])
        with pytest.raises(StoreTransactionError):
            with db.transaction() as conn:
                conn.execute(
                    "INSERT INTO results (watch_id, link, title, source, first_seen_at) "
                    "VALUES (?, 'a', 't', 's', '2026-01-01T00:00:00+00:00')",
                    (watch.id,),
                )


class TestScenario:
    def test_new_then_ack_then_repeat(self, store, watch):
        first = store.ingest(watch.id, [make_item("a"), make_item("b")])
        assert len(first.new_items) == 2
        assert (first.total_count, first.new_count) == (2, 2)

        second = store.ingest(watch.id, [make_item("a"), make_item("b"), make_item("c")])
        assert [i.link for i in second.new_items] == ["c"]
        assert (second.total_count, second.new_count) == (3, 3)

        store.acknowledge(watch.id)
        assert store.get_meta(watch.id).new_count == 0
        assert all(not i.is_new for i in store.get_results(watch.id))

        third = store.ingest(watch.id, [make_item("a"), make_item("b"), make_item("c")])
        assert third.new_items == []
        assert (third.total_count, third.new_count) == (3, 0)


class TestReads:
    def test_results_order_unread_first(self, store, watch):
        store.ingest(watch.id, [make_item("old")], now=datetime(2026, 1, 1, tzinfo=timezone.utc))
        store.acknowledge(watch.id)
        store.ingest(watch.id, [make_item("new")], now=datetime(2026, 1, 2, tzinfo=timezone.utc))
        assert [i.link for i in store.get_results(watch.id)] == ["new", "old"]

    def test_get_results_unknown_watch(self, store):
        with pytest.raises(StoreNotFound):
            store.get_results("missing")


class TestConcurrency:
    def test_parallel_ingests_same_watch(self, store, db, watch):
        from concurrent.futures import ThreadPoolExecutor

        batches = [[make_item(f"{n % 7}") for n in range(i, i + 5)] for i in range(20)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            deltas = list(pool.map(lambda b: store.ingest(watch.id, b), batches))

        inserted = [i.link for d in deltas for i in d.new_items]
        assert sorted(inserted) == sorted(set(inserted))
        assert len(inserted) == 7
        assert _counts(db, watch.id) == (7, 7)
        assert store.verify_meta(watch.id)

    def test_watch_locks_released_after_use(self, store, repo, watch):
        other = repo.add(["zaku"], id="w2", strict=False)
        store.ingest(watch.id, [make_item("a")])
        store.ingest(other.id, [make_item("b")])
        store.acknowledge(watch.id)
        repo.remove(other.id)
        with pytest.raises(StoreNotFound):
            store.ingest("missing", [make_item("c")])

        gc.collect()
        assert len(store._locks) == 0
