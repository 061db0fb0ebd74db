import asyncio
import json
import random
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from blazeclip.config import HISTORY_CATEGORY, PINNED_CATEGORY
from blazeclip.fingerprint import entry_fingerprint
from blazeclip.history import HistoryStore, PersistenceError
from blazeclip.models import AppendStatus, ContentType, PinResult


def _fill(store, count, prefix="item"):
    return [store.append(f"{prefix} {i}").entry for i in range(count)]


class TestAppend:
    def test_creates_entry(self, store):
        result = store.append("hello")
        assert result.status == AppendStatus.CREATED
        assert result.created
        assert result.entry.text == "hello"
        assert result.entry.kind == ContentType.TEXT
        assert result.entry.use_count == 1
        assert result.entry.pinned is False
        assert result.entry.last_used_at == result.entry.created_at

    def test_newest_first(self, store):
        store.append("first")
        store.append("second")
        assert [e.text for e in store.unpinned()] == ["second", "first"]

    def test_duplicate_is_noop(self, store):
        first = store.append("abc").entry
        result = store.append("abc")
        assert result.status == AppendStatus.DUPLICATE
        assert result.entry is first
        assert len(store) == 1
        assert first.use_count == 1

    def test_duplicate_not_moved_to_front(self, store):
        store.append("old")
        store.append("new")
        store.append("old")
        assert [e.text for e in store.unpinned()] == ["new", "old"]

    def test_text_dedup_is_exact(self, store):
        store.append("Hello")
        store.append("hello")
        store.append("hello ")
        assert len(store) == 3

    def test_image_dedup_by_hash(self, store, make_image):
        store.append(make_image("h1", width=10))
        result = store.append(make_image("h1", width=20))
        assert result.status == AppendStatus.DUPLICATE
        assert len(store) == 1

    def test_text_and_image_never_equal(self, store, make_image):
        store.append("h1")
        result = store.append(make_image("h1"))
        assert result.created
        assert len(store) == 2

    def test_ids_unique_within_same_instant(self, storage):
        instant = datetime(2024, 1, 1, 9, 30)
        store = HistoryStore(storage, clock=lambda: instant)
        ids = [store.append(f"x{i}").entry.id for i in range(5)]
        assert len(set(ids)) == 5
        assert ids == sorted(ids)

    def test_persists_after_append(self, store, storage):
        store.append("saved")
        data = json.loads(storage.load_history())
        assert [item["text"] for item in data["items"]] == ["saved"]

    @pytest.mark.parametrize("seed", range(5))
    def test_no_duplicate_fingerprints_for_random_sequences(self, store, seed):
        rng = random.Random(seed)
        for _ in range(300):
            store.append(rng.choice(["a", "b", "c", "A", " a", "d", "e"]) * rng.randint(1, 3))
        fingerprints = [entry_fingerprint(e) for e in store.unpinned()]
        assert len(fingerprints) == len(set(fingerprints))


class TestCap:
    def test_101_appends_keep_100(self, store):
        entries = _fill(store, 101)
        assert store.unpinned_count() == 100
        assert store.get(entries[0].id) is None
        assert store.unpinned()[-1].text == "item 1"

    def test_eviction_reported(self, store):
        entries = _fill(store, 100)
        result = store.append("overflow")
        assert result.evicted == [entries[0]]

    def test_pinned_exempt_from_cap(self, store):
        oldest = store.append("keep me").entry
        store.pin(oldest.id)
        _fill(store, 100)
        assert store.get(oldest.id) is not None
        assert store.unpinned_count() == 100
        assert len(store) == 101

    def test_cap_holds_for_random_sequences(self, storage, clock):
        store = HistoryStore(storage, max_history=10, clock=clock)
        rng = random.Random(7)
        for _ in range(200):
            store.append(str(rng.randint(0, 40)))
            assert store.unpinned_count() <= 10

    def test_evicted_image_released(self, storage, clock, released, make_image):
        store = HistoryStore(storage, release_image=released.append, max_history=1, clock=clock)
        image = make_image("old")
        store.append(image)
        store.append("newer")
        assert released == [image.storage_ref]

    def test_unpin_over_cap_keeps_entry(self, storage, clock, released, make_image):
        store = HistoryStore(storage, release_image=released.append, max_history=2, clock=clock)
        old = store.append(make_image("old")).entry
        store.pin(old.id)
        store.append("a")
        store.append("b")
        assert store.unpin(old.id) is True
        assert store.get(old.id) is old
        assert store.unpinned_count() == 3
        assert released == []

    def test_append_after_unpin_trims_back_to_cap(self, storage, clock):
        store = HistoryStore(storage, max_history=2, clock=clock)
        old = store.append("old").entry
        store.pin(old.id)
        store.append("a")
        store.append("b")
        store.unpin(old.id)
        result = store.append("c")
        assert [e.text for e in result.evicted] == ["old", "a"]
        assert [e.text for e in store.unpinned()] == ["c", "b"]

    def test_load_keeps_over_cap_snapshot(self, storage, clock):
        store = HistoryStore(storage, max_history=2, clock=clock)
        old = store.append("old").entry
        store.pin(old.id)
        store.append("a")
        store.append("b")
        store.unpin(old.id)
        restored = HistoryStore(storage, max_history=2, clock=clock)
        restored.load()
        assert restored.get(old.id) is not None
        assert restored.unpinned_count() == 3


class TestPin:
    def test_pin(self, store):
        entry = store.append("pin me").entry
        assert store.pin(entry.id) == PinResult.PINNED
        assert entry.pinned is True
        assert store.pinned() == [entry]
        assert entry not in store.unpinned()

    def test_pin_twice_is_idempotent(self, store):
        entry = store.append("pin me").entry
        store.pin(entry.id)
        assert store.pin(entry.id) == PinResult.ALREADY_PINNED
        assert store.pinned() == [entry]

    def test_fourth_pin_refused(self, store):
        entries = _fill(store, 4)
        for e in entries[:3]:
            assert store.pin(e.id) == PinResult.PINNED
        assert store.pin(entries[3].id) == PinResult.QUOTA_EXCEEDED
        assert entries[3].pinned is False
        assert store.pinned_count() == 3

    def test_pin_order_preserved(self, store):
        a, b, c = _fill(store, 3)
        store.pin(b.id)
        store.pin(a.id)
        store.pin(c.id)
        assert store.pinned() == [b, a, c]

    def test_pin_unknown(self, store):
        assert store.pin(12345) == PinResult.NOT_FOUND

    def test_quota_holds_for_random_sequences(self, store):
        entries = _fill(store, 8)
        rng = random.Random(3)
        for _ in range(100):
            entry = rng.choice(entries)
            if rng.random() < 0.6:
                store.pin(entry.id)
            else:
                store.unpin(entry.id)
            assert store.pinned_count() <= 3

    def test_unpin_restores_creation_order(self, store):
        a, b, c = _fill(store, 3)
        store.pin(b.id)
        assert store.unpin(b.id) is True
        assert store.unpinned() == [c, b, a]

    def test_unpin_not_pinned(self, store):
        entry = store.append("x").entry
        assert store.unpin(entry.id) is False
        assert store.unpin(999) is False


class TestRecordCopy:
    def test_bumps_use_count(self, store):
        entry = store.append("copy me").entry
        created = entry.created_at
        assert store.record_copy(entry.id) is True
        assert entry.use_count == 2
        assert entry.last_used_at > created
        assert entry.created_at == created

    def test_unknown_id_is_silent(self, store):
        assert store.record_copy(42) is False

    def test_marks_entry_active(self, store):
        a = store.append("a").entry
        store.append("b")
        store.record_copy(a.id)
        assert store.active_entry() is a


class TestDelete:
    def test_delete(self, store):
        entry = store.append("bye").entry
        result = store.delete(entry.id)
        assert result.deleted
        assert result.entry is entry
        assert store.get(entry.id) is None
        assert len(store) == 0

    def test_delete_pinned(self, store):
        entry = store.append("pinned").entry
        store.pin(entry.id)
        assert store.delete(entry.id).deleted
        assert store.pinned_count() == 0

    def test_delete_unknown(self, store):
        result = store.delete(99)
        assert result.deleted is False
        assert result.was_active is False

    def test_delete_active_entry_reports_active(self, store):
        store.append("older")
        current = store.append("on the clipboard").entry
        result = store.delete(current.id)
        assert result.was_active is True
        assert store.active_entry() is None

    def test_delete_inactive_entry(self, store):
        older = store.append("older").entry
        store.append("current")
        assert store.delete(older.id).was_active is False

    def test_delete_releases_image(self, store, released, make_image):
        image = make_image("img")
        entry = store.append(image).entry
        store.delete(entry.id)
        assert released == [image.storage_ref]

    def test_delete_bumps_epoch(self, store):
        entry = store.append("x").entry
        before = store.mutation_epoch
        store.delete(entry.id)
        assert store.mutation_epoch == before + 1

    def test_content_can_return_after_delete(self, store):
        entry = store.append("again").entry
        store.delete(entry.id)
        assert store.append("again").created


class TestClear:
    def test_clear_removes_everything(self, store, clipboard, released, make_image):
        store.append("text")
        image = store.append(make_image("img")).entry
        store.pin(image.id)

        removed = asyncio.run(store.clear())

        assert removed == 2
        assert len(store) == 0
        assert store.pinned() == []
        assert released == [image.image.storage_ref]
        assert clipboard.cleared == 1

    def test_clear_persists_empty(self, store, storage):
        store.append("text")
        asyncio.run(store.clear())
        assert json.loads(storage.load_history()) == {"items": []}

    def test_clipboard_failure_does_not_abort(self, store, clipboard):
        async def broken():
            raise OSError("clipboard gone")

        clipboard.clear = broken
        store.append("text")
        assert asyncio.run(store.clear()) == 1
        assert len(store) == 0

    def test_operation_flag_set_while_clearing(self, store, clipboard):
        seen = []

        async def observe():
            seen.append(store.operation_in_progress)

        clipboard.clear = observe
        asyncio.run(store.clear())
        assert seen == [True]
        assert store.operation_in_progress is False


class TestFilter:
    def test_empty_query_returns_all(self, store, make_image):
        store.append("one")
        store.append(make_image())
        assert len(store.filter("")) == 2

    def test_case_insensitive_substring(self, store):
        store.append("Python Programming")
        store.append("javascript")
        assert [e.text for e in store.filter("PROG")] == ["Python Programming"]

    def test_images_excluded_with_query(self, store, make_image):
        store.append(make_image("image"))
        assert store.filter("image") == []

    def test_whitespace_query_is_a_real_query(self, store, make_image):
        store.append("one")
        store.append("two words")
        store.append(make_image())
        assert [e.text for e in store.filter(" ")] == ["two words"]

    def test_trailing_space_is_significant(self, store):
        store.append("food")
        store.append("foo bar")
        assert [e.text for e in store.filter("foo ")] == ["foo bar"]

    def test_grouped(self, store):
        a = store.append("alpha").entry
        store.append("beta")
        store.pin(a.id)
        groups = store.grouped()
        assert list(groups) == [PINNED_CATEGORY, HISTORY_CATEGORY]
        assert groups[PINNED_CATEGORY] == [a]

    def test_grouped_omits_empty(self, store):
        store.append("alpha")
        assert list(store.grouped()) == [HISTORY_CATEGORY]
        assert store.grouped("zzz") == {}


class TestListeners:
    def test_notified_on_mutation(self, store):
        callback = MagicMock()
        store.subscribe(callback)
        entry = store.append("x").entry
        store.pin(entry.id)
        assert callback.call_count == 2
        callback.assert_called_with(store)

    def test_not_notified_on_duplicate(self, store):
        store.append("x")
        callback = MagicMock()
        store.subscribe(callback)
        store.append("x")
        callback.assert_not_called()

    def test_unsubscribe(self, store):
        callback = MagicMock()
        unsubscribe = store.subscribe(callback)
        unsubscribe()
        store.append("x")
        callback.assert_not_called()

    def test_listener_error_does_not_propagate(self, store):
        store.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        assert store.append("x").created


class TestPersistence:
    def test_round_trip(self, store, storage, clock, make_image):
        a = store.append("alpha").entry
        store.append(make_image("img"))
        store.append("gamma")
        store.pin(a.id)
        store.record_copy(a.id)

        restored = HistoryStore(storage, clock=clock)
        restored.load()

        assert [e.id for e in restored.pinned()] == [a.id]
        assert [e.id for e in restored.unpinned()] == [e.id for e in store.unpinned()]
        copy = restored.get(a.id)
        assert copy.use_count == 2
        assert copy.last_used_at == a.last_used_at
        image = restored.unpinned()[1]
        assert image.kind == ContentType.IMAGE
        assert image.image == make_image("img")

    def test_missing_fields_default(self, storage, clock):
        storage.persist_history(json.dumps({"items": [
            {"id": 5, "kind": "text", "text": "old", "created_at": "2024-01-01T10:00:00"},
        ]}))
        store = HistoryStore(storage, clock=clock)
        store.load()
        entry = store.get(5)
        assert entry.pinned is False
        assert entry.use_count == 1
        assert entry.last_used_at == entry.created_at

    def test_legacy_keys(self, storage, clock):
        storage.persist_history(json.dumps({"items": [
            {"id": 1700000000000, "text": "legacy", "timestamp": 1700000000000,
             "pinned": True, "last_copied": 0, "copy_count": 4},
        ]}))
        store = HistoryStore(storage, clock=clock)
        store.load()
        entry = store.get(1700000000000)
        assert entry.kind == ContentType.TEXT
        assert entry.pinned is True
        assert entry.use_count == 4
        assert entry.last_used_at == entry.created_at

    def test_new_ids_follow_loaded_ids(self, storage):
        far_future = 99_999_999_999_999
        storage.persist_history(json.dumps({"items": [
            {"id": far_future, "text": "x", "created_at": "2024-01-01T10:00:00"},
        ]}))
        store = HistoryStore(storage)
        store.load()
        assert store.append("y").entry.id > far_future

    def test_malformed_items_skipped(self, storage, clock):
        storage.persist_history(json.dumps({"items": [
            {"id": 1, "text": "ok", "created_at": "2024-01-01T10:00:00"},
            {"id": 2, "text": None, "created_at": "2024-01-01T10:00:00"},
            {"text": "no id"},
            "garbage",
        ]}))
        store = HistoryStore(storage, clock=clock)
        store.load()
        assert [e.id for e in store.entries()] == [1]

    def test_load_repairs_invariants(self, storage, clock):
        items = [
            {"id": i, "text": f"pin {i}", "created_at": "2024-01-01T10:00:00", "pinned": True}
            for i in range(1, 6)
        ]
        items.append({"id": 9, "text": "pin 1", "created_at": "2024-01-01T10:00:00"})
        storage.persist_history(json.dumps({"items": items}))
        store = HistoryStore(storage, clock=clock)
        store.load()
        assert [e.id for e in store.pinned()] == [1, 2, 3]
        assert [e.id for e in store.unpinned()] == [5, 4]

    def test_load_invalid_json(self, storage, clock):
        storage.persist_history("not json")
        with pytest.raises(PersistenceError):
            HistoryStore(storage, clock=clock).load()

    def test_load_storage_failure(self, clock):
        broken = MagicMock()
        broken.load_history.side_effect = OSError("disk")
        with pytest.raises(PersistenceError):
            HistoryStore(broken, clock=clock).load()

    def test_persist_failure_keeps_mutation(self, clock):
        broken = MagicMock()
        broken.persist_history.side_effect = OSError("disk full")
        store = HistoryStore(broken, clock=clock)

        entry = store.append("still here").entry

        assert store.get(entry.id) is entry
        assert isinstance(store.last_persist_error, PersistenceError)
        with pytest.raises(PersistenceError):
            store.persist()

    def test_persist_error_cleared_on_success(self, clock):
        flaky = MagicMock()
        flaky.persist_history.side_effect = [OSError("disk"), None]
        store = HistoryStore(flaky, clock=clock)
        store.append("a")
        store.append("b")
        assert store.last_persist_error is None

    def test_without_storage(self, clock):
        store = HistoryStore(clock=clock)
        store.load()
        assert store.append("memory only").created
