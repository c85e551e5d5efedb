"""Tests for the entry store: ids, ordering, dedup and mark attachment."""

import threading

from logdeck.models import LogEntry, sort_key
from logdeck.store import EntryStore, IngestStats


def _entry(second=0, message="boot", source="app.log", logger="svc") -> LogEntry:
    return LogEntry(
        timestamp=f"2024-01-01T00:00:{second:02d}Z",
        logger=logger,
        message=message,
        source=source,
    )


def _is_sorted(store: EntryStore) -> bool:
    keys = [sort_key(e) for e in store.entries]
    return keys == sorted(keys)


class TestAppendValidation:
    def test_malformed_batches_are_noops(self):
        store = EntryStore()
        assert store.append("nope") == []
        assert store.append(None) == []
        assert store.append([]) == []
        assert len(store) == 0
        assert store.next_id == 1

    def test_mappings_coerced_and_junk_skipped(self):
        store = EntryStore()
        accepted = store.append([{"message": "x", "source": "a.log"}, 42, "text"])
        assert len(accepted) == 1
        assert store[0].message == "x"


class TestIds:
    def test_sequential_ids(self):
        store = EntryStore()
        first = store.append([_entry(1, "a"), _entry(2, "b")])
        second = store.append([_entry(3, "c")])
        assert [e.id for e in first] == [1, 2]
        assert [e.id for e in second] == [3]
        assert store.next_id == 4

    def test_clear_resets_cursor_and_dedup(self):
        store = EntryStore()
        store.append([_entry(1)])
        store.clear()
        assert len(store) == 0
        accepted = store.append([_entry(1)])
        assert [e.id for e in accepted] == [1]

    def test_concurrent_appends_never_share_ids(self):
        store = EntryStore()

        def worker(n):
            batch = [_entry(i % 60, f"w{n}-{i}", source="tcp://collector") for i in range(50)]
            store.append(batch)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        ids = [e.id for e in store.entries]
        assert len(ids) == 400
        assert len(set(ids)) == 400
        assert store.next_id == 401


class TestOrdering:
    def test_sorted_by_timestamp_then_id(self):
        store = EntryStore()
        store.append([_entry(5, "late"), _entry(1, "early")])
        store.append([_entry(3, "middle"), _entry(1, "early-2")])
        assert [e.message for e in store.entries] == ["early", "early-2", "middle", "late"]
        assert _is_sorted(store)

    def test_invalid_timestamps_last(self):
        store = EntryStore()
        store.append([LogEntry(timestamp="???", message="bad"), _entry(1)])
        assert store.entries[-1].message == "bad"


class TestDeduplication:
    def test_same_batch_twice_is_idempotent(self):
        store = EntryStore()
        batch = [_entry(1, "a"), _entry(2, "b")]
        store.append(batch)
        assert store.append(batch) == []
        assert len(store) == 2

    def test_identical_lines_from_two_files_retained(self):
        store = EntryStore()
        store.append([_entry(source="a.log"), _entry(source="b.log")])
        assert len(store) == 2

    def test_identical_lines_from_one_file_collapsed(self):
        store = EntryStore()
        store.append([_entry(source="a.log"), _entry(source="a.log")])
        assert len(store) == 1

    def test_remote_checked_against_existing(self):
        store = EntryStore()
        store.append([_entry(source="elastic://logs")])
        assert store.append([_entry(source="elastic://logs")]) == []
        assert store.remote_count() == 1

    def test_ignore_existing_for_remote(self):
        store = EntryStore()
        store.append([_entry(source="elastic://logs")])
        accepted = store.append([_entry(source="elastic://logs")], ignore_existing_for_remote=True)
        assert len(accepted) == 1
        assert store.remote_count() == 2

    def test_remote_and_file_scopes_independent(self):
        store = EntryStore()
        store.append([_entry(source="elastic://logs")])
        assert len(store.append([_entry(source="a.log")])) == 1


class TestMarks:
    def test_marks_attached_by_signature(self):
        marks = {"2024-01-01T00:00:00Z|svc|boot": "#EF4444"}
        store = EntryStore(mark_lookup=marks.get)
        accepted = store.append([_entry(0), _entry(1, "other")])
        assert accepted[0].mark == "#EF4444"
        assert accepted[1].mark is None

    def test_replace_entries(self):
        store = EntryStore()
        store.append([_entry(0)])
        store.replace_entries([store[0].with_mark("#10B981")])
        assert store[0].mark == "#10B981"


class TestIngestStats:
    def test_counts(self):
        store = EntryStore()
        store.append([_entry(0), _entry(0)])
        store.append([_entry(0)])
        store.clear()
        assert store.stats.snapshot() == {"batches": 2, "accepted": 1, "dropped": 2, "clears": 1}

    def test_fresh_snapshot(self):
        assert IngestStats().snapshot() == {"batches": 0, "accepted": 0, "dropped": 0, "clears": 0}
