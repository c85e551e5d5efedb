"""Tests for the mark manager."""

import json

from logdeck.marks import BASE_MARK_COLORS, MarkManager
from logdeck.models import LogEntry, entry_signature
from logdeck.settings import SettingsStore

SIG = "2024-01-01T00:00:00Z|svc|boot"


def _entry(message="boot", mark=None) -> LogEntry:
    return LogEntry(timestamp="2024-01-01T00:00:00Z", logger="svc", message=message, mark=mark)


def _manager(tmp_path) -> MarkManager:
    return MarkManager(SettingsStore(str(tmp_path / "settings.json")))


class TestSetMark:
    def test_set_and_remove(self, tmp_path):
        mm = _manager(tmp_path)
        mm.set_mark(SIG, "#EF4444")
        assert mm.color_for(SIG) == "#EF4444"
        mm.set_mark(SIG, None)
        assert mm.color_for(SIG) is None

    def test_persisted(self, tmp_path):
        mm = _manager(tmp_path)
        mm.set_mark(SIG, "#EF4444")
        data = json.loads((tmp_path / "settings.json").read_text())
        assert data["marksMap"] == {SIG: "#EF4444"}

    def test_changed_only_on_real_change(self, tmp_path):
        mm = _manager(tmp_path)
        calls = []
        mm.changed.subscribe(lambda: calls.append(1))
        mm.set_mark(SIG, "#EF4444")
        mm.set_mark(SIG, "#EF4444")
        mm.set_mark("missing", None)
        assert len(calls) == 1

    def test_bulk_marks(self, tmp_path):
        mm = _manager(tmp_path)
        calls = []
        mm.changed.subscribe(lambda: calls.append(1))
        mm.set_marks([_entry("a"), _entry("b")], "#3B82F6")
        assert len(mm.marks) == 2
        mm.set_marks([_entry("a"), _entry("b")], None)
        assert mm.marks == {}
        assert len(calls) == 2

    def test_persistence_failure_keeps_memory_state(self, tmp_path):
        mm = MarkManager(SettingsStore(str(tmp_path)))
        errors = []
        mm.errors.subscribe(errors.append)
        mm.set_mark(SIG, "#EF4444")
        assert mm.color_for(SIG) == "#EF4444"
        assert len(errors) == 1

    def test_without_settings(self):
        mm = MarkManager()
        mm.set_mark(SIG, "#EF4444")
        assert mm.load() is True
        assert mm.color_for(SIG) == "#EF4444"


class TestSyncEntries:
    def test_updates_only_affected(self, tmp_path):
        mm = _manager(tmp_path)
        entries = [_entry("boot"), _entry("other")]
        mm.set_mark(entry_signature(entries[0]), "#10B981")
        synced = mm.sync_entries(entries)
        assert synced[0].mark == "#10B981"
        assert synced[1] is entries[1]

    def test_removes_stale_marks(self):
        mm = MarkManager()
        entry = _entry(mark="#10B981")
        assert mm.sync_entries([entry])[0].mark is None

    def test_unchanged_entries_reused(self):
        mm = MarkManager()
        mm.set_mark(SIG, "#10B981")
        entry = _entry(mark="#10B981")
        assert mm.sync_entries([entry])[0] is entry


class TestLoad:
    def test_restores_map_and_colors(self, tmp_path):
        first = _manager(tmp_path)
        first.set_mark(SIG, "#EF4444")
        first.add_custom_color("#123456")

        second = _manager(tmp_path)
        assert second.load() is True
        assert second.color_for(SIG) == "#EF4444"
        assert second.custom_colors == ["#123456"]

    def test_read_failure(self, tmp_path):
        (tmp_path / "settings.json").write_text("{oops")
        mm = _manager(tmp_path)
        errors = []
        mm.errors.subscribe(errors.append)
        assert mm.load() is False
        assert errors


class TestPalette:
    def test_base_plus_custom(self, tmp_path):
        mm = _manager(tmp_path)
        mm.add_custom_color("#ABCDEF")
        mm.add_custom_color("#ABCDEF")
        mm.add_custom_color("  ")
        assert mm.palette == list(BASE_MARK_COLORS) + ["#ABCDEF"]
        assert len(BASE_MARK_COLORS) == 8
