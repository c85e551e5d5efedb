"""Tests for the LogEngine facade."""

import asyncio
import json

import pytest
from logdeck.config import Config
from logdeck.engine import LogEngine
from logdeck.emitter import NoticeLevel
from logdeck.mdc import TRACE_KEY
from logdeck.models import LogEntry
from logdeck.paginator import LoadMode, PaginatorState, SearchOptions

SIG = "2024-01-01T00:00:00Z|svc|boot"


def _entry(second=0, message="boot", source="app.log", level="INFO", mdc=None) -> LogEntry:
    return LogEntry(
        timestamp=f"2024-01-01T00:00:{second:02d}Z",
        level=level,
        logger="svc",
        message=message,
        source=source,
        mdc=mdc,
    )


class FakeBackend:
    def __init__(self, total):
        self.records = [
            {"timestamp": f"2024-02-01T00:{i // 60:02d}:{i % 60:02d}Z", "logger": "es",
             "message": f"hit {i}", "source": "elastic://logs"}
            for i in range(total)
        ]
        self.requests = []

    async def search(self, options):
        self.requests.append(options)
        start = options.search_after[0] if options.search_after else 0
        chunk = self.records[start:start + options.size]
        end = start + len(chunk)
        return {"ok": True, "entries": chunk, "hasMore": end < len(self.records),
                "nextSearchAfter": [end], "pitSessionId": "pit"}

    async def close_session(self, handle):
        pass


class GatedBackend(FakeBackend):
    def __init__(self, total):
        super().__init__(total)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def search(self, options):
        self.started.set()
        await self.release.wait()
        return await super().search(options)


@pytest.fixture
def settings_path(tmp_path):
    return tmp_path / "settings.json"


@pytest.fixture
def engine(settings_path):
    return LogEngine(Config(settings_file=str(settings_path)))


class TestIngestion:
    def test_append_updates_view(self, engine):
        calls = []
        engine.changed.subscribe(lambda: calls.append(1))
        accepted = engine.append([_entry(2, "b"), _entry(1, "a")])
        assert len(accepted) == 2
        assert [e.message for e in engine.visible_entries()] == ["a", "b"]
        assert engine.filtered_indices == [0, 1]
        assert calls

    def test_duplicates_do_not_refresh(self, engine):
        engine.append([_entry()])
        calls = []
        engine.changed.subscribe(lambda: calls.append(1))
        assert engine.append([_entry()]) == []
        assert calls == []

    def test_mdc_index_fed(self, engine):
        engine.append([_entry(mdc={"trace_id": "t1"})])
        assert engine.mdc_index.keys() == [TRACE_KEY]

    def test_clear_resets_everything(self, engine):
        engine.append([_entry(0, mdc={"k": "v"}), _entry(1, "x")])
        engine.toggle(0)
        engine.clear()
        assert len(engine.store) == 0
        assert engine.filtered_indices == []
        assert engine.selection.anchor is None
        assert engine.mdc_index.keys() == []
        assert engine.append([_entry()])[0].id == 1


class TestSelectionAcrossResort:
    def test_selection_follows_entry(self, engine):
        engine.append([_entry(5, "target"), _entry(9, "late")])
        engine.toggle(0)
        engine.append([_entry(1, "earlier")])
        assert engine.current_entry().message == "target"
        assert engine.selection.selected == {1}
        assert engine.selection.anchor == 1

    def test_navigation(self, engine):
        engine.append([_entry(i, f"m{i}") for i in range(5)])
        assert engine.goto_end() == 4
        assert engine.move_by(-1) == 3
        assert engine.current_entry().message == "m3"
        assert engine.goto_start() == 0


class TestMarks:
    def test_new_entry_acquires_existing_mark(self, engine):
        engine.marks.set_mark(SIG, "#F59E0B")
        accepted = engine.append([_entry(0, "boot")])
        assert accepted[0].mark == "#F59E0B"
        assert engine.marked_positions() == [0]

    def test_apply_mark_to_selection(self, engine):
        engine.append([_entry(0, "a"), _entry(1, "b"), _entry(2, "c")])
        engine.toggle(0)
        engine.toggle(2, additive=True)
        engine.apply_mark("#EF4444")
        assert [e.mark for e in engine.entries] == ["#EF4444", None, "#EF4444"]
        engine.apply_mark(None)
        assert engine.marked_positions() == []

    def test_only_marked_persisted_and_restored(self, engine, settings_path):
        engine.append([_entry(0, "a"), _entry(1, "b")])
        engine.toggle(1)
        engine.apply_mark("#10B981")
        engine.set_only_marked(True)
        assert [e.message for e in engine.visible_entries()] == ["b"]
        saved = json.loads(settings_path.read_text())
        assert saved["onlyMarked"] is True

        restored = LogEngine(Config(settings_file=str(settings_path)))
        assert restored.load_settings() is True
        assert restored.filter_state.only_marked is True
        restored.append([_entry(0, "a"), _entry(1, "b")])
        assert [e.message for e in restored.visible_entries()] == ["b"]

    def test_goto_marked(self, engine):
        engine.append([_entry(i, f"m{i}") for i in range(6)])
        engine.toggle(1)
        engine.toggle(4, additive=True)
        engine.apply_mark("#3B82F6")
        engine.selection.reset()
        assert engine.goto_marked(1) == 1
        assert engine.goto_marked(1) == 4
        assert engine.goto_marked(1) == 4
        assert engine.goto_marked(-1) == 1

    def test_persistence_failure_notifies(self, tmp_path):
        engine = LogEngine(Config(settings_file=str(tmp_path)))
        notices = []
        engine.on_notice(notices.append)
        engine.append([_entry()])
        engine.toggle(0)
        engine.apply_mark("#EF4444")
        assert engine.entries[0].mark == "#EF4444"
        assert notices and notices[0].level is NoticeLevel.WARNING


class TestFilters:
    def test_standard_filter_and_history(self, engine):
        engine.append([_entry(0, "a", level="INFO"), _entry(1, "b", level="ERROR")])
        engine.set_standard_filter(level="error", message="b")
        assert [e.message for e in engine.visible_entries()] == ["b"]
        assert engine.history.get("message") == ["b"]
        engine.set_standard_enabled(False)
        assert len(engine.visible_entries()) == 2

    def test_dc_filter_change_recomputes(self, engine):
        engine.append([_entry(0, "a", mdc={"env": "prod"}), _entry(1, "b", mdc={"env": "dev"})])
        engine.dc_filter.add_entry("env", "prod")
        assert [e.message for e in engine.visible_entries()] == ["a"]
        assert engine.last_stats.rejected_context == 1

    def test_time_filter_ignores_file_entries(self, engine):
        engine.append([_entry(0, "file"), _entry(1, "remote", source="elastic://x")])
        engine.time_filter.set_absolute("2030-01-01T00:00:00Z", None)
        engine.time_filter.set_enabled(True)
        assert [e.message for e in engine.visible_entries()] == ["file"]

    def test_search_matches(self, engine):
        engine.append([_entry(i, m) for i, m in enumerate(["foo", "bar", "foo bar", "baz"])])
        assert engine.goto_search_match(1) is None
        engine.set_search_text("foo&!bar")
        assert engine.search_match_positions() == [0]
        engine.set_search_text("foo|baz")
        assert engine.search_match_positions() == [0, 2, 3]
        assert engine.goto_search_match(-1) == 3
        assert engine.history.get("search") == ["foo|baz", "foo&!bar"]


class TestDiagnosticContext:
    def test_current_pairs(self, engine):
        engine.append([_entry(mdc={"traceId": "t1", "trace_id": "t2"})])
        engine.toggle(0)
        assert engine.current_mdc_pairs() == [(TRACE_KEY, "t1 | t2")]

    def test_adopt_trace_ids(self, engine):
        engine.append([
            _entry(0, "a", mdc={"traceId": "t1"}),
            _entry(1, "b", mdc={"trace_id": "t2"}),
            _entry(2, "c", mdc={"traceId": "t3"}),
            _entry(3, "d"),
        ])
        engine.toggle(0)
        engine.toggle(1, additive=True)
        assert engine.adopt_trace_ids() == 2
        assert engine.dc_filter.is_enabled()
        assert [e.message for e in engine.visible_entries()] == ["a", "b"]

    def test_bulk_actions(self, engine):
        engine.append([
            _entry(0, "a", mdc={"env": "prod", "user": "x"}),
            _entry(1, "b", mdc={"env": "stage"}),
            _entry(2, "c", mdc={"env": "dev"}),
        ])
        engine.toggle(0)
        engine.toggle(1, extend=True)
        aggregates = {a.key: a for a in engine.selection_mdc()}
        assert aggregates["env"].values == {"prod": 1, "stage": 1}

        assert engine.add_dc_all_values("env") == 2
        assert [e.message for e in engine.visible_entries()] == ["a", "b"]

        engine.add_dc_key("user")
        assert [e.message for e in engine.visible_entries()] == ["a"]

    def test_all_values_for_unknown_key(self, engine):
        assert engine.add_dc_all_values("nothing") == 0


class TestRemoteSearch:
    @pytest.mark.asyncio
    async def test_replace_mode_scenario(self, settings_path):
        engine = LogEngine(Config(settings_file=str(settings_path), remote_budget=100), backend=FakeBackend(150))
        await engine.search(engine.search_options())
        assert engine.remote_count() == 100

        outcome = await engine.search(engine.search_options(), LoadMode.REPLACE)
        assert outcome.ok is True
        assert engine.paginator.pagination.baseline == 0
        assert engine.remote_count() == 100
        assert engine.paginator.state is PaginatorState.CAPPED
        assert len(engine.filtered_indices) == 100

    @pytest.mark.asyncio
    async def test_load_more_after_budget_raise(self, settings_path):
        engine = LogEngine(Config(settings_file=str(settings_path), remote_budget=100), backend=FakeBackend(150))
        await engine.search(engine.search_options())
        engine.set_remote_budget(200)
        outcome = await engine.load_more()
        assert outcome.ingested == 50
        assert engine.search_progress()["loaded"] == 150
        assert engine.paginator.state is PaginatorState.EXHAUSTED

    @pytest.mark.asyncio
    async def test_clear_resets_pagination(self, settings_path):
        engine = LogEngine(Config(settings_file=str(settings_path), remote_budget=10), backend=FakeBackend(50))
        await engine.search(engine.search_options())
        engine.clear()
        assert engine.paginator.state is PaginatorState.IDLE
        assert (await engine.load_more()).skipped is True

    @pytest.mark.asyncio
    async def test_clear_during_search_ingests_response(self, settings_path):
        backend = GatedBackend(20)
        engine = LogEngine(Config(settings_file=str(settings_path), remote_budget=100), backend=backend)
        engine.append([_entry()])

        task = asyncio.create_task(engine.search(engine.search_options()))
        await backend.started.wait()
        engine.clear()
        backend.release.set()
        outcome = await task

        assert outcome.ok is True
        assert engine.remote_count() == 20
        assert len(engine.filtered_indices) == 20
        assert engine.paginator.state is PaginatorState.IDLE
        assert engine.paginator.busy is False

    def test_search_options_from_config(self, settings_path):
        config = Config(settings_file=str(settings_path), search_index="prod-*", keep_alive="5m")
        engine = LogEngine(config, backend=FakeBackend(0))
        options = engine.search_options(level="ERROR")
        assert options == SearchOptions(index="prod-*", keep_alive="5m", level="ERROR")

    def test_no_backend(self, engine):
        with pytest.raises(ValueError):
            engine.search_progress()
