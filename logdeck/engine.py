"""LogEngine: ingestion -> marks -> filter pipeline -> selection, plus remote search."""

import logging
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Iterable

from logdeck.config import Config
from logdeck.dc_filter import WILDCARD, DiagnosticContextFilter
from logdeck.emitter import Emitter, Notice, NoticeLevel
from logdeck.filters import FilterHistory, FilterState, FilterStats, compute_filtered_indices
from logdeck.marks import MarkManager
from logdeck.mdc import TRACE_KEY, KeyAggregate, MdcIndex, aggregate_selection, canonical_key, mdc_pairs
from logdeck.models import LogEntry
from logdeck.msg_filter import msg_matches
from logdeck.paginator import (
    LoadMode,
    RemoteSearchPaginator,
    SearchBackend,
    SearchOptions,
    SearchOutcome,
)
from logdeck.selection import SelectionModel
from logdeck.settings import SettingsStore
from logdeck.store import EntryStore
from logdeck.time_filter import TimeFilter

logger = logging.getLogger(__name__)

ONLY_MARKED_KEY = "onlyMarked"


class LogEngine:
    """One in-memory log buffer with its filters, marks, selection and search.

    The filtered view is a list of store positions recomputed whenever the entries or
    any filter change. Navigation works on that list; selections hold store positions
    and are carried across re-sorts by entry id.
    """

    def __init__(
        self,
        config: Config | None = None,
        backend: SearchBackend | None = None,
        settings: SettingsStore | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or Config()
        if settings is None and self.config.settings_file:
            settings = SettingsStore(self.config.settings_file)
        self.settings = settings

        self.marks = MarkManager(settings)
        self.store = EntryStore(mark_lookup=self.marks.color_for)
        self.dc_filter = DiagnosticContextFilter()
        self.time_filter = TimeFilter(clock)
        self.selection = SelectionModel()
        self.mdc_index = MdcIndex(self.config.max_mdc_keys, self.config.max_mdc_values_per_key)
        self.history = FilterHistory(self.config.filter_history_size)
        self.notices = Emitter("notices")
        self.changed = Emitter("view")

        self._filter_state = FilterState()
        self._search_text = ""
        self._filtered: list[int] = []
        self.last_stats = FilterStats()
        self._defer_depth = 0
        self._dirty = False

        self.paginator = None
        if backend is not None:
            self.paginator = RemoteSearchPaginator(
                self,
                backend,
                budget=self.config.remote_budget,
                page_size=self.config.page_size,
                notify=self._notify,
            )

        self.marks.changed.subscribe(self._on_marks_changed)
        self.marks.errors.subscribe(lambda msg: self._notify(Notice(NoticeLevel.WARNING, msg)))
        self.dc_filter.on_change(self._refresh)
        self.time_filter.on_change(self._refresh)

    # -- notifications --

    def on_notice(self, fn: Callable[[Notice], None]) -> Callable[[], None]:
        return self.notices.subscribe(fn)

    def _notify(self, notice: Notice):
        self.notices.emit(notice)

    # -- settings --

    def load_settings(self) -> bool:
        """Restore marks, custom colors and the only-marked flag."""
        if self.settings is None:
            return True
        with self._deferred():
            if not self.marks.load():
                return False
            result = self.settings.get()
            if result.ok:
                only_marked = bool(result.settings.get(ONLY_MARKED_KEY, False))
                if only_marked != self._filter_state.only_marked:
                    self._filter_state = replace(self._filter_state, only_marked=only_marked)
                    self._refresh()
        return True

    # -- ingestion --

    def append(self, batch, ignore_existing_for_remote: bool = False) -> list[LogEntry]:
        """Ingest a batch from any source. Returns the accepted entries."""
        before = self.store.entries
        accepted = self.store.append(batch, ignore_existing_for_remote=ignore_existing_for_remote)
        if not accepted:
            return accepted
        self.mdc_index.add_entries(accepted)
        self._retarget_selection(before)
        self._refresh()
        return accepted

    def clear(self):
        """Drop every entry along with dedup caches, pagination progress and selection."""
        self.store.clear()
        self.mdc_index.reset()
        self.selection.reset()
        if self.paginator is not None:
            self.paginator.reset()
        self._refresh()

    def remote_count(self) -> int:
        return self.store.remote_count()

    @property
    def entries(self) -> list[LogEntry]:
        return self.store.entries

    def _retarget_selection(self, before: list[LogEntry]):
        positions = self.selection.selected
        if self.selection.anchor is not None:
            positions.add(self.selection.anchor)
        if not positions:
            return
        ids = {p: before[p].id for p in positions if 0 <= p < len(before)}
        now = {e.id: i for i, e in enumerate(self.store.entries)}
        self.selection.retarget({p: now[i] for p, i in ids.items() if i in now})

    # -- filtering --

    @property
    def filter_state(self) -> FilterState:
        return self._filter_state

    @property
    def filtered_indices(self) -> list[int]:
        return list(self._filtered)

    def visible_entries(self) -> list[LogEntry]:
        entries = self.store.entries
        return [entries[i] for i in self._filtered]

    def set_standard_filter(self, **changes):
        """Update level/logger/thread/message filters; non-empty inputs go to history."""
        for kind in ("logger", "thread", "message"):
            if changes.get(kind):
                self.history.add(kind, changes[kind])
        self._filter_state = self._filter_state.with_standard(**changes)
        self._refresh()

    def set_standard_enabled(self, enabled: bool):
        self._filter_state = replace(self._filter_state, standard_enabled=bool(enabled))
        self._refresh()

    def set_only_marked(self, enabled: bool):
        enabled = bool(enabled)
        self._filter_state = replace(self._filter_state, only_marked=enabled)
        self._refresh()
        if self.settings is not None:
            result = self.settings.set({ONLY_MARKED_KEY: enabled})
            if not result.ok:
                self._notify(Notice(NoticeLevel.WARNING, f"Could not save view settings: {result.error}"))

    def _refresh(self):
        if self._defer_depth:
            self._dirty = True
            return
        self._dirty = False
        stats = FilterStats()
        self._filtered = compute_filtered_indices(
            self.store.entries,
            self._filter_state,
            dc_filter=self.dc_filter,
            time_filter=self.time_filter,
            stats=stats,
        )
        self.last_stats = stats
        self.changed.emit()

    @contextmanager
    def _deferred(self):
        """Collapse several filter changes into one recompute."""
        self._defer_depth += 1
        try:
            yield
        finally:
            self._defer_depth -= 1
            if not self._defer_depth and self._dirty:
                self._refresh()

    # -- marks --

    def _on_marks_changed(self):
        synced = self.marks.sync_entries(self.store.entries)
        self.store.replace_entries(synced)
        self._refresh()

    def apply_mark(self, color: str | None):
        """Mark every selected entry with ``color``; None removes their marks."""
        selected = self.selected_entries()
        if selected:
            self.marks.set_marks(selected, color)

    def marked_positions(self) -> list[int]:
        entries = self.store.entries
        return [vi for vi, pos in enumerate(self._filtered) if entries[pos].mark]

    # -- search text --

    @property
    def search_text(self) -> str:
        return self._search_text

    def set_search_text(self, text: str):
        self._search_text = str(text or "").strip()
        if self._search_text:
            self.history.add("search", self._search_text)
        self.changed.emit()

    def search_match_positions(self) -> list[int]:
        if not self._search_text:
            return []
        entries = self.store.entries
        return [
            vi for vi, pos in enumerate(self._filtered)
            if msg_matches(entries[pos].message, self._search_text)
        ]

    # -- selection and navigation --

    def selected_entries(self) -> list[LogEntry]:
        entries = self.store.entries
        return [entries[p] for p in self.selection.sorted_positions() if 0 <= p < len(entries)]

    def current_entry(self) -> LogEntry | None:
        pos = self.selection.current()
        if pos is None or not 0 <= pos < len(self.store.entries):
            return None
        return self.store.entries[pos]

    def toggle(self, position: int, extend: bool = False, additive: bool = False):
        self.selection.toggle(position, self._filtered, extend=extend, additive=additive)

    def move_by(self, direction: int, extend: bool = False) -> int | None:
        return self.selection.move_by(direction, self._filtered, extend=extend)

    def goto_start(self) -> int | None:
        return self.selection.goto_start(self._filtered)

    def goto_end(self) -> int | None:
        return self.selection.goto_end(self._filtered)

    def goto_marked(self, direction: int) -> int | None:
        return self.selection.goto_candidate(direction, self.marked_positions(), self._filtered)

    def goto_search_match(self, direction: int) -> int | None:
        return self.selection.goto_candidate(direction, self.search_match_positions(), self._filtered)

    # -- diagnostic context --

    def current_mdc_pairs(self) -> list[tuple[str, str]]:
        entry = self.current_entry()
        return mdc_pairs(entry.mdc) if entry is not None else []

    def selection_mdc(self) -> list[KeyAggregate]:
        return aggregate_selection(self.selected_entries())

    def add_dc_key(self, key: str):
        """Require ``key`` to be present, whatever its value."""
        with self._deferred():
            self.dc_filter.add_entry(key, WILDCARD)
            self.dc_filter.set_enabled(True)

    def add_dc_values(self, key: str, values: Iterable[str]):
        with self._deferred():
            for value in values:
                if value != WILDCARD:
                    self.dc_filter.add_entry(key, value)
            self.dc_filter.set_enabled(True)

    def add_dc_all_values(self, key: str) -> int:
        """Add every value of ``key`` seen in the current selection. Returns how many."""
        wanted = canonical_key(key)
        for agg in self.selection_mdc():
            if agg.key == wanted:
                values = [v for v in agg.sorted_values() if v != WILDCARD]
                self.add_dc_values(wanted, values)
                return len(values)
        return 0

    def adopt_trace_ids(self) -> int:
        """Filter on the trace ids of the selected entries. Returns how many were added."""
        trace_ids = set()
        for entry in self.selected_entries():
            for k, v in (entry.mdc or {}).items():
                if canonical_key(k) == TRACE_KEY and v not in (None, ""):
                    trace_ids.add(str(v))
        if trace_ids:
            self.add_dc_values(TRACE_KEY, sorted(trace_ids))
            logger.info("Adopted %d trace ids into the context filter", len(trace_ids))
        return len(trace_ids)

    # -- remote search --

    def _require_paginator(self) -> RemoteSearchPaginator:
        if self.paginator is None:
            raise ValueError("No search backend configured")
        return self.paginator

    def search_options(self, **overrides) -> SearchOptions:
        """Search options seeded from the configuration."""
        base = SearchOptions(
            index=self.config.search_index,
            url=self.config.search_url or None,
            environment_case=self.config.environment_case,
            allow_insecure_tls=self.config.allow_insecure_tls,
            keep_alive=self.config.keep_alive or None,
        )
        return replace(base, **overrides)

    async def search(self, options: SearchOptions, mode: LoadMode = LoadMode.APPEND) -> SearchOutcome:
        return await self._require_paginator().start_search(options, mode)

    async def load_more(self) -> SearchOutcome:
        return await self._require_paginator().fetch_more()

    def set_remote_budget(self, budget: int):
        self._require_paginator().set_budget(budget)

    def search_progress(self) -> dict:
        return self._require_paginator().progress()
