"""Filter pipeline: only-marked, standard field filters, time window, diagnostic context."""

import logging
from dataclasses import dataclass, field, replace
from typing import Protocol, Sequence

from logdeck.models import LogEntry, is_remote
from logdeck.msg_filter import msg_matches

logger = logging.getLogger(__name__)


class ContextMatcher(Protocol):
    def matches(self, mdc) -> bool: ...


class TimeMatcher(Protocol):
    def matches_ts(self, ts) -> bool: ...


@dataclass(frozen=True)
class StandardFilter:
    level: str = ""
    logger: str = ""
    thread: str = ""
    message: str = ""

    def is_empty(self) -> bool:
        return not (self.level or self.logger or self.thread or self.message)


@dataclass(frozen=True)
class FilterState:
    standard: StandardFilter = field(default_factory=StandardFilter)
    standard_enabled: bool = True
    only_marked: bool = False

    def with_standard(self, **changes) -> "FilterState":
        return replace(self, standard=replace(self.standard, **changes))


@dataclass
class FilterStats:
    total: int = 0
    passed: int = 0
    rejected_only_marked: int = 0
    rejected_level: int = 0
    rejected_logger: int = 0
    rejected_thread: int = 0
    rejected_message: int = 0
    rejected_time: int = 0
    rejected_context: int = 0


def _standard_rejection(entry: LogEntry, flt: StandardFilter) -> str | None:
    if flt.level and str(entry.level or "").upper() != flt.level.upper():
        return "level"
    if flt.logger and flt.logger.lower() not in str(entry.logger or "").lower():
        return "logger"
    if flt.thread and flt.thread.lower() not in str(entry.thread or "").lower():
        return "thread"
    if flt.message and not msg_matches(entry.message, flt.message):
        return "message"
    return None


def compute_filtered_indices(
    entries: Sequence[LogEntry],
    state: FilterState,
    dc_filter: ContextMatcher | None = None,
    time_filter: TimeMatcher | None = None,
    stats: FilterStats | None = None,
) -> list[int]:
    """Store positions of the entries that pass every active stage, in store order.

    Stages run in a fixed order and the first failure excludes the entry. The time
    window only applies to remote-origin entries. A raising time matcher excludes the
    entry; a raising context matcher is logged and does not exclude it.
    """
    stats = stats if stats is not None else FilterStats()
    out = []
    check_standard = state.standard_enabled and not state.standard.is_empty()

    for i, entry in enumerate(entries):
        stats.total += 1
        if entry is None:
            continue
        if state.only_marked and not entry.mark:
            stats.rejected_only_marked += 1
            continue
        if check_standard:
            reason = _standard_rejection(entry, state.standard)
            if reason is not None:
                setattr(stats, f"rejected_{reason}", getattr(stats, f"rejected_{reason}") + 1)
                continue
        if time_filter is not None and is_remote(entry):
            try:
                in_window = time_filter.matches_ts(entry.timestamp)
            except Exception:
                logger.warning("Time filter failed on entry %d", entry.id, exc_info=True)
                in_window = False
            if not in_window:
                stats.rejected_time += 1
                continue
        if dc_filter is not None:
            try:
                in_context = dc_filter.matches(entry.mdc or {})
            except Exception:
                logger.warning("Context filter failed on entry %d", entry.id, exc_info=True)
                in_context = True
            if not in_context:
                stats.rejected_context += 1
                continue
        stats.passed += 1
        out.append(i)

    if stats.total:
        logger.debug("Filter stats: %s", stats)
        if not stats.passed:
            logger.warning("All %d entries filtered out (state=%s)", stats.total, state)
    return out


class FilterHistory:
    """Most-recent-first history of filter inputs, per field."""

    FIELDS = ("search", "logger", "thread", "message")

    def __init__(self, max_size: int = 10):
        self._max_size = max_size
        self._items: dict[str, list[str]] = {name: [] for name in self.FIELDS}

    def add(self, kind: str, value: str):
        if kind not in self._items:
            raise ValueError(f"Unknown filter history kind: {kind}")
        value = str(value or "").strip()
        if not value:
            return
        items = [value] + [v for v in self._items[kind] if v != value]
        self._items[kind] = items[: self._max_size]

    def get(self, kind: str) -> list[str]:
        return list(self._items.get(kind, []))
