"""Time window filter, relative (anchored duration) or absolute (from/to)."""

import logging
import re
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from logdeck.emitter import Emitter
from logdeck.models import parse_timestamp

logger = logging.getLogger(__name__)

DURATION_PATTERN = re.compile(r"^([0-9]+)\s*([smhdw])$")

UNIT_MS = {
    "s": 1_000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
    "w": 604_800_000,
}


class TimeMode(Enum):
    RELATIVE = "relative"
    ABSOLUTE = "absolute"


def parse_duration(text) -> int | None:
    """Parse ``15m`` / ``2h`` / ``7d`` style durations into milliseconds."""
    match = DURATION_PATTERN.match(str(text or "").strip().lower())
    if not match:
        return None
    amount = int(match.group(1))
    if amount <= 0:
        return None
    return amount * UNIT_MS[match.group(2)]


def _to_ms(value) -> float | None:
    ts = parse_timestamp(value)
    return None if ts is None else ts.timestamp() * 1000.0


def _to_iso(value) -> str | None:
    ts = parse_timestamp(value)
    return None if ts is None else ts.isoformat()


@dataclass(frozen=True)
class TimeFilterState:
    enabled: bool = False
    mode: TimeMode = TimeMode.RELATIVE
    duration: str = ""
    start: str | None = None    # ISO, absolute mode only
    end: str | None = None      # ISO, absolute mode only
    anchor_ms: float | None = None


class TimeFilter:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._state = TimeFilterState()
        self._changed = Emitter("time-filter")

    def on_change(self, fn: Callable[[], None]) -> Callable[[], None]:
        return self._changed.subscribe(fn)

    def get_state(self) -> TimeFilterState:
        return self._state

    def is_enabled(self) -> bool:
        return self._state.enabled

    def set_enabled(self, enabled: bool):
        if bool(enabled) != self._state.enabled:
            self._state = replace(self._state, enabled=bool(enabled))
            self._changed.emit()

    def set_relative(self, duration: str):
        """Window of ``duration`` ending now; the anchor is fixed at call time."""
        self._state = replace(
            self._state,
            mode=TimeMode.RELATIVE,
            duration=str(duration or "").strip(),
            start=None,
            end=None,
            anchor_ms=self._now_ms(),
        )
        self._changed.emit()

    def set_absolute(self, start=None, end=None):
        self._state = replace(
            self._state,
            mode=TimeMode.ABSOLUTE,
            duration="",
            start=_to_iso(start),
            end=_to_iso(end),
            anchor_ms=None,
        )
        self._changed.emit()

    def refresh_anchor(self):
        if self._state.mode is TimeMode.RELATIVE:
            self._state = replace(self._state, anchor_ms=self._now_ms())
            self._changed.emit()

    def reset(self):
        self._state = TimeFilterState()
        self._changed.emit()

    def window(self) -> tuple[float | None, float | None]:
        """Active (from_ms, to_ms) bounds; (None, None) means no effective window."""
        state = self._state
        if not state.enabled:
            return None, None
        if state.mode is TimeMode.RELATIVE:
            span = parse_duration(state.duration)
            if not span:
                return None, None
            base = state.anchor_ms if state.anchor_ms is not None else self._now_ms()
            return base - span, base
        return _to_ms(state.start), _to_ms(state.end)

    def matches_ts(self, ts) -> bool:
        if not self._state.enabled:
            return True
        start, end = self.window()
        if start is None and end is None:
            return True
        ms = _to_ms(ts)
        if ms is None:
            return False
        if start is not None and ms < start:
            return False
        return not (end is not None and ms > end)

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    @staticmethod
    def describe(state: TimeFilterState) -> str:
        if state.mode is TimeMode.RELATIVE:
            return f"last {state.duration or '?'}"
        return f"{state.start or '-inf'} .. {state.end or '+inf'}"
