"""Diagnostic-context filter: (key, value, active) constraints over an entry's MDC."""

import logging
from dataclasses import dataclass
from typing import Callable, Mapping

from logdeck.emitter import Emitter
from logdeck.mdc import canonical_key

logger = logging.getLogger(__name__)

WILDCARD = ""


@dataclass(frozen=True)
class DcEntry:
    key: str
    value: str
    active: bool = True


class DiagnosticContextFilter:
    """Matches when, for every key with active constraints, one of its values is present.

    OR across the configured values of a key, AND across distinct keys. An empty
    value is a wildcard that only requires the key to be present.
    """

    def __init__(self):
        self._entries: dict[tuple[str, str], DcEntry] = {}
        self._enabled = True
        self._changed = Emitter("dc-filter")

    def on_change(self, fn: Callable[[], None]) -> Callable[[], None]:
        return self._changed.subscribe(fn)

    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool):
        enabled = bool(enabled)
        if enabled != self._enabled:
            self._enabled = enabled
            self._changed.emit()

    @staticmethod
    def _normalize(key, value) -> tuple[str, str]:
        return canonical_key(key), "" if value is None else str(value)

    def add_entry(self, key, value=WILDCARD):
        k, v = self._normalize(key, value)
        if not k or (k, v) in self._entries:
            return
        self._entries[(k, v)] = DcEntry(k, v, True)
        self._changed.emit()

    def remove_entry(self, key, value=WILDCARD):
        if self._entries.pop(self._normalize(key, value), None) is not None:
            self._changed.emit()

    def set_active(self, key, value, active: bool):
        ident = self._normalize(key, value)
        current = self._entries.get(ident)
        if current is not None and current.active != bool(active):
            self._entries[ident] = DcEntry(current.key, current.value, bool(active))
            self._changed.emit()

    def reset(self):
        self._entries.clear()
        self._changed.emit()

    def get_entries(self) -> list[DcEntry]:
        return sorted(self._entries.values(), key=lambda e: (e.key, e.value))

    def matches(self, mdc) -> bool:
        if not self._enabled:
            return True
        groups: dict[str, list[str]] = {}
        for entry in self._entries.values():
            if entry.active:
                groups.setdefault(entry.key, []).append(entry.value)
        if not groups:
            return True

        present: dict[str, set[str]] = {}
        if isinstance(mdc, Mapping):
            for k, v in mdc.items():
                ck = canonical_key(k)
                if ck in groups:
                    present.setdefault(ck, set()).add("" if v is None else str(v))

        for key, wanted in groups.items():
            found = present.get(key)
            if found is None:
                return False
            if not any(v == WILDCARD or v in found for v in wanted):
                return False
        return True
