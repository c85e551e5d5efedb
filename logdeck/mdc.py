"""Diagnostic-context (MDC) key canonicalization and aggregation."""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Mapping

from logdeck.models import LogEntry

logger = logging.getLogger(__name__)

TRACE_KEY = "TraceID"

# Lower-cased variant -> canonical display name
CANONICAL_KEYS = {
    "traceid": TRACE_KEY,
    "trace_id": TRACE_KEY,
    "trace.id": TRACE_KEY,
    "trace-id": TRACE_KEY,
    "x-trace-id": TRACE_KEY,
    "x_trace_id": TRACE_KEY,
    "x.trace.id": TRACE_KEY,
    "trace": TRACE_KEY,
    "spanid": "SpanID",
    "span_id": "SpanID",
    "span.id": "SpanID",
    "requestid": "RequestID",
    "request_id": "RequestID",
    "request.id": "RequestID",
    "correlationid": "CorrelationID",
    "correlation_id": "CorrelationID",
    "correlation.id": "CorrelationID",
    "sessionid": "SessionID",
    "session_id": "SessionID",
    "session.id": "SessionID",
    "userid": "UserID",
    "user_id": "UserID",
    "user.id": "UserID",
}


def canonical_key(key) -> str:
    """Map a raw MDC key to its canonical name; unknown keys are kept as-is (trimmed)."""
    raw = str(key or "").strip()
    if not raw:
        return ""
    return CANONICAL_KEYS.get(raw.lower(), raw)


def _value(v) -> str:
    return "" if v is None else str(v)


def mdc_pairs(mdc: Mapping | None) -> list[tuple[str, str]]:
    """Group one entry's MDC by canonical key.

    Each key's non-empty values are sorted, de-duplicated and joined with `` | ``.
    The result is sorted by key then value.
    """
    if not isinstance(mdc, Mapping):
        return []
    by_key: dict[str, set[str]] = {}
    for k, v in mdc.items():
        ck = canonical_key(k)
        if not ck:
            continue
        by_key.setdefault(ck, set()).add(_value(v))

    pairs = []
    for k, values in by_key.items():
        joined = " | ".join(sorted(v for v in values if v != ""))
        pairs.append((k, joined))
    pairs.sort()
    return pairs


@dataclass(frozen=True)
class KeyAggregate:
    key: str
    values: dict[str, int]   # distinct raw value -> occurrence count
    entries: int             # number of selected entries carrying the key

    def sorted_values(self) -> list[str]:
        return sorted(self.values)


def aggregate_selection(entries: Iterable[LogEntry]) -> list[KeyAggregate]:
    """Per canonical key, the distinct values across a multi-entry selection."""
    values: dict[str, Counter] = {}
    carriers: Counter = Counter()
    for entry in entries:
        mdc = entry.mdc
        if not isinstance(mdc, Mapping):
            continue
        seen_keys = set()
        for k, v in mdc.items():
            ck = canonical_key(k)
            if not ck:
                continue
            values.setdefault(ck, Counter())[_value(v)] += 1
            seen_keys.add(ck)
        carriers.update(seen_keys)

    return [
        KeyAggregate(key=k, values=dict(values[k]), entries=carriers[k])
        for k in sorted(values)
    ]


class MdcIndex:
    """Known MDC keys and values seen across ingested entries, with memory caps."""

    def __init__(self, max_keys: int = 1000, max_values_per_key: int = 10000):
        self._max_keys = max_keys
        self._max_values = max_values_per_key
        self._keys: dict[str, set[str]] = {}

    def add_entries(self, entries: Iterable[LogEntry]) -> bool:
        """Index string values. Returns True when anything new was recorded."""
        changed = False
        for entry in entries:
            mdc = entry.mdc
            if not isinstance(mdc, Mapping):
                continue
            for k, v in mdc.items():
                ck = canonical_key(k)
                if not ck or not isinstance(v, str):
                    continue
                values = self._keys.get(ck)
                if values is None:
                    if len(self._keys) >= self._max_keys:
                        continue
                    values = self._keys[ck] = set()
                    changed = True
                if v not in values and len(values) < self._max_values:
                    values.add(v)
                    changed = True
        return changed

    def keys(self) -> list[str]:
        return sorted(self._keys)

    def values(self, key: str) -> list[str]:
        return sorted(self._keys.get(canonical_key(key), ()))

    def reset(self):
        self._keys.clear()
