"""Entry store: stable ordering, id assignment and ingestion bookkeeping."""

import logging
import threading
from collections.abc import Mapping
from typing import Callable

from logdeck.dedup import Deduplicator
from logdeck.models import LogEntry, entry_from_dict, entry_signature, is_remote, sort_key

logger = logging.getLogger(__name__)


class IngestStats:
    """Running counters for accepted and dropped records."""

    def __init__(self):
        self._lock = threading.Lock()
        self._batches = 0
        self._accepted = 0
        self._dropped = 0
        self._clears = 0

    def record_batch(self, received: int, accepted: int):
        with self._lock:
            self._batches += 1
            self._accepted += accepted
            self._dropped += received - accepted

    def record_clear(self):
        with self._lock:
            self._clears += 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "batches": self._batches,
                "accepted": self._accepted,
                "dropped": self._dropped,
                "clears": self._clears,
            }


class EntryStore:
    """Owns the ordered entry sequence.

    Every append merges accepted records and re-sorts by (timestamp, id). Ids come
    from a cursor advanced under a lock so concurrent appends never share ids.
    """

    def __init__(self, mark_lookup: Callable[[str], str | None] | None = None):
        self._entries: list[LogEntry] = []
        self._next_id = 1
        self._lock = threading.Lock()
        self._dedup = Deduplicator()
        self._mark_lookup = mark_lookup
        self.stats = IngestStats()

    @property
    def entries(self) -> list[LogEntry]:
        return self._entries

    @property
    def next_id(self) -> int:
        return self._next_id

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, position: int) -> LogEntry:
        return self._entries[position]

    def remote_count(self) -> int:
        return sum(1 for e in self._entries if is_remote(e))

    def append(self, batch, ignore_existing_for_remote: bool = False) -> list[LogEntry]:
        """Ingest a batch and return the accepted entries with their new ids.

        Malformed batches (not a list or tuple, or empty) are a no-op.
        """
        if not isinstance(batch, (list, tuple)) or not batch:
            return []

        records = _coerce(batch)
        with self._lock:
            existing_remote = None
            if not ignore_existing_for_remote and any(is_remote(e) for e in records):
                existing_remote = {entry_signature(e) for e in self._entries if is_remote(e)}

            accepted = self._dedup.filter_batch(records, existing_remote)
            if not accepted:
                self.stats.record_batch(len(batch), 0)
                return []

            base = self._next_id
            self._next_id = base + len(accepted)
            fresh = [self._attach_mark(e.with_id(base + i)) for i, e in enumerate(accepted)]
            self._dedup.remember(fresh)

            merged = self._entries + fresh
            merged.sort(key=sort_key)
            self._entries = merged

        self.stats.record_batch(len(batch), len(fresh))
        logger.debug("Appended %d of %d records (store size %d)", len(fresh), len(batch), len(merged))
        return fresh

    def replace_entries(self, entries: list[LogEntry]):
        """Swap in a same-length sequence produced by mark synchronization."""
        with self._lock:
            self._entries = entries

    def clear(self):
        """Drop every entry, reset the id cursor and the dedup caches."""
        with self._lock:
            self._entries = []
            self._next_id = 1
            self._dedup.reset()
        self.stats.record_clear()
        logger.info("Entry store cleared")

    def _attach_mark(self, entry: LogEntry) -> LogEntry:
        if self._mark_lookup is None:
            return entry
        color = self._mark_lookup(entry_signature(entry))
        if color != entry.mark:
            return entry.with_mark(color)
        return entry


def _coerce(batch) -> list[LogEntry]:
    records = []
    for item in batch:
        if isinstance(item, LogEntry):
            records.append(item)
        elif isinstance(item, Mapping):
            records.append(entry_from_dict(item))
    return records
