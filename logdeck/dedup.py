"""Per-scope signature deduplication for ingestion batches."""

import logging
from typing import Iterable

from logdeck.models import LogEntry, Origin, classify_origin, entry_signature

logger = logging.getLogger(__name__)


class Deduplicator:
    """Decides which records of a batch are already known.

    Remote-origin records share one scope; file-origin records get one scope per
    distinct ``source`` so two files may hold identical lines. Other-origin records
    are never deduplicated.
    """

    def __init__(self):
        self._file_sigs: dict[str, set[str]] = {}

    def filter_batch(
        self,
        batch: Iterable[LogEntry],
        existing_remote: set[str] | None = None,
    ) -> list[LogEntry]:
        """Return the records of ``batch`` that are new, in their original order.

        ``existing_remote`` holds signatures of remote-origin entries already in the
        store; pass None to skip that cross-check (replace-mode searches).
        """
        batch_remote: set[str] = set()
        batch_files: dict[str, set[str]] = {}
        accepted = []

        for entry in batch:
            origin = classify_origin(entry.source)
            if origin is Origin.OTHER:
                accepted.append(entry)
                continue

            sig = entry_signature(entry)
            if origin is Origin.REMOTE:
                if existing_remote is not None and sig in existing_remote:
                    continue
                if sig in batch_remote:
                    continue
                batch_remote.add(sig)
            else:
                known = self._file_sigs.get(entry.source)
                if known is not None and sig in known:
                    continue
                seen = batch_files.setdefault(entry.source, set())
                if sig in seen:
                    continue
                seen.add(sig)
            accepted.append(entry)

        dropped = 0
        if isinstance(batch, (list, tuple)):
            dropped = len(batch) - len(accepted)
        if dropped:
            logger.debug("Dropped %d duplicate records", dropped)
        return accepted

    def remember(self, entries: Iterable[LogEntry]):
        """Record accepted file-origin entries in their per-source history."""
        for entry in entries:
            if classify_origin(entry.source) is Origin.FILE:
                self._file_sigs.setdefault(entry.source, set()).add(entry_signature(entry))

    def known_sources(self) -> list[str]:
        return sorted(self._file_sigs)

    def reset(self):
        self._file_sigs.clear()
