"""File ingestion: glob expansion and parsing of JSON and plain-text log files."""

import glob
import json
import logging
import os
import re
from typing import Generator

from logdeck.models import LogEntry, entry_from_dict

logger = logging.getLogger(__name__)

TEXT_PATTERN = re.compile(
    r"^(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:Z|[+-]\d{2}:?\d{2})?)"
    r"\s+(?:\[?(TRACE|DEBUG|INFO|WARNING|WARN|ERROR|FATAL|CRITICAL)\]?(?=\s|$))?\s*(.*)$",
    re.IGNORECASE,
)


def expand_paths(raw_paths: list[str]) -> list[str]:
    """Expand globs, deduplicate, and validate that files exist.

    Raises FileNotFoundError if a non-glob path doesn't exist or nothing matched.
    """
    expanded = []
    seen = set()

    for raw in raw_paths:
        if any(c in raw for c in ("*", "?", "[")):
            candidates = sorted(glob.glob(raw))
        else:
            if not os.path.isfile(raw):
                raise FileNotFoundError(f"File not found: {raw}")
            candidates = [raw]
        for path in candidates:
            if path not in seen:
                seen.add(path)
                expanded.append(path)

    if not expanded:
        raise FileNotFoundError("No log files found matching the given paths")
    return expanded


def _parse_text(line: str) -> dict:
    match = TEXT_PATTERN.match(line)
    if not match:
        return {"message": line}
    ts, level, message = match.groups()
    record = {"timestamp": ts.replace(",", "."), "message": message}
    if level:
        record["level"] = level.upper()
    return record


def parse_line(line: str) -> dict | None:
    """Parse one line into a loosely shaped record. Blank lines give None.

    Handles a whole-line JSON object, a JSON object trailing a text prefix (the
    prefix becomes the fallback message), and timestamped plain text.
    """
    stripped = line.strip()
    if not stripped:
        return None

    if stripped.startswith("{"):
        try:
            obj = json.loads(stripped)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            return obj

    brace = stripped.find("{")
    if brace > 0 and stripped.endswith("}"):
        try:
            obj = json.loads(stripped[brace:])
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            prefix = _parse_text(stripped[:brace].strip())
            merged = {k: v for k, v in prefix.items() if k != "message"}
            merged.update(obj)
            if not any(merged.get(k) for k in ("message", "msg", "log")):
                merged["message"] = prefix.get("message", "")
            return merged

    return _parse_text(stripped)


def read_entries(path: str) -> list[LogEntry]:
    """Parse a whole file into entries tagged with ``path`` as their source."""
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        content = f.read()

    records = None
    if content.lstrip().startswith("["):
        try:
            loaded = json.loads(content)
        except json.JSONDecodeError:
            logger.debug("%s looks like a JSON array but does not parse; reading lines", path)
        else:
            if isinstance(loaded, list):
                records = [r for r in loaded if isinstance(r, dict)]

    if records is None:
        records = [r for r in (parse_line(line) for line in content.splitlines()) if r is not None]

    entries = [entry_from_dict(r, source=path) for r in records]
    logger.info("Read %d entries from %s", len(entries), path)
    return entries


def read_multiple(paths: list[str]) -> Generator[tuple[str, list[LogEntry]], None, None]:
    """Yield (path, entries) per file; unreadable files are logged and skipped."""
    for path in paths:
        try:
            yield path, read_entries(path)
        except OSError as e:
            logger.warning("Could not read %s: %s", path, e)
