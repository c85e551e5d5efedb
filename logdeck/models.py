"""Log entry model, origin classification, signatures and ordering."""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

REMOTE_SCHEME = "elastic://"
SCHEME_SEPARATOR = "://"

# Messages above this size contribute a prefix plus their length to the signature
MAX_SIGNATURE_MESSAGE = 10 * 1024

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Origin(Enum):
    REMOTE = "remote"
    FILE = "file"
    OTHER = "other"


@dataclass(frozen=True)
class LogEntry:
    timestamp: Any = None        # ISO string, datetime, epoch millis or None
    level: Optional[str] = None
    logger: Optional[str] = None
    thread: Optional[str] = None
    message: str = ""
    source: str = ""
    stack_trace: Optional[str] = None
    mdc: Optional[dict] = field(default=None, hash=False)
    mark: Optional[str] = None
    id: int = 0
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def origin(self) -> Origin:
        return classify_origin(self.source)

    def with_mark(self, color: Optional[str]) -> "LogEntry":
        """Copy of this entry carrying ``color`` as its mark."""
        return replace(self, mark=color)

    def with_id(self, entry_id: int) -> "LogEntry":
        return replace(self, id=entry_id)


def classify_origin(source) -> Origin:
    if not isinstance(source, str):
        return Origin.OTHER
    if source.startswith(REMOTE_SCHEME):
        return Origin.REMOTE
    if SCHEME_SEPARATOR not in source:
        return Origin.FILE
    return Origin.OTHER


def is_remote(entry: LogEntry) -> bool:
    return classify_origin(entry.source) is Origin.REMOTE


def _text(value) -> str:
    return "" if value is None else str(value)


def entry_signature(entry: LogEntry) -> str:
    """Content key ``timestamp|logger|message`` used for dedup and marks."""
    message = _text(entry.message)
    if len(message) > MAX_SIGNATURE_MESSAGE:
        message = f"{message[:MAX_SIGNATURE_MESSAGE]}[len:{len(message)}]"
    return f"{_text(entry.timestamp)}|{_text(entry.logger)}|{message}"


def parse_timestamp(value) -> datetime | None:
    """Parse a timestamp into an aware datetime. Returns None when unparseable.

    Numbers are epoch milliseconds; naive values are assumed to be UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_key(entry: LogEntry) -> tuple:
    """Total order: valid timestamps ascending, then unparseable ones, ties by id."""
    ts = parse_timestamp(entry.timestamp)
    if ts is None:
        return (1, EPOCH, entry.id)
    return (0, ts, entry.id)


def _first(obj: Mapping, *keys):
    for key in keys:
        value = obj.get(key)
        if value not in (None, ""):
            return value
    return None


def _stack_from(obj: Mapping) -> str | None:
    candidates = [_first(obj, "stack_trace", "stackTrace", "stacktrace")]
    for key in ("error", "err", "exception", "cause", "throwable"):
        nested = obj.get(key)
        if isinstance(nested, Mapping):
            candidates.append(_first(nested, "stack", "trace", "stackTrace"))
        elif isinstance(nested, str):
            candidates.append(nested)
    candidates.append(_first(obj, "exception.stacktrace", "error.stacktrace"))

    for value in candidates:
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            text = "\n".join(_text(v) for v in value)
        else:
            text = str(value)
        if text.strip():
            return text
    return None


def entry_from_dict(obj: Mapping, source: str = "", fallback_message: str = "") -> LogEntry:
    """Build a LogEntry from a loosely shaped record (JSON log line, API payload)."""
    mdc = obj.get("mdc")
    if not isinstance(mdc, Mapping):
        mdc = obj.get("context") if isinstance(obj.get("context"), Mapping) else None
    level = _first(obj, "level", "severity", "loglevel")
    return LogEntry(
        timestamp=_first(obj, "timestamp", "@timestamp", "time"),
        level=str(level) if level is not None else None,
        logger=_first(obj, "logger", "logger_name", "category"),
        thread=_first(obj, "thread", "thread_name"),
        message=_text(_first(obj, "message", "msg", "log") or fallback_message),
        source=str(obj.get("source") or source or ""),
        stack_trace=_stack_from(obj),
        mdc=dict(mdc) if mdc else None,
        mark=obj.get("mark"),
        raw=dict(obj),
    )
