"""Output formatters: text, NDJSON and ANSI-colored text rows."""

import json
from typing import Callable

from logdeck.models import LogEntry

# ANSI color codes
COLORS = {
    "TRACE": "\033[90m",   # gray
    "DEBUG": "\033[36m",   # cyan
    "INFO": "\033[32m",    # green
    "WARN": "\033[33m",    # yellow
    "WARNING": "\033[33m", # yellow
    "ERROR": "\033[31m",   # red
    "FATAL": "\033[35m",   # magenta
}
RESET = "\033[0m"
MARK_GLYPH = "*"


def _ts(entry: LogEntry) -> str:
    return "-" if entry.timestamp in (None, "") else str(entry.timestamp)


def format_text(entry: LogEntry) -> str:
    """One line per entry; marked entries get a leading ``*``."""
    mark = MARK_GLYPH if entry.mark else " "
    level = (entry.level or "-").upper()
    thread = f" [{entry.thread}]" if entry.thread else ""
    line = f"{mark} {_ts(entry)} {level:<5} {entry.logger or '-'}{thread} {entry.message}"
    if entry.stack_trace:
        line += "\n" + entry.stack_trace
    return line


def format_json(entry: LogEntry) -> str:
    """NDJSON, one object per line, compatible with jq."""
    return json.dumps({
        "id": entry.id,
        "timestamp": entry.timestamp if entry.timestamp is None else str(entry.timestamp),
        "level": entry.level,
        "logger": entry.logger,
        "thread": entry.thread,
        "message": entry.message,
        "source": entry.source,
        "mdc": entry.mdc,
        "mark": entry.mark,
    })


def format_color(entry: LogEntry) -> str:
    level = (entry.level or "-").upper()
    color = COLORS.get(level, "")
    mark = MARK_GLYPH if entry.mark else " "
    return f"{mark} {_ts(entry)} [{color}{level}{RESET}] {entry.logger or '-'} {entry.message}"


def get_formatter(output_format: str = "text", color: bool = False) -> Callable[[LogEntry], str]:
    """Factory that returns the right formatter based on args."""
    if output_format == "json":
        return format_json
    if color:
        return format_color
    return format_text
