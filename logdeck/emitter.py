"""Publish/subscribe helpers and operator notices."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class Emitter:
    """Listener registry. ``subscribe`` returns a callable that unsubscribes."""

    def __init__(self, name: str = "emitter"):
        self._name = name
        self._listeners: list[Callable] = []

    def subscribe(self, fn: Callable) -> Callable[[], None]:
        if not callable(fn):
            return lambda: None
        self._listeners.append(fn)

        def unsubscribe():
            if fn in self._listeners:
                self._listeners.remove(fn)

        return unsubscribe

    def emit(self, *args):
        """Call every listener; a failing listener is logged and skipped."""
        for fn in list(self._listeners):
            try:
                fn(*args)
            except Exception:
                logger.warning("Listener error in %s", self._name, exc_info=True)

    def __len__(self) -> int:
        return len(self._listeners)


class NoticeLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
