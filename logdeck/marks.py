"""Mark manager: signature-keyed highlight colors with best-effort persistence."""

import logging
from typing import Iterable

from logdeck.emitter import Emitter
from logdeck.models import LogEntry, entry_signature
from logdeck.settings import SettingsStore

logger = logging.getLogger(__name__)

BASE_MARK_COLORS = (
    "#F59E0B",  # amber
    "#EF4444",  # red
    "#10B981",  # emerald
    "#3B82F6",  # blue
    "#8B5CF6",  # violet
    "#EC4899",  # pink
    "#14B8A6",  # teal
    "#6B7280",  # gray
)


class MarkManager:
    """Source of truth for marks.

    Entries carry a denormalized copy of their color; ``sync_entries`` brings them
    back in line whenever the map changes.
    """

    def __init__(self, settings: SettingsStore | None = None):
        self._settings = settings
        self._marks: dict[str, str] = {}
        self._custom_colors: list[str] = []
        self.changed = Emitter("marks")
        self.errors = Emitter("marks-errors")

    def load(self) -> bool:
        """Pull the persisted map and custom colors. Returns False on read failure."""
        if self._settings is None:
            return True
        result = self._settings.get()
        if not result.ok:
            self.errors.emit(f"Could not load marks: {result.error}")
            return False
        marks = result.settings.get("marksMap")
        if isinstance(marks, dict):
            self._marks = {str(k): str(v) for k, v in marks.items() if v}
        colors = result.settings.get("customMarkColors")
        if isinstance(colors, list):
            self._custom_colors = [str(c) for c in colors if c]
        self.changed.emit()
        return True

    @property
    def marks(self) -> dict[str, str]:
        return dict(self._marks)

    def color_for(self, signature: str) -> str | None:
        return self._marks.get(signature)

    def set_mark(self, signature: str, color: str | None):
        """Set or (with None) remove the mark for ``signature``."""
        if color:
            if self._marks.get(signature) == color:
                return
            self._marks[signature] = color
        elif self._marks.pop(signature, None) is None:
            return
        self._persist({"marksMap": dict(self._marks)})
        self.changed.emit()

    def set_marks(self, entries: Iterable[LogEntry], color: str | None):
        """Apply one color (or removal) to many entries with a single write."""
        changed = False
        for entry in entries:
            sig = entry_signature(entry)
            if color and self._marks.get(sig) != color:
                self._marks[sig] = color
                changed = True
            elif not color and self._marks.pop(sig, None) is not None:
                changed = True
        if changed:
            self._persist({"marksMap": dict(self._marks)})
            self.changed.emit()

    def sync_entries(self, entries: list[LogEntry]) -> list[LogEntry]:
        """Return entries whose marks match the map, reusing unaffected objects."""
        out = []
        for entry in entries:
            color = self._marks.get(entry_signature(entry))
            out.append(entry if color == entry.mark else entry.with_mark(color))
        return out

    @property
    def palette(self) -> list[str]:
        return list(BASE_MARK_COLORS) + self._custom_colors

    @property
    def custom_colors(self) -> list[str]:
        return list(self._custom_colors)

    def add_custom_color(self, color: str):
        color = str(color or "").strip()
        if not color or color in self._custom_colors:
            return
        self._custom_colors.append(color)
        self._persist({"customMarkColors": list(self._custom_colors)})

    def _persist(self, patch: dict):
        if self._settings is None:
            return
        result = self._settings.set(patch)
        if not result.ok:
            logger.warning("Mark change kept in memory only: %s", result.error)
            self.errors.emit(f"Could not save marks: {result.error}")
