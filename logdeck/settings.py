"""JSON settings persistence for marks, custom colors and view flags."""

import json
import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettingsResult:
    ok: bool
    settings: dict = field(default_factory=dict)
    error: str | None = None


class SettingsStore:
    """Settings file holding one JSON object; ``set`` merges a patch into it."""

    def __init__(self, path: str):
        self._path = path
        self._data: dict | None = None

    @property
    def path(self) -> str:
        return self._path

    def _load(self) -> dict:
        if self._data is not None:
            return self._data
        if not os.path.exists(self._path):
            self._data = {}
            return self._data
        with open(self._path, "r", encoding="utf-8") as f:
            loaded = json.load(f)
        if isinstance(loaded, dict):
            logger.info("Loaded settings from %s (%d keys)", self._path, len(loaded))
        else:
            logger.warning("Ignoring settings file %s: top level is not an object", self._path)
            loaded = {}
        self._data = loaded
        return self._data

    def get(self) -> SettingsResult:
        try:
            return SettingsResult(ok=True, settings=dict(self._load()))
        except (OSError, ValueError) as e:
            logger.warning("Failed to read settings %s: %s", self._path, e)
            return SettingsResult(ok=False, error=str(e))

    def set(self, patch: dict) -> SettingsResult:
        """Merge ``patch`` and write atomically (tmp file then replace)."""
        try:
            data = dict(self._load())
            data.update(patch)
            os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
            tmp_path = self._path + ".tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to persist settings to %s: %s", self._path, e)
            return SettingsResult(ok=False, error=str(e))
        self._data = data
        return SettingsResult(ok=True, settings=dict(data))
