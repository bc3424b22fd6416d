"""Default preset management.

When a preset is marked as the default, new instances start from its
settings (record field names, display units) instead of the built-in
defaults.
"""

from __future__ import annotations

import logging
from typing import Any

from .storage import LocalStorage

logger = logging.getLogger(__name__)

DEFAULT_PRESET_KEY = "default-preset"


class PresetStore:
    def __init__(self, storage: LocalStorage) -> None:
        self._storage = storage

    def get_default_preset(self) -> dict[str, Any] | None:
        """Return ``{"id", "name", "settings"}`` or None if no default is set."""
        data = self._storage.get_json(DEFAULT_PRESET_KEY)
        if not isinstance(data, dict) or not isinstance(data.get("settings"), dict):
            return None
        return data

    def default_settings(self) -> dict[str, Any]:
        """Settings of the default preset, or an empty dict for built-in defaults."""
        preset = self.get_default_preset()
        return dict(preset["settings"]) if preset else {}

    def get_default_preset_id(self) -> str | None:
        preset = self.get_default_preset()
        return preset.get("id") if preset else None

    def set_default_preset(self, preset: dict[str, Any]) -> bool:
        if not preset or not preset.get("id") or not isinstance(preset.get("settings"), dict):
            logger.error("Invalid preset object: %r", preset)
            return False
        self._storage.set_json(
            DEFAULT_PRESET_KEY,
            {"id": preset["id"], "name": preset.get("name"), "settings": preset["settings"]},
        )
        return True

    def clear_default_preset(self) -> None:
        self._storage.remove_item(DEFAULT_PRESET_KEY)

    def is_default_preset(self, preset_id: str) -> bool:
        return self.get_default_preset_id() == preset_id
