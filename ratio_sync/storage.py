"""File-backed key/value store standing in for browser local storage.

Values are strings, like the browser API; ``get_json``/``set_json`` wrap the
usual encode/decode step. The whole document is rewritten atomically on
every change.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class LocalStorage:
    def __init__(self, path: Path) -> None:
        self._path = Path(path).expanduser()
        self._items: dict[str, str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if self._items is not None:
            return self._items
        items: dict[str, str] = {}
        try:
            if self._path.exists():
                data = json.loads(self._path.read_text(encoding="utf-8"))
                if isinstance(data, dict):
                    items = {str(k): str(v) for k, v in data.items()}
                else:
                    logger.warning("Ignoring malformed storage file %s", self._path)
        except (OSError, ValueError):
            logger.exception("Failed to read storage file %s", self._path)
        self._items = items
        return items

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(
            dir=str(self._path.parent), prefix=f".{self._path.name}."
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(self._load(), handle, indent=2)
            os.replace(tmp_path, self._path)
        finally:
            tmp_path.unlink(missing_ok=True)

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        self._load()[key] = value
        self._flush()

    def remove_item(self, key: str) -> None:
        if self._load().pop(key, None) is not None:
            self._flush()

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Stored value for %s is not valid JSON", key)
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value))
