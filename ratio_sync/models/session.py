"""Session snapshot dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SavedInstance:
    """Configuration of one instance as restored from a session snapshot.

    ``settings`` holds record field values in display units.
    """

    settings: dict[str, Any] = field(default_factory=dict)
    torrent_path: str | None = None
    torrent_name: str | None = None
    torrent: dict[str, Any] | None = None


@dataclass
class SessionSnapshot:
    instances: list[SavedInstance] = field(default_factory=list)
    active_index: int | None = None

    def active_index_for(self, count: int) -> int:
        """Return the saved active index if it addresses one of ``count`` records, else 0."""
        idx = self.active_index
        if idx is not None and 0 <= idx < count:
            return idx
        return 0
