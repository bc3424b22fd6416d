"""Backend lifecycle event dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

EVENT_CREATED = "created"
EVENT_DELETED = "deleted"
EVENT_STATE_CHANGED = "state_changed"

EVENT_TYPES = (EVENT_CREATED, EVENT_DELETED, EVENT_STATE_CHANGED)


@dataclass(frozen=True)
class InstanceEvent:
    type: str
    id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "InstanceEvent":
        raw_id = data.get("id")
        return cls(
            type=str(data.get("type") or ""),
            id=str(raw_id) if raw_id is not None else None,
            payload={k: v for k, v in data.items() if k not in {"type", "id"}},
        )
