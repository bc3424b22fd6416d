"""Grid view dataclasses: filters, sort, batch results and import options."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

SORT_ASC = "asc"
SORT_DESC = "desc"


@dataclass(frozen=True)
class GridFilters:
    search: str = ""
    state: str = "all"
    tag: str = ""


@dataclass(frozen=True)
class GridSort:
    column: str = "name"
    direction: str = SORT_ASC


@dataclass
class GridActionError:
    id: str
    error: str


@dataclass
class GridActionResult:
    succeeded: list[str] = field(default_factory=list)
    failed: list[GridActionError] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Mapping[str, Any] | None) -> "GridActionResult":
        data = data or {}
        failed = [
            GridActionError(id=str(item.get("id", "")), error=str(item.get("error", "")))
            for item in data.get("failed") or []
        ]
        return cls(
            succeeded=[str(i) for i in data.get("succeeded") or []],
            failed=failed,
        )


@dataclass
class ImportedInstance:
    id: str
    name: str = ""
    info_hash: str = ""


@dataclass
class ImportResult:
    """Outcome of a grid import.

    User-correctable problems (nothing selected, unreadable file) are listed
    in ``errors``; they are never raised.
    """

    imported: list[ImportedInstance] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Mapping[str, Any] | None) -> "ImportResult":
        data = data or {}
        imported = [
            ImportedInstance(
                id=str(item.get("id", "")),
                name=str(item.get("name") or ""),
                info_hash=str(item.get("info_hash") or item.get("infoHash") or ""),
            )
            for item in data.get("imported") or []
        ]
        return cls(imported=imported, errors=[str(e) for e in data.get("errors") or []])


@dataclass
class ImportConfig:
    """Options applied to every instance created by a grid import.

    ``base_config`` uses record field names (display units).
    """

    base_config: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    mode: str = "seed"
    auto_start: bool = False
    stagger_start_secs: int | None = None
    client_type: str | None = None
    client_version: str | None = None
