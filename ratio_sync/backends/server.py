"""Networked server adapter (REST + server-sent events over httpx)."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import httpx

from ..convert import camelize
from ..models.events import InstanceEvent
from ..models.grid import GridActionResult, ImportConfig, ImportResult
from ..models.summary import InstanceSummary
from ..persistence import SessionPersistence
from .base import Backend, BackendError, EventCallback, RunMode, Unsubscribe

logger = logging.getLogger(__name__)

_EVENT_NAME = "instance"


def import_config_payload(config: ImportConfig) -> dict[str, Any]:
    """Serialize import options the way the server's import endpoints expect (camelCase)."""
    payload: dict[str, Any] = {
        "baseConfig": camelize(config.base_config) if config.base_config else None,
        "tags": list(config.tags),
        "mode": config.mode,
        "autoStart": config.auto_start,
        "staggerStartSecs": config.stagger_start_secs,
        "clientType": config.client_type,
        "clientVersion": config.client_version,
    }
    return {k: v for k, v in payload.items() if v is not None}


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
    """Group an SSE line stream into ``(event, data)`` pairs.

    Multi-line ``data:`` fields are joined with newlines; comment lines
    (``:keep-alive``) are skipped.
    """
    event = "message"
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if data:
        yield event, "\n".join(data)


class ServerBackend(Backend):
    mode = RunMode.SERVER
    has_scheduler = True
    supports_instance_listing = True

    def __init__(
        self,
        base_url: str,
        persistence: SessionPersistence,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        reconnect_delay_s: float = 3.0,
    ) -> None:
        super().__init__(persistence)
        headers = {"Authorization": f"Bearer {token}"} if token else None
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.reconnect_delay_s = reconnect_delay_s
        self._listener_tasks: set[asyncio.Task] = set()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path.lstrip("/"), **kwargs)
        except httpx.HTTPError as e:
            logger.error("Server request %s %s failed: %s", method, path, e)
            raise BackendError(f"Server request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict) and "success" in body:
            if not body.get("success"):
                raise BackendError(str(body.get("error") or f"HTTP {response.status_code}"))
            return body.get("data")
        if response.is_error:
            raise BackendError(f"HTTP {response.status_code} for {method} {path}")
        return body

    async def list_instances(self) -> list[dict[str, Any]]:
        return list(await self._request("GET", "/instances") or [])

    async def create_instance(self) -> str:
        data = await self._request("POST", "/instances")
        if not isinstance(data, dict) or data.get("id") is None:
            raise BackendError("Server did not return an instance id")
        return str(data["id"])

    async def delete_instance(self, instance_id: str, force: bool = False) -> None:
        params = {"force": "true"} if force else None
        await self._request("DELETE", f"/instances/{instance_id}", params=params)

    async def list_summaries(self) -> list[InstanceSummary]:
        rows = await self._request("GET", "/instances/summary") or []
        return [InstanceSummary.from_api(row) for row in rows]

    async def get_instance_torrent(self, instance_id: str) -> dict[str, Any] | None:
        for inst in await self.list_instances():
            if str(inst.get("id")) == str(instance_id):
                return inst.get("torrent")
        return None

    async def load_instance_torrent(self, instance_id: str, path: str | Path) -> dict[str, Any]:
        path = Path(path)
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise BackendError(f"Cannot read torrent file {path}: {e}") from e
        data = await self._request(
            "POST",
            f"/instances/{instance_id}/torrent",
            files={"file": (path.name, content, "application/x-bittorrent")},
        )
        if isinstance(data, dict) and isinstance(data.get("torrent"), dict):
            return data["torrent"]
        return data or {}

    async def update_stats_only(self, instance_id: str) -> dict[str, Any] | None:
        return await self._request("POST", f"/faker/{instance_id}/stats-only")

    async def _grid_action(self, action: str, ids: Sequence[str]) -> GridActionResult:
        data = await self._request("POST", f"/grid/{action}", json={"ids": list(ids)})
        return GridActionResult.from_api(data)

    async def grid_start(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid_action("start", ids)

    async def grid_stop(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid_action("stop", ids)

    async def grid_pause(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid_action("pause", ids)

    async def grid_resume(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid_action("resume", ids)

    async def grid_delete(self, ids: Sequence[str]) -> GridActionResult:
        return await self._grid_action("delete", ids)

    async def grid_tag(
        self, ids: Sequence[str], add_tags: Sequence[str], remove_tags: Sequence[str]
    ) -> int:
        data = await self._request(
            "POST",
            "/grid/tag",
            json={"ids": list(ids), "add_tags": list(add_tags), "remove_tags": list(remove_tags)},
        )
        return int((data or {}).get("updated") or 0)

    async def grid_import(self, files: Sequence[str | Path], config: ImportConfig) -> ImportResult:
        uploads = []
        for item in files:
            path = Path(item)
            try:
                content = await asyncio.to_thread(path.read_bytes)
            except OSError as e:
                raise BackendError(f"Cannot read torrent file {path}: {e}") from e
            uploads.append(("files", (path.name, content, "application/x-bittorrent")))
        data = await self._request(
            "POST",
            "/grid/import",
            files=uploads,
            data={"config": json.dumps(import_config_payload(config))},
        )
        return ImportResult.from_api(data)

    async def grid_import_folder(self, path: str, config: ImportConfig) -> ImportResult:
        data = await self._request(
            "POST",
            "/grid/import-folder",
            json={"path": path, "config": import_config_payload(config)},
        )
        return ImportResult.from_api(data)

    def listen_to_instance_events(self, callback: EventCallback) -> Unsubscribe:
        task = asyncio.create_task(self._event_loop(callback))
        self._listener_tasks.add(task)
        task.add_done_callback(self._listener_tasks.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _event_loop(self, callback: EventCallback) -> None:
        logger.info("Listening for instance events (reconnect=%ss)", self.reconnect_delay_s)
        while True:
            try:
                async with self._client.stream("GET", "events", timeout=None) as response:
                    response.raise_for_status()
                    async for event, data in iter_sse(response.aiter_lines()):
                        if event != _EVENT_NAME:
                            continue
                        try:
                            payload = json.loads(data)
                        except ValueError:
                            logger.warning("Ignoring malformed instance event: %r", data)
                            continue
                        try:
                            callback(InstanceEvent.from_api(payload))
                        except Exception:
                            logger.exception("Instance event callback failed")
                logger.info("Instance event stream closed; reconnecting")
            except asyncio.CancelledError:
                raise
            except httpx.HTTPError as e:
                logger.warning("Instance event stream error: %s", e)
            except Exception:
                logger.exception("Instance event stream failed")
            await asyncio.sleep(self.reconnect_delay_s)

    async def aclose(self) -> None:
        for task in list(self._listener_tasks):
            task.cancel()
        if self._listener_tasks:
            await asyncio.gather(*self._listener_tasks, return_exceptions=True)
        await self._client.aclose()
