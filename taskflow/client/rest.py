"""Thin async REST client for the TaskFlow API.

Identity is sent the way the upstream gateway forwards it: ``X-User-Id``,
optionally ``X-Workspace-Id``, and the shared bearer token.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
from loguru import logger

from taskflow.server.models.events import RealtimeEvent


class TaskflowClient:
    def __init__(
        self,
        base_url: str,
        user_id: str,
        *,
        workspace_id: str | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        headers = {"X-User-Id": user_id}
        if workspace_id:
            headers["X-Workspace-Id"] = workspace_id
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api",
            headers=headers,
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> TaskflowClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._http.request(method, path, **kwargs)
        response.raise_for_status()
        if response.status_code == httpx.codes.NO_CONTENT or not response.content:
            return None
        return response.json()

    # -- Collections ---------------------------------------------------------

    async def list_tasks(self, **filters: Any) -> list[dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        return await self._request("GET", "/tasks", params=params)

    async def list_teams(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/teams")

    async def list_users(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/users")

    async def list_notifications(self) -> dict[str, Any]:
        return await self._request("GET", "/notifications")

    async def current_workspace(self) -> dict[str, Any]:
        return await self._request("GET", "/workspaces/current")

    # -- Tasks -----------------------------------------------------------------

    async def create_task(self, **fields: Any) -> dict[str, Any]:
        return await self._request("POST", "/tasks", json=fields)

    async def update_task(self, task_id: str, **fields: Any) -> dict[str, Any]:
        return await self._request("PATCH", f"/tasks/{task_id}", json=fields)

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/tasks/{task_id}")

    async def mark_read(self, notification_ids: list[str] | None = None) -> int:
        body = {"notification_ids": notification_ids or []}
        result = await self._request("PATCH", "/notifications/mark-read", json=body)
        return result["updated"]

    # -- Realtime --------------------------------------------------------------

    async def stream_events(self) -> AsyncIterator[RealtimeEvent]:
        """Yield events from ``/events/stream`` until the server closes it."""
        async with self._http.stream("GET", "/events/stream", timeout=None) as response:
            response.raise_for_status()
            async for event in parse_sse(response.aiter_lines()):
                yield event


async def parse_sse(lines: AsyncIterator[str]) -> AsyncIterator[RealtimeEvent]:
    """Decode SSE messages whose data is a JSON event envelope.

    Comment lines (keep-alive pings) are skipped, as are messages whose data
    is not a valid envelope.
    """
    data: list[str] = []
    async for line in lines:
        if line.startswith(":"):
            continue
        if line.strip() == "":
            if data:
                raw = "\n".join(data)
                data = []
                try:
                    yield RealtimeEvent.model_validate_json(raw)
                except ValueError:
                    logger.warning("Ignoring malformed realtime message: {}", raw[:200])
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data.append(value[1:] if value.startswith(" ") else value)
    if data:
        try:
            yield RealtimeEvent.model_validate_json("\n".join(data))
        except ValueError:
            logger.warning("Ignoring truncated realtime message")
