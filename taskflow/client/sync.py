"""Keep local copies of workspace collections in step with the server.

Entity events carry the server-confirmed record and are applied directly.
Events without a usable record (bulk deletes and imports, or entity events
the server redacted because the caller may not see every record) make the
affected collections re-fetch over REST.  The newest event always wins.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from taskflow.client.rest import TaskflowClient
from taskflow.server.models.enums import RealtimeEventType
from taskflow.server.models.events import RealtimeEvent

Record = dict[str, Any]
Listener = Callable[[RealtimeEvent], Awaitable[None] | None]

_UPSERTS = {
    RealtimeEventType.TASK_CREATED: "tasks",
    RealtimeEventType.TASK_UPDATED: "tasks",
    RealtimeEventType.TEAM_CREATED: "teams",
    RealtimeEventType.TEAM_UPDATED: "teams",
    RealtimeEventType.USER_CREATED: "users",
    RealtimeEventType.USER_UPDATED: "users",
}

_REMOVALS = {
    RealtimeEventType.TASK_DELETED: "tasks",
    RealtimeEventType.TEAM_DELETED: "teams",
    RealtimeEventType.USER_DELETED: "users",
}

_REFETCHES = {
    RealtimeEventType.TEAM_BULK_DELETED: ("teams", "users"),
    RealtimeEventType.USERS_BULK_DELETED: ("users", "teams"),
    RealtimeEventType.USERS_BULK_IMPORTED: ("users", "teams"),
}


class RealtimeSync:
    """Local state for one user's view of a workspace."""

    def __init__(self, client: TaskflowClient) -> None:
        self.client = client
        self.tasks: dict[str, Record] = {}
        self.teams: dict[str, Record] = {}
        self.users: dict[str, Record] = {}
        self.notifications: dict[str, Record] = {}
        self.unread_count = 0
        self.workspace: Record | None = None
        self._listeners: list[Listener] = []

    def on_event(self, listener: Listener) -> None:
        """Call *listener* after each event has been applied."""
        self._listeners.append(listener)

    # -- Loading -------------------------------------------------------------

    async def refetch(self, collection: str) -> None:
        if collection == "tasks":
            self.tasks = _by_id(await self.client.list_tasks())
        elif collection == "teams":
            self.teams = _by_id(await self.client.list_teams())
        elif collection == "users":
            self.users = _by_id(await self.client.list_users())
        elif collection == "notifications":
            result = await self.client.list_notifications()
            self.notifications = _by_id(result["notifications"])
            self.unread_count = result["unread_count"]
        else:
            raise ValueError(f"Unknown collection '{collection}'")

    async def load(self) -> None:
        self.workspace = await self.client.current_workspace()
        for collection in ("tasks", "teams", "users", "notifications"):
            await self.refetch(collection)

    # -- Events ----------------------------------------------------------------

    async def apply(self, event: RealtimeEvent) -> None:
        kind, payload = event.event, event.payload

        if event.redacted and kind in _UPSERTS:
            await self.refetch(_UPSERTS[kind])
        elif kind in _UPSERTS:
            getattr(self, _UPSERTS[kind])[payload["id"]] = payload
        elif kind in _REMOVALS:
            getattr(self, _REMOVALS[kind]).pop(payload["id"], None)
        elif kind == RealtimeEventType.TASK_ASSIGNED:
            task = payload["task"]
            self.tasks[task["id"]] = task
        elif kind == RealtimeEventType.NOTIFICATION_NEW:
            if payload["id"] not in self.notifications and payload.get("read_at") is None:
                self.unread_count += 1
            self.notifications[payload["id"]] = payload
        elif kind == RealtimeEventType.WORKSPACE_UPDATED:
            if self._is_current(payload):
                self.workspace = payload
        elif kind == RealtimeEventType.WORKSPACE_DELETED:
            if self._is_current(payload):
                self._clear()
        elif kind in _REFETCHES:
            for collection in _REFETCHES[kind]:
                await self.refetch(collection)
        else:
            logger.debug("Sync: no local state for {}", kind)

        for listener in self._listeners:
            result = listener(event)
            if result is not None:
                await result

    async def mark_read(self, notification_ids: list[str] | None = None) -> int:
        """Mark notifications read on the server, then refresh the local list."""
        updated = await self.client.mark_read(notification_ids)
        await self.refetch("notifications")
        return updated

    async def run(self) -> None:
        """Load everything, then apply events until the stream ends."""
        await self.load()
        async for event in self.client.stream_events():
            await self.apply(event)

    def _is_current(self, payload: Record) -> bool:
        """System administrators also hear about other workspaces."""
        return self.workspace is not None and self.workspace.get("id") == payload.get("id")

    def _clear(self) -> None:
        self.tasks.clear()
        self.teams.clear()
        self.users.clear()
        self.notifications.clear()
        self.unread_count = 0
        self.workspace = None


def _by_id(records: list[Record]) -> dict[str, Record]:
    return {record["id"]: record for record in records}
