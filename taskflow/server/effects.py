"""Unit of work for mutations and their side effects.

Managers stage three kinds of secondary effects while they mutate rows:

- changelog entries (:meth:`UnitOfWork.record_change`),
- per-user notifications (:meth:`UnitOfWork.notify`),
- realtime events (:meth:`UnitOfWork.emit`).

:meth:`UnitOfWork.commit` writes the changelog and notification rows in the
same transaction as the primary mutation, so either everything is stored or
nothing is.  Realtime events are published only after the commit succeeds;
a publish failure is logged and never fails the request.
"""

from __future__ import annotations

from typing import Any

from loguru import logger
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.broadcast.base import Broadcaster
from taskflow.server.context import RequestContext
from taskflow.server.db.tables import ChangeLog, Notification, new_id
from taskflow.server.models.api import NotificationResponse
from taskflow.server.models.enums import ChangeEventType, NotificationType, RealtimeEventType, TargetType
from taskflow.server.models.events import SYSTEM_CHANNEL, RealtimeEvent, user_channel, workspace_channel

_UNSET: Any = object()


class UnitOfWork:
    def __init__(self, db: AsyncSession, ctx: RequestContext, broadcaster: Broadcaster | None = None) -> None:
        self.db = db
        self.ctx = ctx
        self._broadcaster = broadcaster
        self._changes: list[ChangeLog] = []
        self._notifications: list[Notification] = []
        self._events: list[RealtimeEvent] = []

    # -- Staging -----------------------------------------------------------------

    def record_change(
        self,
        event_type: ChangeEventType,
        target_type: TargetType,
        *,
        action: str,
        description: str,
        target_id: str | None = None,
        target_name: str | None = None,
        metadata: dict[str, Any] | None = None,
        changes: dict[str, Any] | None = None,
        workspace_id: str | None = _UNSET,
    ) -> ChangeLog:
        """Stage a changelog entry attributed to the acting user.

        ``workspace_id`` defaults to the caller's workspace; pass ``None`` for
        a system-level entry.
        """
        entry = ChangeLog(
            id=new_id(),
            event_type=event_type,
            target_type=target_type,
            target_id=target_id,
            target_name=target_name,
            action=action,
            description=description,
            metadata_=metadata or {},
            changes=changes,
            workspace_id=self.ctx.workspace_id if workspace_id is _UNSET else workspace_id,
            **self.ctx.actor(),
        )
        self._changes.append(entry)
        return entry

    def notify(
        self,
        user_id: str,
        type_: NotificationType,
        message: str,
        *,
        task_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Notification | None:
        """Stage a notification.  Users are never notified about their own actions."""
        if user_id == self.ctx.user_id:
            return None
        notification = Notification(
            id=new_id(),
            user_id=user_id,
            type=type_,
            message=message,
            task_id=task_id,
            payload=payload or {},
            workspace_id=self.ctx.workspace_id,
        )
        self._notifications.append(notification)
        return notification

    def emit(
        self,
        event: RealtimeEventType,
        payload: BaseModel | dict[str, Any],
        *,
        channel: str | None = None,
    ) -> None:
        """Stage a realtime event, by default for the caller's workspace."""
        if channel is None:
            channel = workspace_channel(self.ctx.workspace_id) if self.ctx.workspace_id else SYSTEM_CHANNEL
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        self._events.append(
            RealtimeEvent(event=event, channel=channel, workspace_id=self.ctx.workspace_id, payload=payload)
        )

    @property
    def staged_changes(self) -> list[ChangeLog]:
        return list(self._changes)

    @property
    def staged_notifications(self) -> list[Notification]:
        return list(self._notifications)

    @property
    def staged_events(self) -> list[RealtimeEvent]:
        return list(self._events)

    # -- Completion --------------------------------------------------------------

    async def commit(self) -> None:
        """Persist staged rows with the primary mutation, commit, then publish."""
        self.db.add_all(self._changes)
        self.db.add_all(self._notifications)
        await self.db.flush()

        for notification in self._notifications:
            self._events.append(
                RealtimeEvent(
                    event=RealtimeEventType.NOTIFICATION_NEW,
                    channel=user_channel(notification.user_id),
                    workspace_id=notification.workspace_id,
                    payload=NotificationResponse.model_validate(notification).model_dump(mode="json"),
                )
            )

        await self.db.commit()
        if self._changes or self._notifications:
            logger.debug(
                "UnitOfWork: committed {} changelog entries, {} notifications",
                len(self._changes),
                len(self._notifications),
            )
        self._changes.clear()
        self._notifications.clear()
        await self.publish()

    async def publish(self) -> None:
        events, self._events = self._events, []
        if self._broadcaster is None:
            return
        for event in events:
            try:
                await self._broadcaster.publish(event)
            except Exception:
                logger.exception("Realtime publish failed for {} on {}", event.event, event.channel)
