"""Notification endpoints.  Every call only sees the caller's own notifications."""

from __future__ import annotations

from fastapi import APIRouter, Query

from taskflow.server.deps import Context, DbSession
from taskflow.server.managers import notifications
from taskflow.server.models.api import MarkReadRequest, MarkReadResult, NotificationList, NotificationResponse
from taskflow.server.models.enums import NotificationType
from taskflow.server.routers._errors import domain_errors
from taskflow.server.settings import get_settings

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationList)
async def list_notifications(
    db: DbSession,
    ctx: Context,
    limit: int | None = Query(None, ge=1, le=500),
) -> NotificationList:
    """Newest notifications first, with the total unread count."""
    with domain_errors():
        rows, unread = await notifications.list_notifications(
            db, ctx, limit=limit or get_settings().notification_page_size
        )
    return NotificationList(
        notifications=[NotificationResponse.model_validate(row) for row in rows],
        unread_count=unread,
    )


@router.patch("/mark-read", response_model=MarkReadResult)
async def mark_read(db: DbSession, ctx: Context, body: MarkReadRequest | None = None) -> MarkReadResult:
    """Mark the given notifications read, or all unread ones when no ids are sent."""
    ids = body.notification_ids if body is not None else []
    with domain_errors():
        updated = await notifications.mark_read(db, ctx, ids or None)
    return MarkReadResult(updated=updated)


@router.get("/types")
async def notification_types() -> list[str]:
    return [t.value for t in NotificationType]
