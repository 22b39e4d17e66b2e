"""Per-user notifications."""

from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.context import RequestContext
from taskflow.server.db.tables import Notification
from taskflow.server.policy import Action, Resource, require


async def list_notifications(
    db: AsyncSession, ctx: RequestContext, *, limit: int = 50
) -> tuple[list[Notification], int]:
    """The caller's newest notifications and their unread count."""
    require(ctx, Resource.NOTIFICATION, Action.READ)
    base = ctx.scoped(select(Notification).where(Notification.user_id == ctx.user_id), Notification)
    result = await db.execute(base.order_by(Notification.created_at.desc(), Notification.id).limit(limit))

    unread_stmt = select(func.count()).select_from(Notification).where(
        Notification.user_id == ctx.user_id, Notification.read_at.is_(None)
    )
    unread = await db.execute(ctx.scoped(unread_stmt, Notification))
    return list(result.scalars().all()), unread.scalar_one()


async def mark_read(db: AsyncSession, ctx: RequestContext, notification_ids: list[str] | None = None) -> int:
    """Mark notifications read.  No ids means every unread one in the workspace.

    Rows that are already read are left alone, so repeating a call updates
    nothing.  Returns the number of rows changed.
    """
    require(ctx, Resource.NOTIFICATION, Action.UPDATE)
    stmt = update(Notification).where(Notification.user_id == ctx.user_id, Notification.read_at.is_(None))
    if notification_ids:
        stmt = stmt.where(Notification.id.in_(notification_ids))
    stmt = ctx.scoped(stmt, Notification).values(read_at=func.now()).execution_options(synchronize_session=False)
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount
