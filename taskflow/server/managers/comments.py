"""Task comments.

Commenting requires read access to the task.  The task's creator and
assignees are notified of new comments.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.context import RequestContext
from taskflow.server.db.tables import Comment, new_id
from taskflow.server.effects import UnitOfWork
from taskflow.server.errors import AccessDeniedError, NotFoundError
from taskflow.server.managers.tasks import get_task
from taskflow.server.models.api import CommentCreate, CommentResponse, CommentUpdate
from taskflow.server.models.enums import ChangeEventType, NotificationType, RealtimeEventType, TargetType
from taskflow.server.policy import Action, Grant, Resource, require

_PREVIEW = 80


def _preview(content: str) -> str:
    return content if len(content) <= _PREVIEW else content[: _PREVIEW - 1] + "…"


async def list_comments(db: AsyncSession, ctx: RequestContext, task_id: str) -> list[Comment]:
    """Comments on a task, oldest first."""
    await get_task(db, ctx, task_id)
    require(ctx, Resource.COMMENT, Action.READ)
    stmt = ctx.scoped(select(Comment).where(Comment.task_id == task_id), Comment)
    result = await db.execute(stmt.order_by(Comment.created_at, Comment.id))
    return list(result.scalars().all())


async def _load(db: AsyncSession, ctx: RequestContext, task_id: str, comment_id: str, action: Action) -> Comment:
    await get_task(db, ctx, task_id)
    grant = require(ctx, Resource.COMMENT, action)
    stmt = select(Comment).where(Comment.id == comment_id, Comment.task_id == task_id)
    comment = (await db.execute(ctx.scoped(stmt, Comment))).scalar_one_or_none()
    if comment is None:
        raise NotFoundError("Comment", comment_id)
    if grant is not Grant.ANY and comment.user_id != ctx.user_id:
        raise AccessDeniedError("Only the author may change this comment.")
    return comment


async def add_comment(uow: UnitOfWork, task_id: str, body: CommentCreate) -> Comment:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    task = await get_task(db, ctx, task_id)
    require(ctx, Resource.COMMENT, Action.CREATE)

    comment = Comment(
        id=new_id(),
        task_id=task.id,
        user_id=ctx.user_id,
        content=body.content,
        workspace_id=task.workspace_id,
    )
    db.add(comment)
    await db.flush()

    actor = ctx.user.full_name
    for user_id in dict.fromkeys([task.created_by, *task.assigned_to]):
        uow.notify(
            user_id,
            NotificationType.COMMENT_ADDED,
            f'{actor} commented on "{task.title}": {_preview(comment.content)}',
            task_id=task.id,
            payload={"task_id": task.id, "task_title": task.title, "comment_id": comment.id, "commented_by": actor},
        )
    uow.record_change(
        ChangeEventType.COMMENT_ADDED,
        TargetType.COMMENT,
        target_id=comment.id,
        target_name=task.title,
        action="Added comment",
        description=f'{actor} commented on task "{task.title}"',
        metadata={"task_id": task.id},
    )
    uow.emit(RealtimeEventType.COMMENT_CREATED, CommentResponse.model_validate(comment))
    await uow.commit()
    return comment


async def update_comment(uow: UnitOfWork, task_id: str, comment_id: str, body: CommentUpdate) -> Comment:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    comment = await _load(db, ctx, task_id, comment_id, Action.UPDATE)
    old = comment.content
    comment.content = body.content
    await db.flush()
    await db.refresh(comment)

    uow.record_change(
        ChangeEventType.COMMENT_UPDATED,
        TargetType.COMMENT,
        target_id=comment.id,
        action="Updated comment",
        description=f"{ctx.user.full_name} edited a comment",
        metadata={"task_id": task_id},
        changes={"content": {"old": old, "new": comment.content}},
    )
    uow.emit(RealtimeEventType.COMMENT_UPDATED, CommentResponse.model_validate(comment))
    await uow.commit()
    return comment


async def delete_comment(uow: UnitOfWork, task_id: str, comment_id: str) -> None:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    comment = await _load(db, ctx, task_id, comment_id, Action.DELETE)
    await db.delete(comment)

    uow.record_change(
        ChangeEventType.COMMENT_DELETED,
        TargetType.COMMENT,
        target_id=comment_id,
        action="Deleted comment",
        description=f"{ctx.user.full_name} deleted a comment",
        metadata={"task_id": task_id},
    )
    uow.emit(RealtimeEventType.COMMENT_DELETED, {"id": comment_id, "task_id": task_id})
    await uow.commit()
