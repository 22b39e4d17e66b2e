"""Task and task comment endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query, status

from taskflow.server.db.tables import Comment, Task
from taskflow.server.deps import Context, DbSession, Uow
from taskflow.server.managers import comments, tasks
from taskflow.server.models.api import (
    CommentCreate,
    CommentResponse,
    CommentUpdate,
    TaskCreate,
    TaskResponse,
    TaskUpdate,
)
from taskflow.server.models.enums import TaskPriority, TaskStatus
from taskflow.server.routers._errors import domain_errors

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=list[TaskResponse])
async def list_tasks(
    db: DbSession,
    ctx: Context,
    task_status: TaskStatus | None = Query(None, alias="status"),
    priority: TaskPriority | None = None,
    team_id: str | None = None,
    assigned_to: str | None = None,
    limit: int = Query(200, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> list[Task]:
    """Tasks visible to the caller, newest first."""
    with domain_errors():
        return await tasks.list_tasks(
            db,
            ctx,
            status=task_status,
            priority=priority,
            team_id=team_id,
            assigned_to=assigned_to,
            limit=limit,
            offset=offset,
        )


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(body: TaskCreate, uow: Uow) -> Task:
    with domain_errors():
        return await tasks.create_task(uow, body)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, db: DbSession, ctx: Context) -> Task:
    with domain_errors():
        return await tasks.get_task(db, ctx, task_id)


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(task_id: str, body: TaskUpdate, uow: Uow) -> Task:
    """Partially update a task.  Fields left out of the body are unchanged."""
    with domain_errors():
        return await tasks.update_task(uow, task_id, body)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, uow: Uow) -> None:
    with domain_errors():
        await tasks.delete_task(uow, task_id)


# -- Comments ------------------------------------------------------------------


@router.get("/{task_id}/comments", response_model=list[CommentResponse])
async def list_comments(task_id: str, db: DbSession, ctx: Context) -> list[Comment]:
    with domain_errors():
        return await comments.list_comments(db, ctx, task_id)


@router.post("/{task_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(task_id: str, body: CommentCreate, uow: Uow) -> Comment:
    with domain_errors():
        return await comments.add_comment(uow, task_id, body)


@router.patch("/{task_id}/comments/{comment_id}", response_model=CommentResponse)
async def update_comment(task_id: str, comment_id: str, body: CommentUpdate, uow: Uow) -> Comment:
    with domain_errors():
        return await comments.update_comment(uow, task_id, comment_id, body)


@router.delete("/{task_id}/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(task_id: str, comment_id: str, uow: Uow) -> None:
    with domain_errors():
        await comments.delete_comment(uow, task_id, comment_id)
