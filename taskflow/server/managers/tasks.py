"""Task operations.

Every query is restricted to the caller's workspace through
``RequestContext.scoped`` and then to the records the caller's role may see
(see ``policy.POLICY``).  Mutations stage their changelog entries,
notifications and realtime events on the request's ``UnitOfWork``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import ColumnElement, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.context import RequestContext
from taskflow.server.db.tables import Task, Team, User, new_id
from taskflow.server.effects import UnitOfWork
from taskflow.server.errors import AccessDeniedError, InvalidRequestError, NotFoundError
from taskflow.server.managers.membership import team_scope
from taskflow.server.managers.usage import bump_usage
from taskflow.server.models.api import TaskCreate, TaskResponse, TaskUpdate
from taskflow.server.models.enums import (
    ChangeEventType,
    NotificationType,
    RealtimeEventType,
    TargetType,
    TaskStatus,
)
from taskflow.server.models.events import user_channel
from taskflow.server.policy import Action, Grant, Resource, authorize, require

# Fields whose before/after values are recorded in the changelog.
TRACKED_FIELDS = ("title", "description", "status", "priority", "due_date", "team_id")


# ---------------------------------------------------------------------------
# Record-level access
# ---------------------------------------------------------------------------


def _grant_clause(grant: Grant, user_id: str, scope: set[str]) -> ColumnElement[bool] | None:
    """SQL filter for the records a grant covers (``None`` = no restriction)."""
    if grant is Grant.ANY:
        return None
    if grant is Grant.CREATED:
        return Task.created_by == user_id
    own = [Task.created_by == user_id, Task.assigned_to.contains([user_id])]
    if grant is Grant.TEAM and scope:
        own.append(Task.team_id.in_(scope))
    return or_(*own)


def _grant_allows(grant: Grant, task: Task, user_id: str, scope: set[str]) -> bool:
    if grant is Grant.ANY:
        return True
    if task.created_by == user_id:
        return True
    if grant is Grant.CREATED:
        return False
    if user_id in task.assigned_to:
        return True
    return grant is Grant.TEAM and task.team_id is not None and task.team_id in scope


async def _check_access(db: AsyncSession, ctx: RequestContext, task: Task, action: Action) -> None:
    grant = require(ctx, Resource.TASK, action)
    scope = await team_scope(db, ctx) if grant is Grant.TEAM else set()
    if not _grant_allows(grant, task, ctx.user_id, scope):
        logger.debug("Task {}: {} denied {} for user {}", task.id, ctx.role, action, ctx.user_id)
        raise AccessDeniedError("Access denied.")


async def _load(db: AsyncSession, ctx: RequestContext, task_id: str) -> Task:
    result = await db.execute(ctx.scoped(select(Task).where(Task.id == task_id), Task))
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


async def _validate_refs(db: AsyncSession, ctx: RequestContext, assignees: list[str], team_id: str | None) -> None:
    """Assignees and team must belong to the caller's workspace."""
    if assignees:
        result = await db.execute(ctx.scoped(select(User.id).where(User.id.in_(assignees)), User))
        missing = set(assignees) - set(result.scalars().all())
        if missing:
            raise InvalidRequestError(f"Assigned users not found: {', '.join(sorted(missing))}.")
    if team_id is not None:
        result = await db.execute(ctx.scoped(select(Team.id).where(Team.id == team_id), Team))
        if result.scalar_one_or_none() is None:
            raise InvalidRequestError(f"Team '{team_id}' not found.")


def _dedupe(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


def _jsonable(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def diff_task(before: dict[str, Any], task: Task) -> dict[str, Any]:
    """Changelog diff: ``{field: {old, new}}`` plus ``assigned_to: {added, removed}``."""
    changes: dict[str, Any] = {}
    for field in TRACKED_FIELDS:
        old, new = before[field], getattr(task, field)
        if old != new:
            changes[field] = {"old": _jsonable(old), "new": _jsonable(new)}

    old_assigned, new_assigned = set(before["assigned_to"]), set(task.assigned_to)
    if old_assigned != new_assigned:
        changes["assigned_to"] = {
            "added": sorted(new_assigned - old_assigned),
            "removed": sorted(old_assigned - new_assigned),
        }
    return changes


def _snapshot(task: Task) -> dict[str, Any]:
    return {field: getattr(task, field) for field in (*TRACKED_FIELDS, "assigned_to")}


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def create_task(uow: UnitOfWork, body: TaskCreate) -> Task:
    """Create a task.  ``assigned_to`` defaults to the creator.

    Members may only assign tasks to themselves.
    """
    db, ctx = uow.db, uow.ctx
    workspace = ctx.require_workspace()
    require(ctx, Resource.TASK, Action.CREATE)
    ctx.check_limit("tasks")

    assignees = _dedupe(body.assigned_to or [ctx.user_id])
    if any(a != ctx.user_id for a in assignees) and authorize(ctx.role, Resource.TASK, Action.ASSIGN) is not Grant.ANY:
        raise AccessDeniedError("Members can only create tasks for themselves.")
    await _validate_refs(db, ctx, assignees, body.team_id)

    task = Task(
        id=new_id(),
        title=body.title,
        description=body.description,
        status=body.status,
        priority=body.priority,
        created_by=ctx.user_id,
        assigned_to=assignees,
        team_id=body.team_id,
        due_date=body.due_date,
        progress=body.progress,
        workspace_id=workspace.id,
    )
    db.add(task)
    await bump_usage(db, workspace.id, tasks=1)
    await db.flush()

    actor = ctx.user.full_name
    others = [a for a in assignees if a != ctx.user_id]
    for user_id in others:
        uow.notify(
            user_id,
            NotificationType.TASK_ASSIGNED,
            f'{actor} assigned you a new task: "{task.title}"',
            task_id=task.id,
            payload={"task_id": task.id, "task_title": task.title, "assigned_by": actor},
        )

    uow.record_change(
        ChangeEventType.TASK_CREATED,
        TargetType.TASK,
        target_id=task.id,
        target_name=task.title,
        action="Created task",
        description=f'{actor} created task "{task.title}"',
        metadata={
            "priority": task.priority,
            "status": task.status,
            "due_date": _jsonable(task.due_date),
            "assigned_to": assignees,
        },
    )

    response = TaskResponse.model_validate(task)
    uow.emit(RealtimeEventType.TASK_CREATED, response)
    for user_id in others:
        uow.emit(
            RealtimeEventType.TASK_ASSIGNED,
            {"task": response.model_dump(mode="json"), "assigned_by": actor},
            channel=user_channel(user_id),
        )

    await uow.commit()
    logger.info("Task {} created in workspace {} by {}", task.id, workspace.id, ctx.user_id)
    return task


async def list_tasks(
    db: AsyncSession,
    ctx: RequestContext,
    *,
    status: TaskStatus | None = None,
    priority: str | None = None,
    team_id: str | None = None,
    assigned_to: str | None = None,
    limit: int = 200,
    offset: int = 0,
) -> list[Task]:
    """Tasks visible to the caller, newest first."""
    grant = require(ctx, Resource.TASK, Action.READ)
    scope = await team_scope(db, ctx) if grant is Grant.TEAM else set()

    stmt = ctx.scoped(select(Task), Task)
    clause = _grant_clause(grant, ctx.user_id, scope)
    if clause is not None:
        stmt = stmt.where(clause)
    if status is not None:
        stmt = stmt.where(Task.status == status)
    if priority is not None:
        stmt = stmt.where(Task.priority == priority)
    if team_id is not None:
        stmt = stmt.where(Task.team_id == team_id)
    if assigned_to is not None:
        stmt = stmt.where(Task.assigned_to.contains([assigned_to]))

    stmt = stmt.order_by(Task.created_at.desc(), Task.id).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_task(db: AsyncSession, ctx: RequestContext, task_id: str) -> Task:
    task = await _load(db, ctx, task_id)
    await _check_access(db, ctx, task, Action.READ)
    return task


async def update_task(uow: UnitOfWork, task_id: str, body: TaskUpdate) -> Task:
    """Partially update a task.

    Any status may follow any other.  Reassignment requires the ``assign``
    grant; members may only (re)assign a task to themselves.
    """
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    task = await _load(db, ctx, task_id)
    await _check_access(db, ctx, task, Action.UPDATE)

    updates = body.model_dump(exclude_unset=True)
    if "title" in updates and updates["title"] is None:
        del updates["title"]
    for key in ("status", "priority"):
        if key in updates and updates[key] is None:
            del updates[key]

    before = _snapshot(task)
    new_assignees: list[str] | None = None
    if "assigned_to" in updates:
        new_assignees = _dedupe(updates.pop("assigned_to") or [])
        if set(new_assignees) != set(task.assigned_to):
            grant = authorize(ctx.role, Resource.TASK, Action.ASSIGN)
            if grant is not Grant.ANY and new_assignees != [ctx.user_id]:
                raise AccessDeniedError("Your role may not reassign tasks.")
        else:
            new_assignees = None
    await _validate_refs(db, ctx, new_assignees or [], updates.get("team_id"))

    for key, value in updates.items():
        setattr(task, key, value)
    if new_assignees is not None:
        task.assigned_to = new_assignees
    await db.flush()
    await db.refresh(task)

    changes = diff_task(before, task)
    actor = ctx.user.full_name
    old_status = before["status"]
    status_changed = task.status != old_status

    if status_changed:
        completed = task.status == TaskStatus.DONE
        for user_id in task.assigned_to:
            uow.notify(
                user_id,
                NotificationType.TASK_COMPLETED if completed else NotificationType.TASK_UPDATED,
                f'Task "{task.title}" status changed from {old_status} to {task.status}',
                task_id=task.id,
                payload={
                    "task_id": task.id,
                    "task_title": task.title,
                    "old_status": old_status,
                    "new_status": task.status,
                },
            )

    response = TaskResponse.model_validate(task)
    newly_assigned = [a for a in task.assigned_to if a not in before["assigned_to"] and a != ctx.user_id]
    for user_id in newly_assigned:
        uow.notify(
            user_id,
            NotificationType.TASK_ASSIGNED,
            f'{actor} assigned you to task: "{task.title}"',
            task_id=task.id,
            payload={"task_id": task.id, "task_title": task.title, "assigned_by": actor},
        )
        uow.emit(
            RealtimeEventType.TASK_ASSIGNED,
            {"task": response.model_dump(mode="json"), "assigned_by": actor},
            channel=user_channel(user_id),
        )

    suffix = f" ({old_status} → {task.status})" if status_changed else ""
    uow.record_change(
        ChangeEventType.TASK_STATUS_CHANGED if status_changed else ChangeEventType.TASK_UPDATED,
        TargetType.TASK,
        target_id=task.id,
        target_name=task.title,
        action="Updated task",
        description=f'{actor} updated task "{task.title}"{suffix}',
        metadata={"priority": task.priority, "status": task.status, "due_date": _jsonable(task.due_date)},
        changes=changes,
    )
    uow.emit(RealtimeEventType.TASK_UPDATED, response)

    await uow.commit()
    return task


async def delete_task(uow: UnitOfWork, task_id: str) -> None:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    task = await _load(db, ctx, task_id)
    await _check_access(db, ctx, task, Action.DELETE)

    title, workspace_id = task.title, task.workspace_id
    await db.delete(task)
    await bump_usage(db, workspace_id, tasks=-1)

    uow.record_change(
        ChangeEventType.TASK_DELETED,
        TargetType.TASK,
        target_id=task_id,
        target_name=title,
        action="Deleted task",
        description=f'{ctx.user.full_name} deleted task "{title}"',
        workspace_id=workspace_id,
    )
    uow.emit(RealtimeEventType.TASK_DELETED, {"id": task_id, "title": title})

    await uow.commit()
    logger.info("Task {} deleted from workspace {} by {}", task_id, workspace_id, ctx.user_id)
