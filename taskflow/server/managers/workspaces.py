"""Workspace administration.

Encapsulates all workspace data access: create, list, get, update, delete,
activation and membership.  Administrative actions are logged as
system-level changelog entries (``workspace_id`` is ``NULL``) and announced
on the system channel and the affected workspace's channel.
"""

from __future__ import annotations

from typing import Any

from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.context import RequestContext
from taskflow.server.db.tables import ChangeLog, Comment, Notification, Task, Team, User, Workspace, new_id
from taskflow.server.effects import UnitOfWork
from taskflow.server.errors import AccessDeniedError, ConflictError, InvalidRequestError, NotFoundError
from taskflow.server.managers import membership
from taskflow.server.managers.usage import count_rows, recompute_usage
from taskflow.server.models.api import (
    DeletedCounts,
    WorkspaceCreate,
    WorkspaceResponse,
    WorkspaceStats,
    WorkspaceSummary,
    WorkspaceUpdate,
    WorkspaceWithStats,
)
from taskflow.server.models.enums import (
    ChangeEventType,
    RealtimeEventType,
    Role,
    TargetType,
    TaskStatus,
    WorkspaceType,
)
from taskflow.server.models.events import SYSTEM_CHANNEL, workspace_channel
from taskflow.server.models.workspace import defaults_for
from taskflow.server.policy import Action, Resource, require

_USAGE_LIMITS = (("users", "max_users"), ("tasks", "max_tasks"), ("teams", "max_teams"))


def usage_strings(workspace: Workspace, counts: dict[str, int]) -> dict[str, str]:
    """``{"users": "4/10", "tasks": "12/Unlimited", ...}``"""
    limits = workspace.limits or {}
    usage = {}
    for key, limit_key in _USAGE_LIMITS:
        limit = limits.get(limit_key)
        usage[key] = f"{counts[key]}/{limit if limit is not None and limit >= 0 else 'Unlimited'}"
    return usage


async def _load(db: AsyncSession, workspace_id: str) -> Workspace:
    workspace = await db.get(Workspace, workspace_id, populate_existing=True)
    if workspace is None:
        raise NotFoundError("Workspace", workspace_id)
    return workspace


async def _name_taken(db: AsyncSession, name: str, *, exclude: str | None = None) -> bool:
    stmt = select(Workspace.id).where(Workspace.name == name)
    if exclude is not None:
        stmt = stmt.where(Workspace.id != exclude)
    return (await db.execute(stmt)).first() is not None


def _announce(uow: UnitOfWork, event: RealtimeEventType, workspace_id: str, payload: Any) -> None:
    uow.emit(event, payload, channel=SYSTEM_CHANNEL)
    uow.emit(event, payload, channel=workspace_channel(workspace_id))


def _log(uow: UnitOfWork, workspace: Workspace, action: str, description: str, **extra: Any) -> None:
    uow.record_change(
        ChangeEventType.SYSTEM_EVENT,
        TargetType.SYSTEM,
        target_id=workspace.id,
        target_name=workspace.name,
        action=action,
        description=description,
        workspace_id=None,
        **extra,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_workspaces(db: AsyncSession, ctx: RequestContext) -> list[WorkspaceWithStats]:
    """Every workspace with live row counts, newest first."""
    require(ctx, Resource.WORKSPACE, Action.READ)
    result = await db.execute(
        select(Workspace).order_by(Workspace.created_at.desc(), Workspace.id).execution_options(populate_existing=True)
    )
    workspaces = list(result.scalars().all())

    counts: dict[str, dict[str, int]] = {}
    for key, model in (("users", User), ("tasks", Task), ("teams", Team)):
        rows = await db.execute(select(model.workspace_id, func.count()).group_by(model.workspace_id))
        for workspace_id, n in rows.all():
            counts.setdefault(workspace_id, {})[key] = n

    listed = []
    for workspace in workspaces:
        c = {key: counts.get(workspace.id, {}).get(key, 0) for key in ("users", "tasks", "teams")}
        stats = WorkspaceStats(
            user_count=c["users"],
            task_count=c["tasks"],
            team_count=c["teams"],
            usage=usage_strings(workspace, c),
        )
        listed.append(WorkspaceWithStats.model_validate({**_as_dict(workspace), "stats": stats}))
    return listed


def _as_dict(workspace: Workspace) -> dict[str, Any]:
    return WorkspaceResponse.model_validate(workspace).model_dump()


async def summary(db: AsyncSession, ctx: RequestContext) -> WorkspaceSummary:
    require(ctx, Resource.WORKSPACE, Action.READ)

    async def count(stmt) -> int:
        return (await db.execute(stmt)).scalar_one()

    workspaces = select(func.count()).select_from(Workspace)
    total = await count(workspaces)
    active = await count(workspaces.where(Workspace.is_active.is_(True)))
    return WorkspaceSummary(
        total_workspaces=total,
        active_workspaces=active,
        inactive_workspaces=total - active,
        core_workspaces=await count(workspaces.where(Workspace.type == WorkspaceType.CORE)),
        community_workspaces=await count(workspaces.where(Workspace.type == WorkspaceType.COMMUNITY)),
        total_users=await count(select(func.count()).select_from(User).where(User.workspace_id.is_not(None))),
        total_tasks=await count(select(func.count()).select_from(Task)),
        total_teams=await count(select(func.count()).select_from(Team)),
    )


async def get_workspace(db: AsyncSession, ctx: RequestContext, workspace_id: str) -> WorkspaceWithStats:
    """Workspace details with admin count and task completion rate."""
    require(ctx, Resource.WORKSPACE, Action.READ)
    workspace = await _load(db, workspace_id)
    counts = await count_rows(db, workspace.id)

    admins = await db.execute(
        select(func.count()).select_from(User).where(User.workspace_id == workspace.id, User.role == Role.ADMIN)
    )
    completed = await db.execute(
        select(func.count()).select_from(Task).where(Task.workspace_id == workspace.id, Task.status == TaskStatus.DONE)
    )
    done = completed.scalar_one()
    stats = WorkspaceStats(
        user_count=counts["users"],
        task_count=counts["tasks"],
        team_count=counts["teams"],
        admin_count=admins.scalar_one(),
        completed_tasks=done,
        completion_rate=round(done / counts["tasks"] * 100, 1) if counts["tasks"] else 0.0,
        usage=usage_strings(workspace, counts),
    )
    return WorkspaceWithStats.model_validate({**_as_dict(workspace), "stats": stats})


async def current_workspace(db: AsyncSession, ctx: RequestContext) -> Workspace:
    workspace = ctx.require_workspace()
    await db.refresh(workspace)
    return workspace


async def list_members(db: AsyncSession, ctx: RequestContext, workspace_id: str) -> list[User]:
    require(ctx, Resource.WORKSPACE, Action.READ)
    workspace = await _load(db, workspace_id)
    result = await db.execute(
        select(User).where(User.workspace_id == workspace.id).order_by(User.created_at.desc(), User.id)
    )
    return list(result.scalars().all())


async def list_workspace_tasks(
    db: AsyncSession, ctx: RequestContext, workspace_id: str, *, limit: int = 100
) -> list[Task]:
    require(ctx, Resource.WORKSPACE, Action.READ)
    workspace = await _load(db, workspace_id)
    result = await db.execute(
        select(Task).where(Task.workspace_id == workspace.id).order_by(Task.created_at.desc(), Task.id).limit(limit)
    )
    return list(result.scalars().all())


async def list_workspace_teams(db: AsyncSession, ctx: RequestContext, workspace_id: str) -> list[Team]:
    require(ctx, Resource.WORKSPACE, Action.READ)
    workspace = await _load(db, workspace_id)
    result = await db.execute(
        select(Team).where(Team.workspace_id == workspace.id).order_by(Team.created_at.desc(), Team.id)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def _move_user(db: AsyncSession, user: User, workspace: Workspace) -> str | None:
    """Move *user* into *workspace*, dropping their team links.  Returns the previous workspace id."""
    previous = user.workspace_id
    if previous != workspace.id:
        await membership.detach_user(db, user)
        user.workspace_id = workspace.id
    return previous


async def create_workspace(uow: UnitOfWork, body: WorkspaceCreate) -> Workspace:
    """Create a workspace with its tier's defaults.

    With ``owner_email`` the matching user becomes the owner and is moved
    into the new workspace; a plain member is promoted to the tier's admin
    role.
    """
    db, ctx = uow.db, uow.ctx
    require(ctx, Resource.WORKSPACE, Action.CREATE)
    if await _name_taken(db, body.name):
        raise ConflictError("A workspace with this name already exists.")

    defaults = defaults_for(body.type)
    workspace = Workspace(
        id=new_id(),
        name=body.name,
        description=body.description,
        type=body.type,
        is_active=True,
        plan_type=defaults.plan_type,
        settings=defaults.settings.model_dump(),
        limits=defaults.limits.model_dump(),
        user_count=0,
        task_count=0,
        team_count=0,
    )
    db.add(workspace)
    await db.flush()

    if body.owner_email:
        result = await db.execute(select(User).where(User.email == body.owner_email.lower()))
        owner = result.scalar_one_or_none()
        if owner is None:
            raise InvalidRequestError(f"No user with email '{body.owner_email}'.")
        previous = await _move_user(db, owner, workspace)
        if owner.role == Role.MEMBER:
            owner.role = Role.ADMIN if body.type == WorkspaceType.CORE else Role.COMMUNITY_ADMIN
        workspace.owner_id = owner.id
        await db.flush()
        await recompute_usage(db, workspace.id)
        if previous is not None and previous != workspace.id:
            await recompute_usage(db, previous)
        await db.refresh(workspace)

    _log(
        uow,
        workspace,
        "Created workspace",
        f"{ctx.user.full_name} created {workspace.type} workspace: {workspace.name}",
        metadata={"workspace_type": workspace.type, "owner_id": workspace.owner_id},
    )
    _announce(uow, RealtimeEventType.WORKSPACE_UPDATED, workspace.id, WorkspaceResponse.model_validate(workspace))
    await uow.commit()
    logger.info("Workspace {} ({}) created by {}", workspace.id, workspace.type, ctx.user_id)
    return workspace


async def update_workspace(uow: UnitOfWork, workspace_id: str, body: WorkspaceUpdate) -> Workspace:
    """Partially update a workspace.  A type change re-applies that tier's defaults."""
    db, ctx = uow.db, uow.ctx
    require(ctx, Resource.WORKSPACE, Action.UPDATE)
    workspace = await _load(db, workspace_id)
    before = {"name": workspace.name, "type": workspace.type, "limits": workspace.limits}
    updates = body.model_dump(exclude_unset=True)

    if updates.get("name") and updates["name"] != workspace.name:
        if await _name_taken(db, updates["name"], exclude=workspace.id):
            raise ConflictError("A workspace with this name already exists.")
        workspace.name = updates["name"]
    if "description" in updates:
        workspace.description = updates["description"]

    if body.type is not None and body.type != workspace.type:
        defaults = defaults_for(body.type)
        workspace.type = body.type
        workspace.plan_type = defaults.plan_type
        workspace.limits = defaults.limits.model_dump()
        workspace.settings = {**(workspace.settings or {}), "features": defaults.settings.features}

    if body.settings:
        workspace.settings = {**(workspace.settings or {}), **body.settings}
    if body.limits is not None and workspace.type == WorkspaceType.COMMUNITY:
        workspace.limits = {**(workspace.limits or {}), **body.limits.model_dump(exclude_unset=True)}

    await db.flush()
    await db.refresh(workspace)
    after = {"name": workspace.name, "type": workspace.type, "limits": workspace.limits}
    _log(
        uow,
        workspace,
        "Updated workspace",
        f"{ctx.user.full_name} updated workspace: {workspace.name}",
        changes={k: {"old": before[k], "new": after[k]} for k in before if before[k] != after[k]},
    )
    _announce(uow, RealtimeEventType.WORKSPACE_UPDATED, workspace.id, WorkspaceResponse.model_validate(workspace))
    await uow.commit()
    return workspace


async def toggle_status(uow: UnitOfWork, workspace_id: str) -> Workspace:
    db, ctx = uow.db, uow.ctx
    require(ctx, Resource.WORKSPACE, Action.MANAGE)
    workspace = await _load(db, workspace_id)
    workspace.is_active = not workspace.is_active
    await db.flush()
    await db.refresh(workspace)

    verb = "Activated" if workspace.is_active else "Deactivated"
    _log(
        uow,
        workspace,
        f"{verb} workspace",
        f"{ctx.user.full_name} {verb.lower()} workspace: {workspace.name}",
        changes={"is_active": {"old": not workspace.is_active, "new": workspace.is_active}},
    )
    _announce(uow, RealtimeEventType.WORKSPACE_UPDATED, workspace.id, WorkspaceResponse.model_validate(workspace))
    await uow.commit()
    logger.info("Workspace {} {}", workspace.id, verb.lower())
    return workspace


async def _cascade(db: AsyncSession, workspace: Workspace, *, purge_changelog: bool) -> DeletedCounts:
    """Delete a workspace and everything it owns.  Returns what was removed."""
    ws = workspace.id
    await db.execute(delete(Comment).where(Comment.workspace_id == ws).execution_options(synchronize_session=False))
    await db.execute(
        delete(Notification).where(Notification.workspace_id == ws).execution_options(synchronize_session=False)
    )
    tasks = await db.execute(delete(Task).where(Task.workspace_id == ws).execution_options(synchronize_session=False))
    teams = await db.execute(delete(Team).where(Team.workspace_id == ws).execution_options(synchronize_session=False))
    users = await db.execute(delete(User).where(User.workspace_id == ws).execution_options(synchronize_session=False))
    if purge_changelog:
        await db.execute(
            delete(ChangeLog).where(ChangeLog.workspace_id == ws).execution_options(synchronize_session=False)
        )
    await db.delete(workspace)
    await db.flush()
    return DeletedCounts(workspace=workspace.name, users=users.rowcount, tasks=tasks.rowcount, teams=teams.rowcount)


async def delete_workspace(uow: UnitOfWork, workspace_id: str) -> DeletedCounts:
    """Delete a workspace with its users, tasks and teams.  Its changelog is kept."""
    db, ctx = uow.db, uow.ctx
    require(ctx, Resource.WORKSPACE, Action.DELETE)
    if workspace_id == ctx.user.workspace_id:
        raise InvalidRequestError("You cannot delete the workspace you belong to.")
    workspace = await _load(db, workspace_id)

    deleted = await _cascade(db, workspace, purge_changelog=False)
    _log(
        uow,
        workspace,
        "Deleted workspace",
        f"{ctx.user.full_name} deleted workspace: {deleted.workspace} "
        f"({deleted.users} users, {deleted.tasks} tasks, {deleted.teams} teams)",
        metadata=deleted.model_dump(),
    )

    _announce(uow, RealtimeEventType.WORKSPACE_DELETED, workspace_id, {"id": workspace_id, **deleted.model_dump()})
    await uow.commit()
    logger.info("Workspace {} deleted: {}", workspace_id, deleted)
    return deleted


async def delete_own_workspace(uow: UnitOfWork) -> DeletedCounts:
    """A community admin deletes the COMMUNITY workspace they own, with their own account."""
    db, ctx = uow.db, uow.ctx
    require(ctx, Resource.WORKSPACE, Action.DELETE_OWN)
    workspace = ctx.require_workspace()
    if workspace.owner_id != ctx.user_id:
        raise AccessDeniedError("You can only delete workspaces you created.")
    if workspace.type != WorkspaceType.COMMUNITY:
        raise AccessDeniedError(
            "Only community workspaces can be self-deleted. Contact support for enterprise workspaces."
        )

    workspace_id = workspace.id
    deleted = await _cascade(db, workspace, purge_changelog=True)
    _log(
        uow,
        workspace,
        "Deleted own workspace",
        f"Community admin {ctx.user.full_name} deleted their workspace: {deleted.workspace} "
        f"({deleted.users} users, {deleted.tasks} tasks, {deleted.teams} teams)",
        metadata={**deleted.model_dump(), "self_deleted": True},
    )

    _announce(uow, RealtimeEventType.WORKSPACE_DELETED, workspace_id, {"id": workspace_id, **deleted.model_dump()})
    await uow.commit()
    logger.info("Workspace {} self-deleted by {}: {}", workspace_id, ctx.user_id, deleted)
    return deleted


async def add_user(uow: UnitOfWork, workspace_id: str, user_id: str, role: Role) -> User:
    """Move an existing user into a workspace with the given role."""
    db, ctx = uow.db, uow.ctx
    require(ctx, Resource.WORKSPACE, Action.MANAGE)
    workspace = await _load(db, workspace_id)
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    if user.workspace_id == workspace.id:
        raise InvalidRequestError("User already belongs to this workspace.")

    previous = await _move_user(db, user, workspace)
    user.role = role
    await db.flush()
    await recompute_usage(db, workspace.id)
    if previous is not None:
        await recompute_usage(db, previous)
    await db.refresh(user)

    _log(
        uow,
        workspace,
        "Added user to workspace",
        f"{ctx.user.full_name} added {user.full_name} to workspace {workspace.name} as {role}",
        metadata={"user_id": user.id, "email": user.email, "role": role, "previous_workspace_id": previous},
    )
    await uow.commit()
    return user


async def remove_user(uow: UnitOfWork, workspace_id: str, user_id: str) -> User:
    """Detach a user from a workspace.  The account itself is kept."""
    db, ctx = uow.db, uow.ctx
    require(ctx, Resource.WORKSPACE, Action.MANAGE)
    workspace = await _load(db, workspace_id)
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    if user.workspace_id != workspace.id:
        raise InvalidRequestError("User does not belong to this workspace.")

    await membership.detach_user(db, user)
    user.workspace_id = None
    await db.flush()
    await recompute_usage(db, workspace.id)
    await db.refresh(user)

    _log(
        uow,
        workspace,
        "Removed user from workspace",
        f"{ctx.user.full_name} removed {user.full_name} from workspace {workspace.name}",
        metadata={"user_id": user.id, "email": user.email},
    )
    await uow.commit()
    return user
