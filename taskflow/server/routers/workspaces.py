"""Workspace administration endpoints.

Everything except ``/current`` and ``/my-workspace/delete`` requires the ``admin`` role.
Fixed paths are declared before ``/{workspace_id}``.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, status

from taskflow.server.db.tables import Task, Team, User, Workspace
from taskflow.server.deps import Context, DbSession, Uow
from taskflow.server.managers import workspaces
from taskflow.server.models.api import (
    TaskResponse,
    TeamResponse,
    UserResponse,
    WorkspaceCreate,
    WorkspaceDeleteResult,
    WorkspaceResponse,
    WorkspaceSummary,
    WorkspaceUpdate,
    WorkspaceUserAdd,
    WorkspaceUserRemove,
    WorkspaceWithStats,
)
from taskflow.server.routers._errors import domain_errors

router = APIRouter(prefix="/workspaces", tags=["workspaces"])


@router.get("", response_model=list[WorkspaceWithStats])
async def list_workspaces(db: DbSession, ctx: Context) -> list[WorkspaceWithStats]:
    """All workspaces, newest first, with live row counts."""
    with domain_errors():
        return await workspaces.list_workspaces(db, ctx)


@router.post("", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
async def create_workspace(body: WorkspaceCreate, uow: Uow) -> Workspace:
    with domain_errors():
        return await workspaces.create_workspace(uow, body)


@router.get("/current", response_model=WorkspaceResponse)
async def current_workspace(db: DbSession, ctx: Context) -> Workspace:
    """The caller's workspace, with its tier limits and features."""
    with domain_errors():
        return await workspaces.current_workspace(db, ctx)


@router.get("/stats/summary", response_model=WorkspaceSummary)
async def summary(db: DbSession, ctx: Context) -> WorkspaceSummary:
    with domain_errors():
        return await workspaces.summary(db, ctx)


@router.delete("/my-workspace/delete", response_model=WorkspaceDeleteResult)
async def delete_own_workspace(uow: Uow) -> WorkspaceDeleteResult:
    """A community admin deletes the workspace they own, including their account."""
    with domain_errors():
        return WorkspaceDeleteResult(deleted=await workspaces.delete_own_workspace(uow))


@router.get("/{workspace_id}", response_model=WorkspaceWithStats)
async def get_workspace(workspace_id: str, db: DbSession, ctx: Context) -> WorkspaceWithStats:
    with domain_errors():
        return await workspaces.get_workspace(db, ctx, workspace_id)


@router.put("/{workspace_id}", response_model=WorkspaceResponse)
async def update_workspace(workspace_id: str, body: WorkspaceUpdate, uow: Uow) -> Workspace:
    with domain_errors():
        return await workspaces.update_workspace(uow, workspace_id, body)


@router.delete("/{workspace_id}", response_model=WorkspaceDeleteResult)
async def delete_workspace(workspace_id: str, uow: Uow) -> WorkspaceDeleteResult:
    """Delete a workspace with its users, tasks and teams.  Its audit trail is kept."""
    with domain_errors():
        return WorkspaceDeleteResult(deleted=await workspaces.delete_workspace(uow, workspace_id))


@router.patch("/{workspace_id}/toggle-status", response_model=WorkspaceResponse)
async def toggle_status(workspace_id: str, uow: Uow) -> Workspace:
    with domain_errors():
        return await workspaces.toggle_status(uow, workspace_id)


@router.get("/{workspace_id}/users", response_model=list[UserResponse])
async def list_members(workspace_id: str, db: DbSession, ctx: Context) -> list[User]:
    with domain_errors():
        return await workspaces.list_members(db, ctx, workspace_id)


@router.get("/{workspace_id}/tasks", response_model=list[TaskResponse])
async def list_workspace_tasks(
    workspace_id: str,
    db: DbSession,
    ctx: Context,
    limit: int = Query(100, ge=1, le=500),
) -> list[Task]:
    with domain_errors():
        return await workspaces.list_workspace_tasks(db, ctx, workspace_id, limit=limit)


@router.get("/{workspace_id}/teams", response_model=list[TeamResponse])
async def list_workspace_teams(workspace_id: str, db: DbSession, ctx: Context) -> list[Team]:
    with domain_errors():
        return await workspaces.list_workspace_teams(db, ctx, workspace_id)


@router.post("/{workspace_id}/add-user", response_model=UserResponse)
async def add_user(workspace_id: str, body: WorkspaceUserAdd, uow: Uow) -> User:
    with domain_errors():
        return await workspaces.add_user(uow, workspace_id, body.user_id, body.role)


@router.post("/{workspace_id}/remove-user", response_model=UserResponse)
async def remove_user(workspace_id: str, body: WorkspaceUserRemove, uow: Uow) -> User:
    with domain_errors():
        return await workspaces.remove_user(uow, workspace_id, body.user_id)
