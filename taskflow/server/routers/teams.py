"""Team endpoints.

Pinned teams sort first, then by priority.  Pinning, priorities and
membership changes require the ``manage`` grant on teams.
"""

from __future__ import annotations

from fastapi import APIRouter, status

from taskflow.server.db.tables import Team
from taskflow.server.deps import Context, DbSession, Uow
from taskflow.server.managers import teams
from taskflow.server.models.api import (
    BulkMemberResult,
    TeamBulkDeleteResult,
    TeamCreate,
    TeamDeleteResult,
    TeamMemberAdd,
    TeamMembersBulkAdd,
    TeamPriorityUpdate,
    TeamReorder,
    TeamResponse,
    TeamUpdate,
)
from taskflow.server.routers._errors import domain_errors

router = APIRouter(prefix="/teams", tags=["teams"])


@router.get("", response_model=list[TeamResponse])
async def list_teams(db: DbSession, ctx: Context) -> list[Team]:
    with domain_errors():
        return await teams.list_teams(db, ctx)


@router.post("", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(body: TeamCreate, uow: Uow) -> Team:
    with domain_errors():
        return await teams.create_team(uow, body)


@router.post("/reorder", response_model=list[TeamResponse])
async def reorder_teams(body: TeamReorder, uow: Uow) -> list[Team]:
    """Assign descending priorities in the given order."""
    with domain_errors():
        return await teams.reorder_teams(uow, body.team_order)


@router.delete("/bulk/all", response_model=TeamBulkDeleteResult)
async def delete_all_teams(uow: Uow) -> TeamBulkDeleteResult:
    """Delete every team in the workspace and clear all memberships."""
    with domain_errors():
        return await teams.delete_all_teams(uow)


@router.get("/{team_id}", response_model=TeamResponse)
async def get_team(team_id: str, db: DbSession, ctx: Context) -> Team:
    with domain_errors():
        return await teams.get_team(db, ctx, team_id)


@router.patch("/{team_id}", response_model=TeamResponse)
async def update_team(team_id: str, body: TeamUpdate, uow: Uow) -> Team:
    with domain_errors():
        return await teams.update_team(uow, team_id, body)


@router.delete("/{team_id}", response_model=TeamDeleteResult)
async def delete_team(team_id: str, uow: Uow) -> TeamDeleteResult:
    with domain_errors():
        return await teams.delete_team(uow, team_id)


@router.patch("/{team_id}/pin", response_model=TeamResponse)
async def toggle_pin(team_id: str, uow: Uow) -> Team:
    with domain_errors():
        return await teams.toggle_pin(uow, team_id)


@router.patch("/{team_id}/priority", response_model=TeamResponse)
async def set_priority(team_id: str, body: TeamPriorityUpdate, uow: Uow) -> Team:
    with domain_errors():
        return await teams.set_priority(uow, team_id, body.priority)


@router.post("/{team_id}/members", response_model=TeamResponse)
async def add_member(team_id: str, body: TeamMemberAdd, uow: Uow) -> Team:
    with domain_errors():
        return await teams.add_member(uow, team_id, body.user_id)


@router.post("/{team_id}/members/bulk", response_model=BulkMemberResult)
async def add_members(team_id: str, body: TeamMembersBulkAdd, uow: Uow) -> BulkMemberResult:
    """Add several users; each one is reported as added, skipped or failed."""
    with domain_errors():
        return await teams.add_members(uow, team_id, body.user_ids)


@router.delete("/{team_id}/members/{user_id}", response_model=TeamResponse)
async def remove_member(team_id: str, user_id: str, uow: Uow) -> Team:
    with domain_errors():
        return await teams.remove_member(uow, team_id, user_id)
