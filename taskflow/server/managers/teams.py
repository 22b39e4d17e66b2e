"""Team operations.

Teams belong to one workspace.  In CORE workspaces a team needs an HR user
(role hr/admin) and a lead (role team_lead/admin); in COMMUNITY workspaces
both default to the acting user and any workspace member qualifies.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.context import RequestContext
from taskflow.server.db.tables import Team, User, new_id
from taskflow.server.effects import UnitOfWork
from taskflow.server.errors import InvalidRequestError, NotFoundError
from taskflow.server.managers import membership
from taskflow.server.managers.usage import bump_usage, recompute_usage
from taskflow.server.models.api import (
    BulkMemberResult,
    MemberOutcome,
    TeamBulkDeleteResult,
    TeamCreate,
    TeamDeleteResult,
    TeamResponse,
    TeamUpdate,
)
from taskflow.server.models.enums import ChangeEventType, RealtimeEventType, Role, TargetType
from taskflow.server.policy import Action, Grant, Resource, require

RESERVED_NAME = "admin"

_HR_ROLES = (Role.HR, Role.ADMIN)
_LEAD_ROLES = (Role.TEAM_LEAD, Role.ADMIN)


def _check_name(name: str | None) -> None:
    if name is not None and name.strip().lower() == RESERVED_NAME:
        raise InvalidRequestError("The team name 'Admin' is reserved. Please choose a different name.")


async def _workspace_user(db: AsyncSession, ctx: RequestContext, user_id: str, label: str) -> User:
    result = await db.execute(ctx.scoped(select(User).where(User.id == user_id), User))
    user = result.scalar_one_or_none()
    if user is None:
        raise InvalidRequestError(f"{label} not found.")
    return user


async def _pick(
    db: AsyncSession, ctx: RequestContext, user_id: str | None, label: str, roles: tuple[Role, ...]
) -> User:
    """Resolve the HR or lead for a team, applying the CORE role rules."""
    if user_id is None:
        if ctx.is_core:
            raise InvalidRequestError("HR and Team Lead are required for CORE workspaces.")
        return ctx.user
    user = await _workspace_user(db, ctx, user_id, label)
    if ctx.is_core and user.role not in roles:
        allowed = " or ".join(r.replace("_", " ").title() for r in roles)
        raise InvalidRequestError(f"Selected {label} must have {allowed} role.")
    return user


async def _load(db: AsyncSession, ctx: RequestContext, team_id: str) -> Team:
    result = await db.execute(ctx.scoped(select(Team).where(Team.id == team_id), Team))
    team = result.scalar_one_or_none()
    if team is None:
        raise NotFoundError("Team", team_id)
    return team


def _emit_updated(uow: UnitOfWork, team: Team) -> None:
    uow.emit(RealtimeEventType.TEAM_UPDATED, TeamResponse.model_validate(team))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_teams(db: AsyncSession, ctx: RequestContext) -> list[Team]:
    """Teams ordered pinned first, then by priority, then newest."""
    grant = require(ctx, Resource.TEAM, Action.READ)
    stmt = ctx.scoped(select(Team), Team)
    if grant is not Grant.ANY:
        if ctx.role == Role.TEAM_LEAD:
            stmt = stmt.where(Team.lead_id == ctx.user_id)
        else:
            scope = await membership.team_scope(db, ctx)
            stmt = stmt.where(Team.id.in_(scope))
    stmt = stmt.order_by(Team.pinned.desc(), Team.priority.desc(), Team.created_at.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_team(db: AsyncSession, ctx: RequestContext, team_id: str) -> Team:
    grant = require(ctx, Resource.TEAM, Action.READ)
    team = await _load(db, ctx, team_id)
    if grant is not Grant.ANY and team.id not in await membership.team_scope(db, ctx):
        raise NotFoundError("Team", team_id)
    return team


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def create_team(uow: UnitOfWork, body: TeamCreate) -> Team:
    db, ctx = uow.db, uow.ctx
    workspace = ctx.require_workspace()
    require(ctx, Resource.TEAM, Action.CREATE)
    ctx.check_limit("teams")
    _check_name(body.name)

    hr = await _pick(db, ctx, body.hr_id, "HR user", _HR_ROLES)
    lead = await _pick(db, ctx, body.lead_id, "team lead", _LEAD_ROLES)
    members = [
        await _workspace_user(db, ctx, user_id, f"Member '{user_id}'") for user_id in dict.fromkeys(body.members)
    ]

    team = Team(
        id=new_id(),
        name=body.name,
        description=body.description,
        hr_id=hr.id,
        lead_id=lead.id,
        members=[],
        workspace_id=workspace.id,
    )
    db.add(team)
    single_team = not ctx.is_core
    await membership.link(db, lead, team, single_team=single_team, as_member=False)
    for user in members:
        await membership.link(db, user, team, single_team=single_team)
    await bump_usage(db, workspace.id, teams=1)
    await db.flush()

    uow.record_change(
        ChangeEventType.TEAM_CREATED,
        TargetType.TEAM,
        target_id=team.id,
        target_name=team.name,
        action="Created team",
        description=f'{ctx.user.full_name} created team "{team.name}"',
        metadata={"hr_id": hr.id, "lead_id": lead.id, "members": team.members},
    )
    uow.emit(RealtimeEventType.TEAM_CREATED, TeamResponse.model_validate(team))
    await uow.commit()
    logger.info("Team {} created in workspace {}", team.id, workspace.id)
    return team


async def update_team(uow: UnitOfWork, team_id: str, body: TeamUpdate) -> Team:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.TEAM, Action.UPDATE)
    team = await _load(db, ctx, team_id)
    updates = body.model_dump(exclude_unset=True)
    _check_name(updates.get("name"))

    changes = {}
    if updates.get("name") and updates["name"] != team.name:
        changes["name"] = {"old": team.name, "new": updates["name"]}
        team.name = updates["name"]
    if "description" in updates and updates["description"] != team.description:
        changes["description"] = {"old": team.description, "new": updates["description"]}
        team.description = updates["description"]
    if updates.get("lead_id") and updates["lead_id"] != team.lead_id:
        lead = await _pick(db, ctx, updates["lead_id"], "team lead", _LEAD_ROLES)
        changes["lead_id"] = {"old": team.lead_id, "new": lead.id}
        team.lead_id = lead.id
        await membership.link(db, lead, team, single_team=not ctx.is_core, as_member=False)

    await db.flush()
    await db.refresh(team)
    uow.record_change(
        ChangeEventType.TEAM_UPDATED,
        TargetType.TEAM,
        target_id=team.id,
        target_name=team.name,
        action="Updated team",
        description=f'{ctx.user.full_name} updated team "{team.name}"',
        changes=changes,
    )
    _emit_updated(uow, team)
    await uow.commit()
    return team


async def toggle_pin(uow: UnitOfWork, team_id: str) -> Team:
    """Toggle pinning.  A newly pinned team moves above every other team."""
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.TEAM, Action.MANAGE)
    team = await _load(db, ctx, team_id)

    team.pinned = not team.pinned
    if team.pinned:
        result = await db.execute(ctx.scoped(select(func.max(Team.priority)), Team))
        highest = result.scalar_one_or_none()
        team.priority = 1 if highest is None else highest + 1
    await db.flush()
    await db.refresh(team)

    uow.record_change(
        ChangeEventType.TEAM_UPDATED,
        TargetType.TEAM,
        target_id=team.id,
        target_name=team.name,
        action="Pinned team" if team.pinned else "Unpinned team",
        description=f'{ctx.user.full_name} {"pinned" if team.pinned else "unpinned"} team "{team.name}"',
    )
    _emit_updated(uow, team)
    await uow.commit()
    return team


async def set_priority(uow: UnitOfWork, team_id: str, priority: int) -> Team:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.TEAM, Action.MANAGE)
    team = await _load(db, ctx, team_id)
    old = team.priority
    team.priority = priority
    await db.flush()
    await db.refresh(team)

    uow.record_change(
        ChangeEventType.TEAM_UPDATED,
        TargetType.TEAM,
        target_id=team.id,
        target_name=team.name,
        action="Changed team priority",
        description=f'{ctx.user.full_name} changed the priority of team "{team.name}"',
        changes={"priority": {"old": old, "new": priority}},
    )
    _emit_updated(uow, team)
    await uow.commit()
    return team


async def reorder_teams(uow: UnitOfWork, team_order: list[str]) -> list[Team]:
    """Assign descending priorities in the given order (first = highest)."""
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.TEAM, Action.MANAGE)
    result = await db.execute(ctx.scoped(select(Team).where(Team.id.in_(team_order)), Team))
    teams = {team.id: team for team in result.scalars().all()}

    for index, team_id in enumerate(team_order):
        if team_id in teams:
            teams[team_id].priority = len(team_order) - index
    await db.flush()

    uow.record_change(
        ChangeEventType.TEAM_UPDATED,
        TargetType.TEAM,
        action="Reordered teams",
        description=f"{ctx.user.full_name} reordered {len(teams)} team(s)",
        metadata={"team_order": team_order},
    )
    for team in teams.values():
        await db.refresh(team)
        _emit_updated(uow, team)
    await uow.commit()
    return list(teams.values())


async def add_member(uow: UnitOfWork, team_id: str, user_id: str) -> Team:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.TEAM, Action.MANAGE)
    user = await _workspace_user(db, ctx, user_id, "User")
    team = await _load(db, ctx, team_id)
    if user.id in team.members:
        raise InvalidRequestError("User already in team.")

    await membership.link(db, user, team, single_team=not ctx.is_core)
    await db.flush()
    await db.refresh(team)

    uow.record_change(
        ChangeEventType.TEAM_MEMBER_ADDED,
        TargetType.TEAM,
        target_id=team.id,
        target_name=team.name,
        action="Added team member",
        description=f'{ctx.user.full_name} added {user.full_name} to team "{team.name}"',
        metadata={"user_id": user.id},
    )
    _emit_updated(uow, team)
    await uow.commit()
    return team


async def add_members(uow: UnitOfWork, team_id: str, user_ids: list[str]) -> BulkMemberResult:
    """Add several users, reporting each as added, skipped or failed."""
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.TEAM, Action.MANAGE)
    team = await _load(db, ctx, team_id)
    outcome = BulkMemberResult()

    result = await db.execute(ctx.scoped(select(User).where(User.id.in_(user_ids)), User))
    users = {user.id: user for user in result.scalars().all()}
    for user_id in dict.fromkeys(user_ids):
        user = users.get(user_id)
        if user is None:
            outcome.failed.append(MemberOutcome(user_id=user_id, reason="User not found"))
        elif user.id in team.members:
            outcome.skipped.append(MemberOutcome(user_id=user_id, name=user.full_name, reason="Already a member"))
        else:
            await membership.link(db, user, team, single_team=not ctx.is_core)
            outcome.added.append(MemberOutcome(user_id=user_id, name=user.full_name))

    await db.flush()
    await db.refresh(team)
    outcome.team = TeamResponse.model_validate(team)
    if outcome.added:
        uow.record_change(
            ChangeEventType.TEAM_MEMBER_ADDED,
            TargetType.TEAM,
            target_id=team.id,
            target_name=team.name,
            action="Added team members",
            description=f'{ctx.user.full_name} added {len(outcome.added)} member(s) to team "{team.name}"',
            metadata={"user_ids": [m.user_id for m in outcome.added]},
        )
        uow.emit(RealtimeEventType.TEAM_UPDATED, outcome.team)
    await uow.commit()
    return outcome


async def remove_member(uow: UnitOfWork, team_id: str, user_id: str) -> Team:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.TEAM, Action.MANAGE)
    team = await _load(db, ctx, team_id)
    if user_id not in team.members:
        raise InvalidRequestError("User is not a member of this team.")

    is_hr, is_lead = team.hr_id == user_id, team.lead_id == user_id
    if is_hr or is_lead:
        role = "HR and Team Lead" if is_hr and is_lead else "HR" if is_hr else "Team Lead"
        raise InvalidRequestError(
            f"Cannot remove the {role} from their own team. Please reassign the {role} role first."
        )

    user = await db.get(User, user_id)
    if user is not None and user.workspace_id == team.workspace_id:
        membership.unlink(user, team)
    else:
        team.members = [m for m in team.members if m != user_id]
    await db.flush()
    await db.refresh(team)

    name = user.full_name if user is not None else user_id
    uow.record_change(
        ChangeEventType.TEAM_MEMBER_REMOVED,
        TargetType.TEAM,
        target_id=team.id,
        target_name=team.name,
        action="Removed team member",
        description=f'{ctx.user.full_name} removed {name} from team "{team.name}"',
        metadata={"user_id": user_id},
    )
    _emit_updated(uow, team)
    await uow.commit()
    return team


async def delete_team(uow: UnitOfWork, team_id: str) -> TeamDeleteResult:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.TEAM, Action.DELETE)
    team = await _load(db, ctx, team_id)
    result = TeamDeleteResult(id=team.id, name=team.name, users_affected=len(team.members) + 1)

    await membership.release_team(db, team)
    await db.delete(team)
    await bump_usage(db, team.workspace_id, teams=-1)

    uow.record_change(
        ChangeEventType.TEAM_DELETED,
        TargetType.TEAM,
        target_id=result.id,
        target_name=result.name,
        action="Deleted team",
        description=f'{ctx.user.full_name} deleted team "{result.name}"',
        metadata={"users_affected": result.users_affected},
        workspace_id=team.workspace_id,
    )
    uow.emit(RealtimeEventType.TEAM_DELETED, {"id": result.id, "name": result.name})
    await uow.commit()
    logger.info("Team {} deleted from workspace {}", result.id, team.workspace_id)
    return result


async def delete_all_teams(uow: UnitOfWork) -> TeamBulkDeleteResult:
    """Delete every team in the caller's workspace and clear all team links."""
    db, ctx = uow.db, uow.ctx
    workspace = ctx.require_workspace()
    require(ctx, Resource.TEAM, Action.DELETE)

    result = await db.execute(select(Team).where(Team.workspace_id == workspace.id))
    teams = list(result.scalars().all())
    if not teams:
        raise NotFoundError("Team", "*")
    team_ids = [team.id for team in teams]

    users = await db.execute(select(User).where(User.workspace_id == workspace.id))
    for user in users.scalars().all():
        if user.team_id in team_ids or set(user.team_ids) & set(team_ids):
            user.team_ids = [t for t in user.team_ids if t not in team_ids]
            user.team_id = None
    for team in teams:
        await db.delete(team)
    await db.flush()
    await recompute_usage(db, workspace.id)

    uow.record_change(
        ChangeEventType.TEAM_DELETED,
        TargetType.TEAM,
        action="Deleted all teams",
        description=f"{ctx.user.full_name} deleted all {len(teams)} team(s)",
        metadata={"team_ids": team_ids},
    )
    outcome = TeamBulkDeleteResult(count=len(teams), team_ids=team_ids)
    uow.emit(RealtimeEventType.TEAM_BULK_DELETED, outcome)
    await uow.commit()
    logger.info("Deleted {} teams from workspace {}", len(teams), workspace.id)
    return outcome
