"""User <-> team links.

A team lists its ``members``; a user lists its ``team_ids`` and a primary
``team_id``.  Both sides are always updated together.  In COMMUNITY
workspaces a user belongs to at most one team, so linking moves the user.

JSONB lists are reassigned rather than mutated in place so SQLAlchemy sees
the change.
"""

from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.context import RequestContext
from taskflow.server.db.tables import Team, User


async def link(db: AsyncSession, user: User, team: Team, *, single_team: bool = False, as_member: bool = True) -> None:
    """Attach *user* to *team*.  Leads are linked with ``as_member=False``."""
    if single_team and user.team_id and user.team_id != team.id:
        previous = await db.get(Team, user.team_id)
        if previous is not None:
            previous.members = [m for m in previous.members if m != user.id]
        user.team_ids = []

    if as_member and user.id not in team.members:
        team.members = [*team.members, user.id]
    if team.id not in user.team_ids:
        user.team_ids = [*user.team_ids, team.id]
    user.team_id = team.id


def unlink(user: User, team: Team) -> None:
    team.members = [m for m in team.members if m != user.id]
    user.team_ids = [t for t in user.team_ids if t != team.id]
    if user.team_id == team.id:
        user.team_id = user.team_ids[0] if user.team_ids else None


async def detach_user(db: AsyncSession, user: User) -> int:
    """Remove *user* from every team that lists them.  Returns the number of teams touched."""
    result = await db.execute(
        select(Team).where(
            Team.workspace_id == user.workspace_id,
            or_(Team.id.in_(user.team_ids), Team.members.contains([user.id])),
        )
    )
    teams = list(result.scalars().all())
    for team in teams:
        unlink(user, team)
    user.team_ids = []
    user.team_id = None
    return len(teams)


async def release_team(db: AsyncSession, team: Team) -> int:
    """Drop *team* from every user that references it.  Returns the number of users touched."""
    result = await db.execute(
        select(User).where(
            User.workspace_id == team.workspace_id,
            or_(User.team_id == team.id, User.team_ids.contains([team.id])),
        )
    )
    users = list(result.scalars().all())
    for user in users:
        unlink(user, team)
    return len(users)


async def team_scope(db: AsyncSession, ctx: RequestContext) -> set[str]:
    """Ids of teams the caller belongs to, leads, or is HR for."""
    scope = set(ctx.user.team_ids or [])
    if ctx.user.team_id:
        scope.add(ctx.user.team_id)
    stmt = select(Team.id).where(
        or_(Team.lead_id == ctx.user_id, Team.hr_id == ctx.user_id, Team.members.contains([ctx.user_id]))
    )
    result = await db.execute(ctx.scoped(stmt, Team))
    scope.update(result.scalars().all())
    return scope
