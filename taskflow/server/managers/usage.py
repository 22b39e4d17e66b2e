"""Workspace usage counters.

Counters change with single ``UPDATE ... SET n = n + k`` statements, so
concurrent requests never lose increments.  :func:`recompute_usage` rebuilds
them from actual row counts.  Loaded ``Workspace`` objects are not
synchronized; refresh them before reading the counters.
"""

from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.db.tables import Task, Team, User, Workspace


async def bump_usage(
    db: AsyncSession,
    workspace_id: str | None,
    *,
    users: int = 0,
    tasks: int = 0,
    teams: int = 0,
) -> None:
    if workspace_id is None or not (users or tasks or teams):
        return
    await db.execute(
        update(Workspace)
        .where(Workspace.id == workspace_id)
        .values(
            user_count=func.greatest(Workspace.user_count + users, 0),
            task_count=func.greatest(Workspace.task_count + tasks, 0),
            team_count=func.greatest(Workspace.team_count + teams, 0),
        )
        .execution_options(synchronize_session=False)
    )


async def count_rows(db: AsyncSession, workspace_id: str) -> dict[str, int]:
    """Actual user/task/team counts for a workspace."""
    counts = {}
    for key, model in (("users", User), ("tasks", Task), ("teams", Team)):
        result = await db.execute(select(func.count()).select_from(model).where(model.workspace_id == workspace_id))
        counts[key] = result.scalar_one()
    return counts


async def recompute_usage(db: AsyncSession, workspace_id: str) -> dict[str, int]:
    counts = await count_rows(db, workspace_id)
    await db.execute(
        update(Workspace)
        .where(Workspace.id == workspace_id)
        .values(user_count=counts["users"], task_count=counts["tasks"], team_count=counts["teams"])
        .execution_options(synchronize_session=False)
    )
    return counts
