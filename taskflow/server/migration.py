"""One-shot migration of pre-workspace data into the CORE workspace.

Rows created before workspaces existed have ``workspace_id IS NULL``.  The
migration attaches all of them to the CORE workspace (creating it when
needed) and rebuilds that workspace's usage counters.  Running it again
migrates nothing and leaves the counters unchanged.

System-level changelog entries (``system_event``) are left unscoped.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

import click
from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.db.tables import ChangeLog, Comment, Notification, Task, Team, User, Workspace
from taskflow.server.managers.usage import recompute_usage
from taskflow.server.models.enums import ChangeEventType, Role, WorkspaceType
from taskflow.server.models.workspace import defaults_for

_TABLES = (
    ("users", User),
    ("tasks", Task),
    ("teams", Team),
    ("comments", Comment),
    ("notifications", Notification),
    ("changelog", ChangeLog),
)


class MigrationError(RuntimeError):
    """The migration cannot proceed."""


@dataclass
class MigrationReport:
    workspace_id: str
    workspace_name: str
    created: bool
    migrated: dict[str, int] = field(default_factory=dict)
    totals: dict[str, int] = field(default_factory=dict)

    @property
    def migrated_rows(self) -> int:
        return sum(self.migrated.values())


async def _core_workspace(db: AsyncSession, company_name: str, echo: Callable[[str], None]) -> tuple[Workspace, bool]:
    result = await db.execute(
        select(Workspace)
        .where(Workspace.type == WorkspaceType.CORE)
        .order_by(Workspace.created_at, Workspace.id)
        .limit(1)
    )
    workspace = result.scalars().first()
    if workspace is not None:
        echo(f"CORE workspace already exists: {workspace.name} ({workspace.id})")
        return workspace, False

    result = await db.execute(
        select(User).where(User.role == Role.ADMIN).order_by(User.created_at, User.id).limit(1)
    )
    owner = result.scalars().first()
    if owner is None:
        raise MigrationError("No admin user found. Create an admin user first.")

    taken = await db.execute(select(Workspace.id).where(Workspace.name == company_name))
    if taken.first() is not None:
        raise MigrationError(f"A non-CORE workspace named '{company_name}' already exists.")

    defaults = defaults_for(WorkspaceType.CORE)
    workspace = Workspace(
        name=company_name,
        type=WorkspaceType.CORE,
        owner_id=owner.id,
        is_active=True,
        plan_type=defaults.plan_type,
        settings=defaults.settings.model_dump(),
        limits=defaults.limits.model_dump(),
    )
    db.add(workspace)
    await db.flush()
    echo(f"Created CORE workspace: {workspace.name} ({workspace.id}), owner {owner.email}")
    return workspace, True


async def migrate_workspaces(
    db: AsyncSession,
    company_name: str,
    echo: Callable[[str], None] = click.echo,
) -> MigrationReport:
    """Backfill ``workspace_id`` on legacy rows and rebuild usage counters.

    Everything happens in one transaction; on error nothing is committed.
    """
    workspace, created = await _core_workspace(db, company_name, echo)
    report = MigrationReport(workspace_id=workspace.id, workspace_name=workspace.name, created=created)

    for label, model in _TABLES:
        stmt = update(model).where(model.workspace_id.is_(None))
        if model is ChangeLog:
            stmt = stmt.where(ChangeLog.event_type != ChangeEventType.SYSTEM_EVENT)
        result = await db.execute(
            stmt.values(workspace_id=workspace.id).execution_options(synchronize_session=False)
        )
        report.migrated[label] = result.rowcount

        total = await db.execute(select(func.count()).select_from(model).where(model.workspace_id == workspace.id))
        report.totals[label] = total.scalar_one()
        echo(f"  {label}: migrated {report.migrated[label]}, total {report.totals[label]}")

    usage = await recompute_usage(db, workspace.id)
    await db.commit()
    echo(f"Usage counters: {usage['users']} users, {usage['tasks']} tasks, {usage['teams']} teams")
    logger.info("Workspace migration finished: {} rows moved into {}", report.migrated_rows, workspace.id)
    return report
