"""Backfilling pre-workspace rows into the CORE workspace."""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.db.tables import ChangeLog, Task, Team, User, Workspace, new_id
from taskflow.server.migration import MigrationError, migrate_workspaces
from taskflow.server.models.enums import ChangeEventType, Role, TargetType, WorkspaceType

pytestmark = pytest.mark.integration


def _legacy_user(name: str, role: Role) -> User:
    return User(
        id=new_id(),
        full_name=name,
        email=f"{name.lower()}@legacy.example.com",
        password_hash="x",
        role=role,
        team_ids=[],
    )


def _change(event_type: ChangeEventType) -> ChangeLog:
    return ChangeLog(
        id=new_id(),
        event_type=event_type,
        target_type=TargetType.SYSTEM,
        action="Legacy",
        description="Recorded before workspaces",
    )


async def _seed_legacy(db: AsyncSession) -> User:
    admin = _legacy_user("Root", Role.ADMIN)
    member = _legacy_user("Mona", Role.MEMBER)
    db.add_all([admin, member])
    db.add(Team(id=new_id(), name="Legacy", hr_id=admin.id, lead_id=admin.id, members=[member.id]))
    db.add(Task(id=new_id(), title="Old task", created_by=admin.id, assigned_to=[member.id]))
    db.add_all([_change(ChangeEventType.TASK_CREATED), _change(ChangeEventType.SYSTEM_EVENT)])
    await db.flush()
    return admin


async def test_migration_is_idempotent(db_session: AsyncSession):
    admin = await _seed_legacy(db_session)
    lines: list[str] = []

    first = await migrate_workspaces(db_session, "Legacy Co", echo=lines.append)
    assert first.created
    assert first.workspace_name == "Legacy Co"
    assert first.migrated == {
        "users": 2,
        "tasks": 1,
        "teams": 1,
        "comments": 0,
        "notifications": 0,
        "changelog": 1,
    }

    workspace = await db_session.get(Workspace, first.workspace_id, populate_existing=True)
    assert workspace.type == WorkspaceType.CORE
    assert workspace.owner_id == admin.id
    counters = (workspace.user_count, workspace.task_count, workspace.team_count)
    assert counters == (2, 1, 1)

    second = await migrate_workspaces(db_session, "Legacy Co", echo=lines.append)
    assert not second.created
    assert second.workspace_id == first.workspace_id
    assert second.migrated_rows == 0
    assert second.totals == first.totals

    workspace = await db_session.get(Workspace, first.workspace_id, populate_existing=True)
    assert (workspace.user_count, workspace.task_count, workspace.team_count) == counters
    assert any("already exists" in line for line in lines)


async def test_system_events_stay_unscoped(db_session: AsyncSession):
    await _seed_legacy(db_session)
    await migrate_workspaces(db_session, "Legacy Co", echo=lambda _: None)

    result = await db_session.execute(
        select(ChangeLog.workspace_id).where(ChangeLog.event_type == ChangeEventType.SYSTEM_EVENT)
    )
    assert result.scalars().all() == [None]


async def test_migration_requires_an_admin(db_session: AsyncSession):
    db_session.add(_legacy_user("Mona", Role.MEMBER))
    await db_session.flush()

    with pytest.raises(MigrationError, match="No admin"):
        await migrate_workspaces(db_session, "Legacy Co", echo=lambda _: None)
