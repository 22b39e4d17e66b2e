"""Integration smoke tests for the database and Redis fixtures.

Checks that the testcontainers, Alembic and savepoint-rollback pieces work
together before the API tests rely on them.
"""

from __future__ import annotations

import pytest
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.db.tables import Workspace
from taskflow.server.models.enums import WorkspaceType

pytestmark = pytest.mark.integration

WORKSPACE_NAME = "Rollback Check"


async def test_alembic_migrations_applied(db_session: AsyncSession):
    result = await db_session.execute(
        text("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name")
    )
    tables = {row[0] for row in result}
    assert {"workspaces", "users", "teams", "tasks", "comments", "notifications", "changelog"} <= tables


async def test_savepoint_rollback_isolation(db_session: AsyncSession):
    """Rows committed in a test are visible inside it."""
    db_session.add(Workspace(name=WORKSPACE_NAME, type=WorkspaceType.COMMUNITY, plan_type="FREE"))
    await db_session.commit()  # commits the savepoint only

    result = await db_session.execute(select(Workspace).where(Workspace.name == WORKSPACE_NAME))
    row = result.scalar_one()
    assert row.settings == {}
    assert row.user_count == 0


async def test_savepoint_rollback_clean_state(db_session: AsyncSession):
    """...and gone in the next one."""
    result = await db_session.execute(select(Workspace).where(Workspace.name == WORKSPACE_NAME))
    assert result.scalar_one_or_none() is None, "Savepoint rollback did not clean up previous test's data"


async def test_redis_connection(redis_client):
    await redis_client.set("test_key", "test_value")
    assert await redis_client.get("test_key") == b"test_value"
