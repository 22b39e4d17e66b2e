"""Service fixtures shared by every integration test.

A PostgreSQL 17 and a Redis 7 container are started once per run with
testcontainers (Docker required).  The schema is built by the same Alembic
config ``taskflow db upgrade`` uses, and each test talks to it through an
engine made by ``taskflow.server.db.engine``.  Tests run inside a
transaction that is rolled back afterwards, so the ``seed`` tenants below
start fresh every time.

Seed layout:

- ``core`` (CORE): admin, hr, team lead, two members, one team (lead + member)
- ``community`` (COMMUNITY): community admin, one member
- a system administrator with no workspace
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass

import pytest
import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from taskflow.server.db.engine import create_engine
from taskflow.server.db.tables import Team, User, Workspace, new_id
from taskflow.server.managers.usage import recompute_usage
from taskflow.server.models.enums import Role, WorkspaceType
from taskflow.server.models.workspace import defaults_for
from taskflow.server.settings import _get_settings_cached

# Any well-formed bcrypt hash; API tests authenticate through headers, not passwords.
PASSWORD_HASH = "$2b$12$C6UzMDM.H6dfI/f/IKcEeO6d5xA5zH0hXrAoG0cAqIkyxK7yJqFQm"


def _use_env(name: str, value: str) -> None:
    os.environ[name] = value
    _get_settings_cached.cache_clear()


# -- Containers ---------------------------------------------------------------------


@pytest.fixture(scope="session")
def database_url() -> Iterator[str]:
    """URL of a throwaway PostgreSQL migrated to the latest revision."""
    from alembic import command

    from taskflow.cli import _alembic_config

    with PostgresContainer("postgres:17", dbname="taskflow_test", driver="psycopg") as pg:
        url = pg.get_connection_url()
        _use_env("TASKFLOW_DATABASE_URL", url)
        command.upgrade(_alembic_config(), "head")
        yield url


@pytest.fixture(scope="session")
def redis_url() -> Iterator[str]:
    with RedisContainer("redis:7") as container:
        url = f"redis://{container.get_container_host_ip()}:{container.get_exposed_port(6379)}/0"
        _use_env("TASKFLOW_REDIS_URL", url)
        yield url


# -- Connections ----------------------------------------------------------------------


@pytest.fixture(scope="session")
async def async_engine(database_url: str) -> AsyncIterator[AsyncEngine]:
    engine = create_engine(database_url, pool_size=2, max_overflow=2)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Session whose commits land in savepoints of an outer, rolled-back transaction.

    Matches the application's factory (``expire_on_commit=False``) so objects
    stay readable after a manager commits.
    """
    async with async_engine.connect() as conn:
        outer = await conn.begin()
        session = AsyncSession(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
        try:
            yield session
        finally:
            await session.close()
            await outer.rollback()


@pytest.fixture
async def redis_client(redis_url: str) -> AsyncIterator[aioredis.Redis]:
    client = aioredis.from_url(redis_url)
    try:
        yield client
    finally:
        await client.flushdb()
        await client.aclose()


# -- Seed data --------------------------------------------------------------------------


@dataclass
class Seed:
    core: Workspace
    community: Workspace
    sysadmin: User
    admin: User
    hr: User
    lead: User
    member: User
    other_member: User
    community_admin: User
    community_member: User
    team: Team

    @staticmethod
    def headers(user: User, workspace: Workspace | None = None) -> dict[str, str]:
        """Identity headers as forwarded by the auth gateway."""
        result = {"X-User-Id": user.id}
        if workspace is not None:
            result["X-Workspace-Id"] = workspace.id
        return result


def _workspace(name: str, workspace_type: WorkspaceType) -> Workspace:
    defaults = defaults_for(workspace_type)
    return Workspace(
        id=new_id(),
        name=name,
        type=workspace_type,
        is_active=True,
        plan_type=defaults.plan_type,
        settings=defaults.settings.model_dump(),
        limits=defaults.limits.model_dump(),
    )


def _user(name: str, role: Role, workspace: Workspace | None) -> User:
    return User(
        id=new_id(),
        full_name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        password_hash=PASSWORD_HASH,
        role=role,
        team_ids=[],
        workspace_id=workspace.id if workspace is not None else None,
    )


@pytest.fixture
async def seed(db_session: AsyncSession) -> Seed:
    core = _workspace("Acme Corp", WorkspaceType.CORE)
    community = _workspace("Hobby Club", WorkspaceType.COMMUNITY)
    db_session.add_all([core, community])
    await db_session.flush()

    sysadmin = _user("System Admin", Role.ADMIN, None)
    admin = _user("Alice Admin", Role.ADMIN, core)
    hr = _user("Harry Hr", Role.HR, core)
    lead = _user("Lena Lead", Role.TEAM_LEAD, core)
    member = _user("Mark Member", Role.MEMBER, core)
    other_member = _user("Olga Other", Role.MEMBER, core)
    community_admin = _user("Cora Community", Role.COMMUNITY_ADMIN, community)
    community_member = _user("Carl Community", Role.MEMBER, community)
    db_session.add_all([sysadmin, admin, hr, lead, member, other_member, community_admin, community_member])

    team = Team(
        id=new_id(),
        name="Platform",
        hr_id=hr.id,
        lead_id=lead.id,
        members=[member.id],
        workspace_id=core.id,
    )
    db_session.add(team)
    lead.team_id, lead.team_ids = team.id, [team.id]
    member.team_id, member.team_ids = team.id, [team.id]
    core.owner_id = admin.id
    community.owner_id = community_admin.id
    await db_session.flush()

    await recompute_usage(db_session, core.id)
    await recompute_usage(db_session, community.id)
    await db_session.commit()
    for workspace in (core, community):
        await db_session.refresh(workspace)

    return Seed(
        core=core,
        community=community,
        sysadmin=sysadmin,
        admin=admin,
        hr=hr,
        lead=lead,
        member=member,
        other_member=other_member,
        community_admin=community_admin,
        community_member=community_member,
        team=team,
    )
