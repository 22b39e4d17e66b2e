"""Unit tests for workspace scoping and tier checks on RequestContext."""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from taskflow.server.context import RequestContext
from taskflow.server.db.tables import Task, User, Workspace
from taskflow.server.errors import AccessDeniedError, LimitReachedError
from taskflow.server.models.enums import Feature, Role, WorkspaceType
from taskflow.server.models.workspace import defaults_for


def _workspace(workspace_type: WorkspaceType, **counters: int) -> Workspace:
    defaults = defaults_for(workspace_type)
    return Workspace(
        id="ws-1",
        name="Acme",
        type=workspace_type,
        settings=defaults.settings.model_dump(),
        limits=defaults.limits.model_dump(),
        user_count=counters.get("users", 0),
        task_count=counters.get("tasks", 0),
        team_count=counters.get("teams", 0),
    )


def _user(role: Role, workspace_id: str | None = "ws-1") -> User:
    return User(id="u-1", full_name="Test User", email="t@example.com", role=role, workspace_id=workspace_id)


def _sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def test_scoped_adds_workspace_filter():
    ctx = RequestContext(user=_user(Role.MEMBER), workspace=_workspace(WorkspaceType.CORE))
    sql = _sql(ctx.scoped(select(Task), Task))
    assert "tasks.workspace_id = " in sql


def test_system_admin_without_workspace_is_unscoped():
    ctx = RequestContext(user=_user(Role.ADMIN, workspace_id=None), workspace=None)
    assert ctx.is_system_admin
    assert "WHERE" not in _sql(ctx.scoped(select(Task), Task))


def test_system_admin_with_selected_workspace_is_scoped():
    ctx = RequestContext(user=_user(Role.ADMIN, workspace_id=None), workspace=_workspace(WorkspaceType.CORE))
    assert "tasks.workspace_id = " in _sql(ctx.scoped(select(Task), Task))


def test_require_workspace_without_workspace():
    ctx = RequestContext(user=_user(Role.ADMIN, workspace_id=None), workspace=None)
    with pytest.raises(AccessDeniedError) as exc_info:
        ctx.require_workspace()
    assert exc_info.value.code == "NO_WORKSPACE"


def test_community_limit_reached():
    ctx = RequestContext(user=_user(Role.MEMBER), workspace=_workspace(WorkspaceType.COMMUNITY, tasks=100))
    with pytest.raises(LimitReachedError) as exc_info:
        ctx.check_limit("tasks")
    assert exc_info.value.limit == 100
    assert exc_info.value.code == "LIMIT_REACHED"


def test_community_below_limit():
    ctx = RequestContext(user=_user(Role.MEMBER), workspace=_workspace(WorkspaceType.COMMUNITY, teams=2))
    ctx.check_limit("teams")


def test_core_has_no_limits():
    ctx = RequestContext(user=_user(Role.MEMBER), workspace=_workspace(WorkspaceType.CORE, users=10_000))
    ctx.check_limit("users", adding=50)


def test_hr_bypasses_limits():
    ctx = RequestContext(user=_user(Role.HR), workspace=_workspace(WorkspaceType.COMMUNITY, users=10))
    ctx.check_limit("users")


def test_features_follow_workspace_type():
    community = RequestContext(user=_user(Role.COMMUNITY_ADMIN), workspace=_workspace(WorkspaceType.COMMUNITY))
    core = RequestContext(user=_user(Role.TEAM_LEAD), workspace=_workspace(WorkspaceType.CORE))
    assert not community.has_feature(Feature.BULK_USER_IMPORT)
    assert core.has_feature(Feature.BULK_USER_IMPORT)
    with pytest.raises(AccessDeniedError) as exc_info:
        community.require_feature(Feature.AUDIT_LOGS)
    assert exc_info.value.code == "FEATURE_NOT_AVAILABLE"


def test_actor_snapshot():
    ctx = RequestContext(user=_user(Role.HR), workspace=None, ip="10.0.0.1")
    assert ctx.actor() == {
        "user_id": "u-1",
        "user_email": "t@example.com",
        "user_name": "Test User",
        "user_role": Role.HR,
        "user_ip": "10.0.0.1",
    }
