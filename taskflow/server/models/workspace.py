"""Workspace tier model.

A workspace is the tenant boundary.  Its type decides the default limits,
premium features and plan; defaults are re-applied whenever the type changes.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from taskflow.server.models.enums import Feature, PlanType, WorkspaceType


class WorkspaceLimits(BaseModel):
    """Resource ceilings.  ``None`` means unlimited."""

    max_users: int | None = None
    max_tasks: int | None = None
    max_teams: int | None = None
    max_storage_gb: int | None = None


class WorkspaceSettings(BaseModel):
    allow_public_registration: bool = False
    session_timeout: int = Field(default=30, description="Minutes of inactivity before sign-out.")
    enable_email_notifications: bool = True
    features: dict[str, bool] = Field(default_factory=dict)


class WorkspaceDefaults(BaseModel):
    limits: WorkspaceLimits
    settings: WorkspaceSettings
    plan_type: PlanType


_COMMUNITY_LIMITS = WorkspaceLimits(max_users=10, max_tasks=100, max_teams=3, max_storage_gb=1)


def defaults_for(workspace_type: WorkspaceType) -> WorkspaceDefaults:
    """Return the limits, settings and plan for a workspace tier."""
    if workspace_type == WorkspaceType.CORE:
        return WorkspaceDefaults(
            limits=WorkspaceLimits(),
            settings=WorkspaceSettings(features={f.value: True for f in Feature}),
            plan_type=PlanType.ENTERPRISE,
        )
    return WorkspaceDefaults(
        limits=_COMMUNITY_LIMITS.model_copy(),
        settings=WorkspaceSettings(features={f.value: False for f in Feature}),
        plan_type=PlanType.FREE,
    )
