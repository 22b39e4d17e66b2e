"""Per-request workspace context.

:class:`RequestContext` is the single place where tenant isolation is
applied: every manager query for workspace-owned data goes through
:meth:`RequestContext.scoped`.  It also carries the usage-limit and feature
checks for the caller's workspace tier.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.db.tables import User, Workspace
from taskflow.server.errors import AccessDeniedError, AuthenticationError, LimitReachedError
from taskflow.server.models.enums import Feature, Role, WorkspaceType

S = TypeVar("S", bound=Select[Any])

_LIMIT_FIELDS = {
    "users": ("max_users", "user_count"),
    "tasks": ("max_tasks", "task_count"),
    "teams": ("max_teams", "team_count"),
}


@dataclass
class RequestContext:
    user: User
    workspace: Workspace | None
    ip: str | None = None

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def role(self) -> Role:
        return Role(self.user.role)

    @property
    def workspace_id(self) -> str | None:
        return self.workspace.id if self.workspace is not None else None

    @property
    def workspace_type(self) -> WorkspaceType | None:
        return WorkspaceType(self.workspace.type) if self.workspace is not None else None

    @property
    def is_system_admin(self) -> bool:
        """An admin that belongs to no workspace administers the whole system."""
        return self.role == Role.ADMIN and self.user.workspace_id is None

    @property
    def is_core(self) -> bool:
        return self.workspace_type == WorkspaceType.CORE

    # -- Isolation ---------------------------------------------------------------

    def scoped(self, stmt: S, model: Any) -> S:
        """Restrict *stmt* to the caller's workspace.

        System administrators without a selected workspace see every tenant.
        """
        if self.workspace is None and self.is_system_admin:
            return stmt
        return stmt.where(model.workspace_id == self.workspace_id)

    def require_workspace(self) -> Workspace:
        """Return the workspace that writes are stamped with."""
        if self.workspace is None:
            raise AccessDeniedError(
                "Select a workspace (X-Workspace-Id) before modifying workspace data.",
                code="NO_WORKSPACE",
            )
        return self.workspace

    # -- Tier checks -------------------------------------------------------------

    @property
    def bypasses_tier_checks(self) -> bool:
        return self.is_system_admin or self.role in (Role.ADMIN, Role.HR)

    def check_limit(self, resource: str, adding: int = 1) -> None:
        """Raise ``LimitReachedError`` if adding *adding* rows would exceed the tier limit."""
        if self.bypasses_tier_checks:
            return
        workspace = self.require_workspace()
        limit_key, counter = _LIMIT_FIELDS[resource]
        limit = (workspace.limits or {}).get(limit_key)
        if limit is None or limit < 0:
            return
        if getattr(workspace, counter) + adding > limit:
            logger.debug("Workspace {}: {} limit {} reached", workspace.id, resource, limit)
            raise LimitReachedError(resource, limit)

    def has_feature(self, feature: Feature) -> bool:
        if self.bypasses_tier_checks:
            return True
        if self.workspace is None:
            return False
        features = (self.workspace.settings or {}).get("features", {})
        return bool(features.get(feature.value, False))

    def require_feature(self, feature: Feature) -> None:
        if not self.has_feature(feature):
            raise AccessDeniedError(
                f"Feature '{feature}' is not available on this workspace plan.",
                code="FEATURE_NOT_AVAILABLE",
            )

    # -- Audit -------------------------------------------------------------------

    def actor(self) -> dict[str, str | None]:
        """Snapshot of the acting user for changelog entries."""
        return {
            "user_id": self.user.id,
            "user_email": self.user.email,
            "user_name": self.user.full_name,
            "user_role": self.user.role,
            "user_ip": self.ip,
        }


async def resolve_context(
    db: AsyncSession,
    user_id: str | None,
    *,
    workspace_override: str | None = None,
    ip: str | None = None,
) -> RequestContext:
    """Build the context for an authenticated user.

    *workspace_override* (the ``X-Workspace-Id`` header) may select another
    workspace only for admins; anyone may name their own.
    """
    if not user_id:
        raise AuthenticationError("Missing user identity.")
    user = await db.get(User, user_id, populate_existing=True)
    if user is None:
        raise AuthenticationError(f"Unknown user '{user_id}'.")

    if workspace_override and workspace_override != user.workspace_id and user.role != Role.ADMIN:
        logger.debug("Context: user {} denied access to workspace {}", user.id, workspace_override)
        raise AccessDeniedError("You do not have access to this workspace.", code="WORKSPACE_ACCESS_DENIED")

    target = workspace_override or user.workspace_id
    if target is None:
        if user.role == Role.ADMIN:
            return RequestContext(user=user, workspace=None, ip=ip)
        raise AccessDeniedError("No workspace assigned to this account.", code="NO_WORKSPACE")

    workspace = await db.get(Workspace, target, populate_existing=True)
    if workspace is None:
        raise AccessDeniedError("Workspace not found.", code="INVALID_WORKSPACE")

    ctx = RequestContext(user=user, workspace=workspace, ip=ip)
    if not workspace.is_active and not ctx.is_system_admin:
        raise AccessDeniedError("This workspace has been deactivated.", code="WORKSPACE_INACTIVE")
    return ctx
