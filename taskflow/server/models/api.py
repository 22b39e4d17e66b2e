"""API request / response schemas.

These thin schemas sit between HTTP and the ORM layer:

- **Create** schemas validate user input and provide defaults.
- **Update** schemas allow partial updates via ``exclude_unset``.
- **Response** schemas serialize ORM rows via ``from_attributes``.

Response schemas double as realtime event payloads, so a client receiving
``task:updated`` gets exactly what ``GET /api/tasks/{id}`` would return.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from taskflow.server.models.enums import (
    ChangeEventType,
    EmploymentStatus,
    NotificationType,
    Role,
    TargetType,
    TaskPriority,
    TaskStatus,
    WorkspaceType,
)
from taskflow.server.models.workspace import WorkspaceLimits

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


class WorkspaceCreate(BaseModel):
    name: str = Field(min_length=1)
    type: WorkspaceType
    description: str | None = None
    owner_email: str | None = Field(default=None, description="Existing user to attach as owner.")


class WorkspaceUpdate(BaseModel):
    """Partial workspace update.  Changing ``type`` re-applies that tier's defaults."""

    name: str | None = None
    description: str | None = None
    type: WorkspaceType | None = None
    settings: dict[str, Any] | None = None
    limits: WorkspaceLimits | None = None


class WorkspaceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    type: WorkspaceType
    owner_id: str | None = None
    is_active: bool
    plan_type: str
    settings: dict[str, Any]
    limits: dict[str, Any]
    user_count: int
    task_count: int
    team_count: int
    created_at: datetime
    updated_at: datetime


class WorkspaceStats(BaseModel):
    user_count: int
    task_count: int
    team_count: int
    admin_count: int = 0
    completed_tasks: int = 0
    completion_rate: float = 0.0
    usage: dict[str, str] = Field(default_factory=dict, description='e.g. {"users": "4/10"}')


class WorkspaceWithStats(WorkspaceResponse):
    stats: WorkspaceStats


class WorkspaceSummary(BaseModel):
    total_workspaces: int
    active_workspaces: int
    inactive_workspaces: int
    core_workspaces: int
    community_workspaces: int
    total_users: int
    total_tasks: int
    total_teams: int


class DeletedCounts(BaseModel):
    workspace: str
    users: int
    tasks: int
    teams: int


class WorkspaceDeleteResult(BaseModel):
    deleted: DeletedCounts


class WorkspaceUserAdd(BaseModel):
    user_id: str
    role: Role


class WorkspaceUserRemove(BaseModel):
    user_id: str


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    full_name: str = Field(min_length=1)
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6)
    role: Role = Role.MEMBER
    team_id: str | None = None


class UserUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=1)
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN)
    role: Role | None = None
    team_id: str | None = None
    team_ids: list[str] | None = None
    employment_status: EmploymentStatus | None = None


class ProfileUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=1)
    profile_picture: str | None = None


class PasswordChange(BaseModel):
    old_password: str
    new_password: str = Field(min_length=6)


class PasswordReset(BaseModel):
    password: str = Field(min_length=6)


class RoleUpdate(BaseModel):
    role: Role


class UserBulkDelete(BaseModel):
    user_ids: list[str] = Field(min_length=1)


class UserBulkDeleteResult(BaseModel):
    deleted_count: int
    attempted: int


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str
    email: str
    profile_picture: str | None = None
    role: Role
    employment_status: EmploymentStatus
    team_id: str | None = None
    team_ids: list[str] = Field(default_factory=list)
    workspace_id: str | None = None
    created_at: datetime
    updated_at: datetime


class ImportSuccess(BaseModel):
    row: int
    email: str
    full_name: str
    role: Role
    teams: list[str]
    employment_status: EmploymentStatus


class ImportFailure(BaseModel):
    row: int
    email: str
    reason: str


class CreatedTeamRef(BaseModel):
    id: str
    name: str


class BulkImportResult(BaseModel):
    total: int
    successful: list[ImportSuccess] = Field(default_factory=list)
    failed: list[ImportFailure] = Field(default_factory=list)
    teams_created: list[CreatedTeamRef] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Team
# ---------------------------------------------------------------------------


class TeamCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    hr_id: str | None = None
    lead_id: str | None = None
    members: list[str] = Field(default_factory=list)


class TeamUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    lead_id: str | None = None


class TeamPriorityUpdate(BaseModel):
    priority: int


class TeamReorder(BaseModel):
    team_order: list[str] = Field(description="Team ids, highest priority first.")


class TeamMemberAdd(BaseModel):
    user_id: str


class TeamMembersBulkAdd(BaseModel):
    user_ids: list[str] = Field(min_length=1)


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    hr_id: str | None = None
    lead_id: str | None = None
    members: list[str]
    pinned: bool
    priority: int
    workspace_id: str | None = None
    created_at: datetime
    updated_at: datetime


class MemberOutcome(BaseModel):
    user_id: str
    name: str | None = None
    reason: str | None = None


class BulkMemberResult(BaseModel):
    added: list[MemberOutcome] = Field(default_factory=list)
    skipped: list[MemberOutcome] = Field(default_factory=list)
    failed: list[MemberOutcome] = Field(default_factory=list)
    team: TeamResponse | None = None


class TeamDeleteResult(BaseModel):
    id: str
    name: str
    users_affected: int


class TeamBulkDeleteResult(BaseModel):
    count: int
    team_ids: list[str]


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: list[str] | None = Field(default=None, description="Defaults to the creator.")
    team_id: str | None = None
    due_date: datetime | None = None
    progress: int = Field(default=0, ge=0, le=100)


class TaskUpdate(BaseModel):
    """Partial update.  Any status may be set from any other status."""

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    assigned_to: list[str] | None = None
    team_id: str | None = None
    due_date: datetime | None = None
    progress: int | None = Field(default=None, ge=0, le=100)


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str | None = None
    status: TaskStatus
    priority: TaskPriority
    created_by: str
    assigned_to: list[str]
    team_id: str | None = None
    due_date: datetime | None = None
    progress: int
    workspace_id: str | None = None
    created_at: datetime
    updated_at: datetime


class CommentCreate(BaseModel):
    content: str = Field(min_length=1)


class CommentUpdate(BaseModel):
    content: str = Field(min_length=1)


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    task_id: str
    user_id: str
    content: str
    workspace_id: str | None = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: NotificationType
    message: str
    task_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    read_at: datetime | None = None
    workspace_id: str | None = None
    created_at: datetime


class NotificationList(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class MarkReadRequest(BaseModel):
    notification_ids: list[str] = Field(
        default_factory=list,
        description="Notifications to mark.  Empty marks every unread notification in the workspace.",
    )


class MarkReadResult(BaseModel):
    updated: int


# ---------------------------------------------------------------------------
# ChangeLog
# ---------------------------------------------------------------------------


class ChangeLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    event_type: ChangeEventType
    user_id: str | None = None
    user_email: str | None = None
    user_name: str | None = None
    user_role: str | None = None
    user_ip: str | None = None
    target_type: TargetType
    target_id: str | None = None
    target_name: str | None = None
    action: str
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    changes: dict[str, Any] | None = None
    workspace_id: str | None = None
    created_at: datetime


class ChangeLogPage(BaseModel):
    logs: list[ChangeLogResponse]
    total: int
    page: int
    total_pages: int


class TopUser(BaseModel):
    user_id: str | None
    user_name: str | None
    user_email: str | None
    count: int


class ChangeLogStats(BaseModel):
    total: int
    by_event_type: dict[str, int]
    by_target_type: dict[str, int]
    top_users: list[TopUser]


class ChangeLogClearResult(BaseModel):
    deleted: int
    cutoff: datetime


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class PolicyRule(BaseModel):
    role: Role
    resource: str
    action: str
    grant: str
