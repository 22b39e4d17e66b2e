"""Shared enumerations.

These are the single source of truth for every enumerated field.  Clients
fetch them from ``/api/changelog/event-types``, ``/api/changelog/target-types``
and ``/api/notifications/types`` instead of hard-coding the values.
"""

from __future__ import annotations

from enum import StrEnum

# -- Workspace ---------------------------------------------------------------


class WorkspaceType(StrEnum):
    CORE = "CORE"
    COMMUNITY = "COMMUNITY"


class PlanType(StrEnum):
    FREE = "FREE"
    ENTERPRISE = "ENTERPRISE"


class Feature(StrEnum):
    """Premium features toggled per workspace type."""

    BULK_USER_IMPORT = "bulk_user_import"
    AUDIT_LOGS = "audit_logs"
    ADVANCED_AUTOMATION = "advanced_automation"
    CUSTOM_BRANDING = "custom_branding"


# -- User --------------------------------------------------------------------


class Role(StrEnum):
    ADMIN = "admin"
    HR = "hr"
    TEAM_LEAD = "team_lead"
    MEMBER = "member"
    COMMUNITY_ADMIN = "community_admin"


class EmploymentStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ON_NOTICE = "ON_NOTICE"
    EXITED = "EXITED"


# -- Task --------------------------------------------------------------------


class TaskStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# -- Notification ------------------------------------------------------------


class NotificationType(StrEnum):
    TASK_ASSIGNED = "task_assigned"
    TASK_UPDATED = "task_updated"
    TASK_COMPLETED = "task_completed"
    TASK_OVERDUE = "task_overdue"
    COMMENT_ADDED = "comment_added"
    STATUS_CHANGED = "status_changed"
    TASK_DUE = "task_due"


# -- ChangeLog ---------------------------------------------------------------


class ChangeEventType(StrEnum):
    """Audit event types recorded in the changelog."""

    # Auth
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"

    # User
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"

    # Task
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    TASK_STATUS_CHANGED = "task_status_changed"
    TASK_ASSIGNED = "task_assigned"
    TASK_UNASSIGNED = "task_unassigned"

    # Team
    TEAM_CREATED = "team_created"
    TEAM_UPDATED = "team_updated"
    TEAM_DELETED = "team_deleted"
    TEAM_MEMBER_ADDED = "team_member_added"
    TEAM_MEMBER_REMOVED = "team_member_removed"

    # Misc
    REPORT_GENERATED = "report_generated"
    AUTOMATION_TRIGGERED = "automation_triggered"
    NOTIFICATION_SENT = "notification_sent"

    # Comment
    COMMENT_ADDED = "comment_added"
    COMMENT_UPDATED = "comment_updated"
    COMMENT_DELETED = "comment_deleted"

    # Admin
    BULK_IMPORT = "bulk_import"
    PASSWORD_RESET_REQUEST = "password_reset_request"
    PASSWORD_RESET = "password_reset"
    SYSTEM_EVENT = "system_event"


class TargetType(StrEnum):
    TASK = "task"
    USER = "user"
    TEAM = "team"
    REPORT = "report"
    COMMENT = "comment"
    SYSTEM = "system"
    NOTIFICATION = "notification"
    AUTOMATION = "automation"
    EMAIL = "email"


# -- Realtime ----------------------------------------------------------------


class RealtimeEventType(StrEnum):
    """Events pushed to connected clients over ``/api/events/stream``."""

    TASK_CREATED = "task:created"
    TASK_UPDATED = "task:updated"
    TASK_DELETED = "task:deleted"
    TASK_ASSIGNED = "task:assigned"

    COMMENT_CREATED = "comment:created"
    COMMENT_UPDATED = "comment:updated"
    COMMENT_DELETED = "comment:deleted"

    TEAM_CREATED = "team:created"
    TEAM_UPDATED = "team:updated"
    TEAM_DELETED = "team:deleted"
    TEAM_BULK_DELETED = "team:bulk-deleted"

    USER_CREATED = "user:created"
    USER_UPDATED = "user:updated"
    USER_DELETED = "user:deleted"
    USERS_BULK_DELETED = "users:bulk-deleted"
    USERS_BULK_IMPORTED = "users:bulk-imported"

    NOTIFICATION_NEW = "notification:new"

    WORKSPACE_UPDATED = "workspace:updated"
    WORKSPACE_DELETED = "workspace:deleted"
