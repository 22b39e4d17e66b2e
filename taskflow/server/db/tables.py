"""SQLAlchemy ORM models for PostgreSQL.

These are the single source of truth for the database schema.  Alembic reads
``Base.metadata`` to autogenerate migration scripts.

Every business table carries ``workspace_id``.  The column is nullable only
so that pre-workspace rows can be found and backfilled by
``taskflow migrate-workspaces``; application code always sets it.  A
ChangeLog row with ``workspace_id IS NULL`` is a system-level entry.

Uses SQLAlchemy 2.0 declarative style with ``Mapped`` type annotations.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Timezone-aware timestamp type for all datetime columns.
TimestampTZ = DateTime(timezone=True)


def new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    """Declarative base with naming convention for constraints.

    ``eager_defaults`` fetches server-generated timestamps via RETURNING on
    flush, so serialized rows are complete before commit.
    """

    __mapper_args__ = {"eager_defaults": True}


Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Workspace(Base):
    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    type: Mapped[str] = mapped_column(server_default="COMMUNITY")
    owner_id: Mapped[str | None]
    is_active: Mapped[bool] = mapped_column(default=True, server_default="true")
    plan_type: Mapped[str] = mapped_column(server_default="FREE")
    settings: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    limits: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")

    # Usage counters, maintained with atomic UPDATE ... SET n = n + k
    user_count: Mapped[int] = mapped_column(default=0, server_default="0")
    task_count: Mapped[int] = mapped_column(default=0, server_default="0")
    team_count: Mapped[int] = mapped_column(default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class User(Base):
    __tablename__ = "users"
    __table_args__ = (Index("ix_users_workspace_id", "workspace_id"),)

    id: Mapped[str] = mapped_column(primary_key=True, default=new_id)
    full_name: Mapped[str]
    email: Mapped[str] = mapped_column(unique=True)
    password_hash: Mapped[str] = mapped_column(Text)
    profile_picture: Mapped[str | None] = mapped_column(Text)
    role: Mapped[str] = mapped_column(server_default="member")
    employment_status: Mapped[str] = mapped_column(server_default="ACTIVE")
    team_id: Mapped[str | None]
    team_ids: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    workspace_id: Mapped[str | None] = mapped_column(
        ForeignKey("workspaces.id", name="fk_users_workspace_id"),
    )
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (Index("ix_teams_workspace_id", "workspace_id"),)

    id: Mapped[str] = mapped_column(primary_key=True, default=new_id)
    name: Mapped[str]
    description: Mapped[str | None] = mapped_column(Text)
    hr_id: Mapped[str | None]
    lead_id: Mapped[str | None]
    members: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    pinned: Mapped[bool] = mapped_column(default=False, server_default="false")
    priority: Mapped[int] = mapped_column(default=0, server_default="0")
    workspace_id: Mapped[str | None] = mapped_column(
        ForeignKey("workspaces.id", name="fk_teams_workspace_id"),
    )
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_workspace_id", "workspace_id"),
        Index("ix_tasks_status", "status"),
    )

    id: Mapped[str] = mapped_column(primary_key=True, default=new_id)
    title: Mapped[str]
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(server_default="todo")
    priority: Mapped[str] = mapped_column(server_default="medium")
    created_by: Mapped[str]
    assigned_to: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    team_id: Mapped[str | None]
    due_date: Mapped[datetime | None] = mapped_column(TimestampTZ)
    progress: Mapped[int] = mapped_column(default=0, server_default="0")
    workspace_id: Mapped[str | None] = mapped_column(
        ForeignKey("workspaces.id", name="fk_tasks_workspace_id"),
    )
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class Comment(Base):
    __tablename__ = "comments"
    __table_args__ = (Index("ix_comments_task_id", "task_id"),)

    id: Mapped[str] = mapped_column(primary_key=True, default=new_id)
    task_id: Mapped[str] = mapped_column(
        ForeignKey("tasks.id", name="fk_comments_task_id", ondelete="CASCADE"),
    )
    user_id: Mapped[str]
    content: Mapped[str] = mapped_column(Text)
    workspace_id: Mapped[str | None] = mapped_column(
        ForeignKey("workspaces.id", name="fk_comments_workspace_id"),
    )
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_workspace", "user_id", "workspace_id"),)

    id: Mapped[str] = mapped_column(primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", name="fk_notifications_user_id", ondelete="CASCADE"),
    )
    type: Mapped[str]
    message: Mapped[str] = mapped_column(Text)
    task_id: Mapped[str | None]
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    read_at: Mapped[datetime | None] = mapped_column(TimestampTZ)
    workspace_id: Mapped[str | None] = mapped_column(
        ForeignKey("workspaces.id", name="fk_notifications_workspace_id", ondelete="CASCADE"),
    )
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())


class ChangeLog(Base):
    """Append-only audit record.  No FK on ``workspace_id``: entries outlive workspaces."""

    __tablename__ = "changelog"
    __table_args__ = (
        Index("ix_changelog_workspace_created", "workspace_id", "created_at"),
        Index("ix_changelog_event_type", "event_type"),
    )

    id: Mapped[str] = mapped_column(primary_key=True, default=new_id)
    event_type: Mapped[str]
    user_id: Mapped[str | None]
    user_email: Mapped[str | None]
    user_name: Mapped[str | None]
    user_role: Mapped[str | None]
    user_ip: Mapped[str | None]
    target_type: Mapped[str]
    target_id: Mapped[str | None]
    target_name: Mapped[str | None]
    action: Mapped[str]
    description: Mapped[str] = mapped_column(Text)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, server_default="{}")
    changes: Mapped[dict | None] = mapped_column(JSONB)
    workspace_id: Mapped[str | None]
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
