"""User account operations.

Emails are stored lower-case and are unique across the whole system.
Admin accounts never belong to a team.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.context import RequestContext
from taskflow.server.db.tables import Team, User, new_id
from taskflow.server.effects import UnitOfWork
from taskflow.server.errors import AccessDeniedError, ConflictError, InvalidRequestError, NotFoundError
from taskflow.server.managers import membership
from taskflow.server.managers.usage import bump_usage
from taskflow.server.models.api import (
    PasswordChange,
    ProfileUpdate,
    UserBulkDeleteResult,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from taskflow.server.models.enums import (
    ChangeEventType,
    EmploymentStatus,
    Feature,
    RealtimeEventType,
    Role,
    TargetType,
)
from taskflow.server.policy import Action, Grant, Resource, require
from taskflow.server.security import hash_password, verify_password

ASSIGNABLE_ROLES = (Role.ADMIN, Role.HR, Role.TEAM_LEAD, Role.MEMBER)


async def email_taken(db: AsyncSession, email: str, *, exclude: str | None = None) -> bool:
    stmt = select(User.id).where(User.email == email.lower())
    if exclude is not None:
        stmt = stmt.where(User.id != exclude)
    return (await db.execute(stmt)).first() is not None


async def _load(db: AsyncSession, ctx: RequestContext, user_id: str) -> User:
    result = await db.execute(ctx.scoped(select(User).where(User.id == user_id), User))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User", user_id)
    return user


async def _team(db: AsyncSession, ctx: RequestContext, team_id: str) -> Team:
    result = await db.execute(ctx.scoped(select(Team).where(Team.id == team_id), Team))
    team = result.scalar_one_or_none()
    if team is None:
        raise InvalidRequestError(f"Team '{team_id}' not found.")
    return team


def _emit_user(uow: UnitOfWork, event: RealtimeEventType, user: User) -> None:
    uow.emit(event, UserResponse.model_validate(user))


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


async def update_profile(uow: UnitOfWork, body: ProfileUpdate) -> User:
    db, ctx = uow.db, uow.ctx
    user = ctx.user
    updates = body.model_dump(exclude_unset=True)
    if updates.get("full_name"):
        user.full_name = updates["full_name"]
    if "profile_picture" in updates:
        user.profile_picture = updates["profile_picture"]
    await db.flush()
    await db.refresh(user)
    _emit_user(uow, RealtimeEventType.USER_UPDATED, user)
    await uow.commit()
    return user


async def change_password(uow: UnitOfWork, body: PasswordChange) -> None:
    db, ctx = uow.db, uow.ctx
    if not await verify_password(body.old_password, ctx.user.password_hash):
        raise InvalidRequestError("Current password is incorrect.")
    ctx.user.password_hash = await hash_password(body.new_password)
    uow.record_change(
        ChangeEventType.PASSWORD_RESET,
        TargetType.USER,
        target_id=ctx.user_id,
        target_name=ctx.user.full_name,
        action="Changed password",
        description=f"{ctx.user.full_name} changed their password",
    )
    await db.flush()
    await uow.commit()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_users(db: AsyncSession, ctx: RequestContext) -> list[User]:
    """Users visible to the caller, newest first."""
    grant = require(ctx, Resource.USER, Action.READ)
    if grant is Grant.TEAM:
        return await team_members(db, ctx)
    if grant is not Grant.ANY:
        return [ctx.user]
    result = await db.execute(ctx.scoped(select(User), User).order_by(User.created_at.desc(), User.id))
    return list(result.scalars().all())


async def team_members(db: AsyncSession, ctx: RequestContext) -> list[User]:
    """Members of the teams the caller leads, with the caller first."""
    result = await db.execute(ctx.scoped(select(Team.members).where(Team.lead_id == ctx.user_id), Team))
    member_ids = {m for members in result.scalars().all() for m in members}
    member_ids.discard(ctx.user_id)
    if not member_ids:
        return [ctx.user]
    users = await db.execute(
        ctx.scoped(select(User).where(User.id.in_(member_ids)), User).order_by(User.full_name, User.id)
    )
    return [ctx.user, *users.scalars().all()]


async def get_user(db: AsyncSession, ctx: RequestContext, user_id: str) -> User:
    grant = require(ctx, Resource.USER, Action.READ)
    if grant is Grant.ANY or user_id == ctx.user_id:
        return await _load(db, ctx, user_id)
    if grant is Grant.TEAM and any(u.id == user_id for u in await team_members(db, ctx)):
        return await _load(db, ctx, user_id)
    raise NotFoundError("User", user_id)


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


async def create_user(uow: UnitOfWork, body: UserCreate) -> User:
    db, ctx = uow.db, uow.ctx
    workspace = ctx.require_workspace()
    require(ctx, Resource.USER, Action.CREATE)
    ctx.check_limit("users")

    email = body.email.lower()
    if await email_taken(db, email):
        raise ConflictError("Email already registered.")
    if body.role == Role.ADMIN and body.team_id:
        raise InvalidRequestError("Admin users cannot be assigned to teams.")
    team = await _team(db, ctx, body.team_id) if body.team_id else None

    user = User(
        id=new_id(),
        full_name=body.full_name,
        email=email,
        password_hash=await hash_password(body.password),
        role=body.role,
        employment_status=EmploymentStatus.ACTIVE,
        team_ids=[],
        workspace_id=workspace.id,
    )
    db.add(user)
    if team is not None:
        await membership.link(db, user, team, single_team=not ctx.is_core)
    await bump_usage(db, workspace.id, users=1)
    await db.flush()

    uow.record_change(
        ChangeEventType.USER_CREATED,
        TargetType.USER,
        target_id=user.id,
        target_name=user.full_name,
        action="Created user",
        description=(
            f"{ctx.user.full_name} created user account for {user.full_name} ({email}) with role {body.role}"
        ),
        metadata={"email": email, "role": body.role, "team_id": body.team_id},
    )
    _emit_user(uow, RealtimeEventType.USER_CREATED, user)
    await uow.commit()
    logger.info("User {} created in workspace {}", user.id, workspace.id)
    return user


async def _set_teams(db: AsyncSession, ctx: RequestContext, user: User, team_ids: list[str]) -> None:
    """Make *team_ids* the user's exact team list (CORE multi-team membership)."""
    wanted = list(dict.fromkeys(team_ids))
    for team_id in [t for t in user.team_ids if t not in wanted]:
        team = await db.get(Team, team_id)
        if team is not None:
            membership.unlink(user, team)
        else:
            user.team_ids = [t for t in user.team_ids if t != team_id]
    for team_id in wanted:
        await membership.link(db, user, await _team(db, ctx, team_id))
    user.team_id = wanted[0] if wanted else None


async def update_user(uow: UnitOfWork, user_id: str, body: UserUpdate) -> User:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.USER, Action.UPDATE)
    user = await _load(db, ctx, user_id)
    updates = body.model_dump(exclude_unset=True)

    if updates.get("role") == Role.ADMIN and (updates.get("team_id") or updates.get("team_ids")):
        raise InvalidRequestError("Admin users cannot be assigned to teams.")
    if updates.get("email") and updates["email"].lower() != user.email:
        if await email_taken(db, updates["email"], exclude=user.id):
            raise ConflictError("Email already in use.")
        user.email = updates["email"].lower()
    if "role" in updates and updates["role"] != user.role:
        require(ctx, Resource.USER, Action.CHANGE_ROLE)

    before = {"full_name": user.full_name, "email": user.email, "role": user.role}
    if updates.get("full_name"):
        user.full_name = updates["full_name"]
    if updates.get("employment_status"):
        user.employment_status = updates["employment_status"]
    if updates.get("role"):
        user.role = updates["role"]

    if user.role == Role.ADMIN:
        await membership.detach_user(db, user)
    elif "team_ids" in updates and ctx.is_core:
        await _set_teams(db, ctx, user, updates["team_ids"] or [])
    elif updates.get("team_id"):
        await membership.link(db, user, await _team(db, ctx, updates["team_id"]), single_team=not ctx.is_core)
    elif "team_id" in updates:
        await membership.detach_user(db, user)

    await db.flush()
    await db.refresh(user)
    changes = {
        key: {"old": old, "new": getattr(user, key)} for key, old in before.items() if getattr(user, key) != old
    }
    uow.record_change(
        ChangeEventType.USER_UPDATED,
        TargetType.USER,
        target_id=user.id,
        target_name=user.full_name,
        action="Updated user",
        description=f"{ctx.user.full_name} updated user {user.full_name}",
        changes=changes,
    )
    _emit_user(uow, RealtimeEventType.USER_UPDATED, user)
    await uow.commit()
    return user


async def _remove(db: AsyncSession, user: User) -> None:
    await membership.detach_user(db, user)
    await db.delete(user)


async def delete_user(uow: UnitOfWork, user_id: str) -> None:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.USER, Action.DELETE)
    if user_id == ctx.user_id:
        raise InvalidRequestError("You cannot delete your own account.")
    user = await _load(db, ctx, user_id)
    name, email, workspace_id = user.full_name, user.email, user.workspace_id

    await _remove(db, user)
    await bump_usage(db, workspace_id, users=-1)
    uow.record_change(
        ChangeEventType.USER_DELETED,
        TargetType.USER,
        target_id=user_id,
        target_name=name,
        action="Deleted user",
        description=f"{ctx.user.full_name} deleted user {name} ({email})",
        metadata={"email": email},
        workspace_id=workspace_id,
    )
    uow.emit(RealtimeEventType.USER_DELETED, {"id": user_id, "email": email})
    await uow.commit()
    logger.info("User {} deleted from workspace {}", user_id, workspace_id)


async def bulk_delete_users(uow: UnitOfWork, user_ids: list[str]) -> UserBulkDeleteResult:
    """Delete several users.  The caller's own id is silently excluded."""
    db, ctx = uow.db, uow.ctx
    workspace = ctx.require_workspace()
    require(ctx, Resource.USER, Action.DELETE)
    ctx.require_feature(Feature.BULK_USER_IMPORT)
    targets = [uid for uid in dict.fromkeys(user_ids) if uid != ctx.user_id]
    if not targets:
        raise InvalidRequestError("Cannot delete your own account.")

    result = await db.execute(ctx.scoped(select(User).where(User.id.in_(targets)), User))
    users = list(result.scalars().all())
    for user in users:
        await _remove(db, user)
    await bump_usage(db, workspace.id, users=-len(users))

    deleted_ids = [user.id for user in users]
    uow.record_change(
        ChangeEventType.USER_DELETED,
        TargetType.USER,
        action="Bulk deleted users",
        description=f"{ctx.user.full_name} deleted {len(users)} user(s)",
        metadata={"user_ids": deleted_ids},
    )
    uow.emit(RealtimeEventType.USERS_BULK_DELETED, {"user_ids": deleted_ids, "count": len(users)})
    await uow.commit()
    logger.info("Bulk deleted {} users from workspace {}", len(users), workspace.id)
    return UserBulkDeleteResult(deleted_count=len(users), attempted=len(targets))


async def reset_password(uow: UnitOfWork, user_id: str, password: str) -> None:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.USER, Action.RESET_PASSWORD)
    user = await _load(db, ctx, user_id)
    user.password_hash = await hash_password(password)
    uow.record_change(
        ChangeEventType.PASSWORD_RESET,
        TargetType.USER,
        target_id=user.id,
        target_name=user.full_name,
        action="Reset password",
        description=f"{ctx.user.full_name} reset the password of {user.full_name}",
    )
    await db.flush()
    await uow.commit()


async def change_role(uow: UnitOfWork, user_id: str, role: Role) -> User:
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.USER, Action.CHANGE_ROLE)
    if role not in ASSIGNABLE_ROLES:
        raise InvalidRequestError("Invalid role.")
    user = await _load(db, ctx, user_id)
    old = user.role
    user.role = role
    if role == Role.ADMIN:
        await membership.detach_user(db, user)
    await db.flush()
    await db.refresh(user)

    uow.record_change(
        ChangeEventType.USER_UPDATED,
        TargetType.USER,
        target_id=user.id,
        target_name=user.full_name,
        action="Changed role",
        description=f"{ctx.user.full_name} changed the role of {user.full_name} from {old} to {role}",
        changes={"role": {"old": old, "new": role}},
    )
    _emit_user(uow, RealtimeEventType.USER_UPDATED, user)
    await uow.commit()
    return user


async def set_employment_status(uow: UnitOfWork, user_id: str, *, active: bool) -> User:
    """Activate or deactivate an employee.  Only community admins may deactivate admins."""
    db, ctx = uow.db, uow.ctx
    ctx.require_workspace()
    require(ctx, Resource.USER, Action.ACTIVATE)
    user = await _load(db, ctx, user_id)
    if not active and user.role == Role.ADMIN and ctx.role != Role.COMMUNITY_ADMIN:
        raise AccessDeniedError("Only super administrators can deactivate admin accounts.")

    old = user.employment_status
    user.employment_status = EmploymentStatus.ACTIVE if active else EmploymentStatus.INACTIVE
    await db.flush()
    await db.refresh(user)

    verb = "activated" if active else "deactivated"
    uow.record_change(
        ChangeEventType.USER_UPDATED,
        TargetType.USER,
        target_id=user.id,
        target_name=user.full_name,
        action=f"Employee {verb}",
        description=f"{ctx.user.full_name} {verb} {user.full_name}",
        changes={"employment_status": {"old": old, "new": user.employment_status}},
    )
    _emit_user(uow, RealtimeEventType.USER_UPDATED, user)
    await uow.commit()
    return user
