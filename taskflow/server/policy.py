"""Declarative authorization policy.

One table keyed by ``(role, resource, action)`` answers every permission
question.  The answer is a :class:`Grant` describing *which* records the
role may act on; managers call :func:`require` for the coarse check and
then apply the record-level rule for ``TEAM`` / ``OWN`` / ``CREATED``.

The same table is served at ``GET /api/policy`` so clients gate their UI
from it instead of keeping their own role lists.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from loguru import logger

from taskflow.server.errors import AccessDeniedError
from taskflow.server.models.enums import Role

if TYPE_CHECKING:
    from taskflow.server.context import RequestContext


class Resource(StrEnum):
    TASK = "task"
    COMMENT = "comment"
    TEAM = "team"
    USER = "user"
    NOTIFICATION = "notification"
    CHANGELOG = "changelog"
    WORKSPACE = "workspace"


class Action(StrEnum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    ASSIGN = "assign"
    MANAGE = "manage"
    IMPORT = "import"
    EXPORT = "export"
    CLEAR = "clear"
    CHANGE_ROLE = "change_role"
    RESET_PASSWORD = "reset_password"
    ACTIVATE = "activate"
    DELETE_OWN = "delete_own"


class Grant(StrEnum):
    """Record scope granted to a role.

    - ``ANY``: every record in the workspace.
    - ``TEAM``: records belonging to one of the caller's teams, plus ``OWN``.
    - ``OWN``: records the caller created, is assigned to, or is.
    - ``CREATED``: records the caller created.
    - ``NONE``: nothing.
    """

    ANY = "any"
    TEAM = "team"
    OWN = "own"
    CREATED = "created"
    NONE = "none"


_ADMINS = (Role.ADMIN, Role.HR, Role.COMMUNITY_ADMIN)
_EVERYONE = tuple(Role)


def _rules(roles: tuple[Role, ...], resource: Resource, actions: tuple[Action, ...], grant: Grant) -> dict:
    return {(role, resource, action): grant for role in roles for action in actions}


POLICY: dict[tuple[Role, Resource, Action], Grant] = {
    # -- Tasks ---------------------------------------------------------------
    **_rules(_EVERYONE, Resource.TASK, (Action.CREATE,), Grant.ANY),
    **_rules(_ADMINS, Resource.TASK, (Action.READ, Action.UPDATE, Action.DELETE, Action.ASSIGN), Grant.ANY),
    **_rules((Role.TEAM_LEAD,), Resource.TASK, (Action.READ, Action.UPDATE, Action.DELETE), Grant.TEAM),
    **_rules((Role.TEAM_LEAD,), Resource.TASK, (Action.ASSIGN,), Grant.ANY),
    **_rules((Role.MEMBER,), Resource.TASK, (Action.READ,), Grant.TEAM),
    **_rules((Role.MEMBER,), Resource.TASK, (Action.UPDATE, Action.ASSIGN), Grant.OWN),
    **_rules((Role.MEMBER,), Resource.TASK, (Action.DELETE,), Grant.CREATED),
    # -- Comments (creating requires read access to the task) ----------------
    **_rules(_EVERYONE, Resource.COMMENT, (Action.CREATE, Action.READ), Grant.ANY),
    **_rules(_ADMINS, Resource.COMMENT, (Action.UPDATE, Action.DELETE), Grant.ANY),
    **_rules((Role.TEAM_LEAD, Role.MEMBER), Resource.COMMENT, (Action.UPDATE, Action.DELETE), Grant.CREATED),
    # -- Teams ---------------------------------------------------------------
    **_rules(
        _ADMINS,
        Resource.TEAM,
        (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE, Action.MANAGE),
        Grant.ANY,
    ),
    **_rules((Role.TEAM_LEAD, Role.MEMBER), Resource.TEAM, (Action.READ,), Grant.TEAM),
    # -- Users ---------------------------------------------------------------
    **_rules(
        _ADMINS,
        Resource.USER,
        (Action.CREATE, Action.READ, Action.UPDATE, Action.RESET_PASSWORD, Action.ACTIVATE),
        Grant.ANY,
    ),
    **_rules((Role.ADMIN, Role.HR), Resource.USER, (Action.DELETE, Action.CHANGE_ROLE, Action.IMPORT), Grant.ANY),
    **_rules((Role.TEAM_LEAD,), Resource.USER, (Action.READ,), Grant.TEAM),
    **_rules((Role.MEMBER,), Resource.USER, (Action.READ,), Grant.OWN),
    # -- Notifications -------------------------------------------------------
    **_rules(_EVERYONE, Resource.NOTIFICATION, (Action.READ, Action.UPDATE), Grant.OWN),
    # -- ChangeLog -----------------------------------------------------------
    **_rules((Role.ADMIN, Role.HR), Resource.CHANGELOG, (Action.READ, Action.EXPORT), Grant.ANY),
    **_rules((Role.ADMIN,), Resource.CHANGELOG, (Action.CLEAR,), Grant.ANY),
    # -- Workspaces ----------------------------------------------------------
    **_rules(
        (Role.ADMIN,),
        Resource.WORKSPACE,
        (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE, Action.MANAGE),
        Grant.ANY,
    ),
    **_rules((Role.COMMUNITY_ADMIN,), Resource.WORKSPACE, (Action.DELETE_OWN,), Grant.OWN),
}


def authorize(role: Role | str, resource: Resource, action: Action) -> Grant:
    """Look up the grant for a role.  Unlisted combinations are ``NONE``."""
    return POLICY.get((Role(role), resource, action), Grant.NONE)


def require(ctx: RequestContext, resource: Resource, action: Action) -> Grant:
    """Return the caller's grant or raise ``AccessDeniedError`` when it is ``NONE``."""
    grant = authorize(ctx.role, resource, action)
    if grant is Grant.NONE:
        logger.debug("Policy: {} denied {} on {}", ctx.role, action, resource)
        raise AccessDeniedError(f"Role '{ctx.role}' may not {action} {resource}.")
    return grant


def rules() -> list[dict[str, str]]:
    """Flatten the table for clients."""
    return [
        {"role": role, "resource": resource, "action": action, "grant": grant}
        for (role, resource, action), grant in sorted(POLICY.items())
    ]
