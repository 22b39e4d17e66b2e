"""Bulk user import from JSON or Excel.

Rows are validated one by one; a bad row is reported in ``failed`` and never
aborts the batch.  Teams named in a row are created on the fly when they do
not exist yet.
"""

from __future__ import annotations

import io
import json
import re
from typing import Any

from loguru import logger
from openpyxl import Workbook, load_workbook
from sqlalchemy import select

from taskflow.server.db.tables import Team, User, new_id
from taskflow.server.effects import UnitOfWork
from taskflow.server.errors import InvalidRequestError
from taskflow.server.managers import membership
from taskflow.server.managers.usage import bump_usage
from taskflow.server.managers.users import email_taken
from taskflow.server.models.api import (
    EMAIL_PATTERN,
    BulkImportResult,
    CreatedTeamRef,
    ImportFailure,
    ImportSuccess,
)
from taskflow.server.models.enums import (
    ChangeEventType,
    EmploymentStatus,
    Feature,
    RealtimeEventType,
    Role,
    TargetType,
)
from taskflow.server.policy import Action, Resource, require
from taskflow.server.security import hash_password

IMPORT_ROLES = (Role.ADMIN, Role.HR, Role.TEAM_LEAD, Role.MEMBER)
TEMPLATE_COLUMNS = ("full_name", "email", "password", "role", "team", "teams", "employment_status")
AUTO_TEAM_DESCRIPTION = "Auto-created during bulk user import"

_EMAIL_RE = re.compile(EMAIL_PATTERN)

TEMPLATE_ROWS: list[dict[str, Any]] = [
    {
        "full_name": "John Doe",
        "email": "john.doe@example.com",
        "password": "password123",
        "role": "member",
        "team": "Development",
        "teams": ["Development", "QA"],
        "employment_status": "ACTIVE",
    },
    {
        "full_name": "Jane Smith",
        "email": "jane.smith@example.com",
        "password": "password456",
        "role": "team_lead",
        "team": "Design",
        "teams": ["Design", "Marketing"],
        "employment_status": "ACTIVE",
    },
    {
        "full_name": "Bob Johnson",
        "email": "bob.johnson@example.com",
        "password": "password789",
        "role": "hr",
        "team": "Human Resources",
        "teams": ["Human Resources"],
        "employment_status": "ACTIVE",
    },
]


class RowError(ValueError):
    """A single import row is invalid."""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_json(content: bytes) -> list[dict[str, Any]]:
    try:
        data = json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidRequestError(f"Invalid JSON file format: {exc}") from None
    if not isinstance(data, list):
        raise InvalidRequestError("JSON file must contain an array of users.")
    return [row if isinstance(row, dict) else {} for row in data]


def parse_excel(content: bytes) -> list[dict[str, Any]]:
    """Read the first worksheet; the first row holds the column names."""
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise InvalidRequestError(f"Invalid Excel file format: {exc}") from None

    try:
        rows = workbook.worksheets[0].iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            raise InvalidRequestError("Excel file is empty.")
        keys = [str(cell).strip() if cell is not None else "" for cell in header]
        records = []
        for values in rows:
            if all(v is None or str(v).strip() == "" for v in values):
                continue
            records.append({k: v for k, v in zip(keys, values, strict=False) if k and v is not None})
    finally:
        workbook.close()

    if not records:
        raise InvalidRequestError("Excel file is empty.")
    return records


def team_names(row: dict[str, Any]) -> list[str]:
    """Team names from ``teams`` (list or comma-separated), else ``team`` / ``team_name``."""
    raw = row.get("teams")
    if raw:
        names = raw if isinstance(raw, list) else str(raw).split(",")
    else:
        single = row.get("team") or row.get("team_name")
        names = [single] if single else []
    return list(dict.fromkeys(str(n).strip() for n in names if n and str(n).strip()))


def validate_row(row: dict[str, Any]) -> tuple[str, str, str, Role, EmploymentStatus]:
    """Return ``(full_name, email, password, role, status)`` or raise ``RowError``."""
    full_name = str(row.get("full_name") or "").strip()
    email = str(row.get("email") or "").strip()
    password = str(row.get("password") or "")
    if not full_name or not email or not password:
        raise RowError("Missing required fields (full_name, email, password)")
    if not _EMAIL_RE.match(email):
        raise RowError("Invalid email format")

    role = str(row.get("role") or Role.MEMBER).strip().lower()
    if role not in IMPORT_ROLES:
        raise RowError(f"Invalid role. Must be one of: {', '.join(IMPORT_ROLES)}")

    status = str(row.get("employment_status") or EmploymentStatus.ACTIVE).strip().upper()
    if status not in {s.value for s in EmploymentStatus}:
        raise RowError(f"Invalid employment_status. Must be one of: {', '.join(EmploymentStatus)}")
    return full_name, email.lower(), password, Role(role), EmploymentStatus(status)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


async def import_users(uow: UnitOfWork, rows: list[dict[str, Any]]) -> BulkImportResult:
    db, ctx = uow.db, uow.ctx
    workspace = ctx.require_workspace()
    require(ctx, Resource.USER, Action.IMPORT)
    ctx.require_feature(Feature.BULK_USER_IMPORT)

    outcome = BulkImportResult(total=len(rows))
    teams: dict[str, Team] = {}
    seen: set[str] = set()

    async def resolve_team(name: str) -> Team:
        if name not in teams:
            result = await db.execute(select(Team).where(Team.workspace_id == workspace.id, Team.name == name))
            team = result.scalars().first()
            if team is None:
                team = Team(
                    id=new_id(),
                    name=name,
                    description=AUTO_TEAM_DESCRIPTION,
                    hr_id=ctx.user_id,
                    lead_id=ctx.user_id,
                    members=[],
                    workspace_id=workspace.id,
                )
                db.add(team)
                outcome.teams_created.append(CreatedTeamRef(id=team.id, name=name))
            teams[name] = team
        return teams[name]

    for number, row in enumerate(rows, start=1):
        email_hint = str(row.get("email") or "N/A")
        try:
            full_name, email, password, role, status = validate_row(row)
            if email in seen or await email_taken(db, email):
                raise RowError("User with this email already exists")
        except RowError as exc:
            outcome.failed.append(ImportFailure(row=number, email=email_hint, reason=str(exc)))
            continue
        seen.add(email)

        names = team_names(row)
        if not ctx.is_core:
            names = names[:1]
        user = User(
            id=new_id(),
            full_name=full_name,
            email=email,
            password_hash=await hash_password(password),
            role=role,
            employment_status=status,
            team_ids=[],
            workspace_id=workspace.id,
        )
        db.add(user)
        for name in names:
            await membership.link(db, user, await resolve_team(name))
        if names:
            user.team_id = teams[names[0]].id

        outcome.successful.append(
            ImportSuccess(
                row=number,
                email=email,
                full_name=full_name,
                role=role,
                teams=names,
                employment_status=status,
            )
        )

    await bump_usage(db, workspace.id, users=len(outcome.successful), teams=len(outcome.teams_created))
    await db.flush()

    uow.record_change(
        ChangeEventType.BULK_IMPORT,
        TargetType.USER,
        action="Bulk imported users",
        description=(
            f"{ctx.user.full_name} imported {len(outcome.successful)} of {outcome.total} user(s)"
            f" ({len(outcome.failed)} failed, {len(outcome.teams_created)} team(s) created)"
        ),
        metadata={
            "total": outcome.total,
            "successful": len(outcome.successful),
            "failed": len(outcome.failed),
            "teams_created": [t.name for t in outcome.teams_created],
        },
    )
    uow.emit(
        RealtimeEventType.USERS_BULK_IMPORTED,
        {"count": len(outcome.successful), "teams_created": len(outcome.teams_created)},
    )
    await uow.commit()
    logger.info(
        "Bulk import into workspace {}: {} created, {} failed",
        workspace.id,
        len(outcome.successful),
        len(outcome.failed),
    )
    return outcome


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def excel_template() -> bytes:
    """Sample workbook with one sheet named ``Users``."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Users"
    sheet.append(list(TEMPLATE_COLUMNS))
    for row in TEMPLATE_ROWS:
        sheet.append([", ".join(row[c]) if isinstance(row[c], list) else row[c] for c in TEMPLATE_COLUMNS])
    for letter, width in zip("ABCDEFG", (20, 30, 15, 12, 20, 30, 18), strict=True):
        sheet.column_dimensions[letter].width = width

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def json_template() -> list[dict[str, Any]]:
    return [dict(row) for row in TEMPLATE_ROWS]
