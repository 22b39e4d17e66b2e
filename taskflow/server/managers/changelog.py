"""ChangeLog queries, export and retention.

Listing and CSV export share :class:`ChangeLogFilter`, so an export always
contains exactly the rows the listing would page through.
"""

from __future__ import annotations

import csv
import io
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from loguru import logger
from sqlalchemy import ColumnElement, Select, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.context import RequestContext
from taskflow.server.db.tables import ChangeLog
from taskflow.server.effects import UnitOfWork
from taskflow.server.models.api import ChangeLogClearResult, ChangeLogPage, ChangeLogResponse, ChangeLogStats, TopUser
from taskflow.server.models.enums import ChangeEventType, TargetType
from taskflow.server.policy import Action, Resource, require

CSV_COLUMNS = (
    "Timestamp",
    "Event Type",
    "User",
    "Email",
    "Role",
    "IP Address",
    "Target Type",
    "Target",
    "Action",
    "Description",
)

_SEARCH_COLUMNS = (
    ChangeLog.description,
    ChangeLog.user_name,
    ChangeLog.user_email,
    ChangeLog.target_name,
    ChangeLog.action,
)


@dataclass
class ChangeLogFilter:
    event_type: ChangeEventType | None = None
    target_type: TargetType | None = None
    search: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    user_id: str | None = None

    def clauses(self) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        if self.event_type is not None:
            clauses.append(ChangeLog.event_type == self.event_type)
        if self.target_type is not None:
            clauses.append(ChangeLog.target_type == self.target_type)
        if self.user_id:
            clauses.append(ChangeLog.user_id == self.user_id)
        if self.start_date is not None:
            clauses.append(ChangeLog.created_at >= self.start_date)
        if self.end_date is not None:
            clauses.append(ChangeLog.created_at <= self.end_date)
        if self.search:
            pattern = f"%{self.search}%"
            clauses.append(or_(*(column.ilike(pattern) for column in _SEARCH_COLUMNS)))
        return clauses


def _filtered(ctx: RequestContext, stmt: Select, filters: ChangeLogFilter) -> Select:
    return ctx.scoped(stmt, ChangeLog).where(*filters.clauses())


async def list_changes(
    db: AsyncSession,
    ctx: RequestContext,
    filters: ChangeLogFilter,
    *,
    page: int = 1,
    limit: int = 50,
) -> ChangeLogPage:
    require(ctx, Resource.CHANGELOG, Action.READ)
    total = (await db.execute(_filtered(ctx, select(func.count()).select_from(ChangeLog), filters))).scalar_one()

    stmt = _filtered(ctx, select(ChangeLog), filters).order_by(ChangeLog.created_at.desc(), ChangeLog.id)
    result = await db.execute(stmt.limit(limit).offset((page - 1) * limit))
    return ChangeLogPage(
        logs=[ChangeLogResponse.model_validate(row) for row in result.scalars().all()],
        total=total,
        page=page,
        total_pages=math.ceil(total / limit) if total else 0,
    )


async def export_rows(db: AsyncSession, ctx: RequestContext, filters: ChangeLogFilter) -> list[ChangeLog]:
    require(ctx, Resource.CHANGELOG, Action.EXPORT)
    stmt = _filtered(ctx, select(ChangeLog), filters).order_by(ChangeLog.created_at.desc(), ChangeLog.id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


def render_csv(rows: Iterable[ChangeLog]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for row in rows:
        writer.writerow(
            [
                row.created_at.isoformat() if row.created_at else "",
                row.event_type,
                row.user_name or "",
                row.user_email or "",
                row.user_role or "",
                row.user_ip or "",
                row.target_type,
                row.target_name or "",
                row.action,
                row.description,
            ]
        )
    return buffer.getvalue()


async def stats(db: AsyncSession, ctx: RequestContext, *, top: int = 10) -> ChangeLogStats:
    require(ctx, Resource.CHANGELOG, Action.READ)
    scoped = ctx.scoped(select(func.count()).select_from(ChangeLog), ChangeLog)
    total = (await db.execute(scoped)).scalar_one()

    async def grouped(column) -> dict[str, int]:
        stmt = ctx.scoped(select(column, func.count()).group_by(column), ChangeLog)
        return {key: count for key, count in (await db.execute(stmt)).all()}

    count = func.count().label("count")
    top_stmt = (
        ctx.scoped(select(ChangeLog.user_id, ChangeLog.user_name, ChangeLog.user_email, count), ChangeLog)
        .group_by(ChangeLog.user_id, ChangeLog.user_name, ChangeLog.user_email)
        .order_by(count.desc())
        .limit(top)
    )
    top_users = [
        TopUser(user_id=user_id, user_name=name, user_email=email, count=n)
        for user_id, name, email, n in (await db.execute(top_stmt)).all()
    ]
    return ChangeLogStats(
        total=total,
        by_event_type=await grouped(ChangeLog.event_type),
        by_target_type=await grouped(ChangeLog.target_type),
        top_users=top_users,
    )


async def clear_older_than(uow: UnitOfWork, days: int) -> ChangeLogClearResult:
    """Delete entries older than *days* days and log the purge."""
    db, ctx = uow.db, uow.ctx
    require(ctx, Resource.CHANGELOG, Action.CLEAR)
    cutoff = datetime.now(UTC) - timedelta(days=days)

    stmt = ctx.scoped(delete(ChangeLog).where(ChangeLog.created_at < cutoff), ChangeLog)
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    deleted = result.rowcount

    uow.record_change(
        ChangeEventType.SYSTEM_EVENT,
        TargetType.SYSTEM,
        action="Cleared change log",
        description=f"{ctx.user.full_name} cleared {deleted} change log entries older than {days} days",
        metadata={"days": days, "deleted": deleted, "cutoff": cutoff.isoformat()},
    )
    await uow.commit()
    logger.info("Cleared {} changelog entries older than {} (workspace {})", deleted, cutoff, ctx.workspace_id)
    return ChangeLogClearResult(deleted=deleted, cutoff=cutoff)
