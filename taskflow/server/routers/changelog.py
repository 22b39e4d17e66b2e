"""ChangeLog (audit trail) endpoints.

Listing and CSV export accept the same filters and apply them identically.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response

from taskflow.server.deps import Context, DbSession, Uow
from taskflow.server.managers import changelog
from taskflow.server.managers.changelog import ChangeLogFilter
from taskflow.server.models.api import ChangeLogClearResult, ChangeLogPage, ChangeLogStats
from taskflow.server.models.enums import ChangeEventType, TargetType
from taskflow.server.routers._errors import domain_errors
from taskflow.server.settings import get_settings

router = APIRouter(prefix="/changelog", tags=["changelog"])


def changelog_filter(
    event_type: ChangeEventType | None = None,
    target_type: TargetType | None = None,
    search: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    user_id: str | None = None,
) -> ChangeLogFilter:
    return ChangeLogFilter(
        event_type=event_type,
        target_type=target_type,
        search=search,
        start_date=start_date,
        end_date=end_date,
        user_id=user_id,
    )


Filters = Annotated[ChangeLogFilter, Depends(changelog_filter)]


@router.get("", response_model=ChangeLogPage)
async def list_changes(
    db: DbSession,
    ctx: Context,
    filters: Filters,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
) -> ChangeLogPage:
    with domain_errors():
        return await changelog.list_changes(db, ctx, filters, page=page, limit=limit)


@router.get("/stats", response_model=ChangeLogStats)
async def stats(db: DbSession, ctx: Context) -> ChangeLogStats:
    with domain_errors():
        return await changelog.stats(db, ctx)


@router.get("/event-types")
async def event_types() -> list[str]:
    return [t.value for t in ChangeEventType]


@router.get("/target-types")
async def target_types() -> list[str]:
    return [t.value for t in TargetType]


@router.get("/export")
async def export(db: DbSession, ctx: Context, filters: Filters) -> Response:
    """Download the filtered entries as CSV, newest first."""
    with domain_errors():
        rows = await changelog.export_rows(db, ctx, filters)
    filename = f"changelog-{datetime.now(UTC):%Y-%m-%d}.csv"
    return Response(
        content=changelog.render_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/clear", response_model=ChangeLogClearResult)
async def clear(uow: Uow, days: int | None = Query(None, ge=1)) -> ChangeLogClearResult:
    """Delete entries older than *days* (default: the configured retention)."""
    with domain_errors():
        return await changelog.clear_older_than(uow, days or get_settings().changelog_retention_days)
