"""Unit tests for changelog filters and CSV rendering."""

from __future__ import annotations

import csv
import io
from datetime import UTC, datetime

from sqlalchemy.dialects import postgresql

from taskflow.server.db.tables import ChangeLog
from taskflow.server.managers.changelog import CSV_COLUMNS, ChangeLogFilter, render_csv
from taskflow.server.models.enums import ChangeEventType, TargetType


def _compiled(filters: ChangeLogFilter) -> list[str]:
    return [str(c.compile(dialect=postgresql.dialect())) for c in filters.clauses()]


def test_empty_filter_has_no_clauses():
    assert ChangeLogFilter().clauses() == []


def test_each_field_adds_one_clause():
    filters = ChangeLogFilter(
        event_type=ChangeEventType.TASK_CREATED,
        target_type=TargetType.TASK,
        search="deploy",
        start_date=datetime(2026, 1, 1, tzinfo=UTC),
        end_date=datetime(2026, 2, 1, tzinfo=UTC),
        user_id="u-1",
    )
    assert len(filters.clauses()) == 6


def test_search_covers_text_columns():
    (clause,) = _compiled(ChangeLogFilter(search="alice"))
    for column in ("description", "user_name", "user_email", "target_name", "action"):
        assert f"changelog.{column} ILIKE" in clause


def test_render_csv():
    row = ChangeLog(
        id="c-1",
        event_type=ChangeEventType.TASK_CREATED,
        user_name="Ada Actor",
        user_email="ada@example.com",
        user_role="admin",
        user_ip=None,
        target_type=TargetType.TASK,
        target_name='Ship "v2", finally',
        action="Created task",
        description='Ada Actor created task "Ship v2"',
        created_at=datetime(2026, 3, 4, 5, 6, 7, tzinfo=UTC),
    )
    rows = list(csv.reader(io.StringIO(render_csv([row]))))

    assert rows[0] == list(CSV_COLUMNS)
    assert rows[1] == [
        "2026-03-04T05:06:07+00:00",
        "task_created",
        "Ada Actor",
        "ada@example.com",
        "admin",
        "",
        "task",
        'Ship "v2", finally',
        "Created task",
        'Ada Actor created task "Ship v2"',
    ]


def test_render_csv_header_only():
    assert render_csv([]).splitlines() == [",".join(CSV_COLUMNS)]
