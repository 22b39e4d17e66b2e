"""Unit tests for the task changelog diff."""

from __future__ import annotations

from datetime import UTC, datetime

from taskflow.server.db.tables import Task
from taskflow.server.managers.tasks import diff_task


def _before(**overrides):
    base = {
        "title": "Write docs",
        "description": None,
        "status": "todo",
        "priority": "medium",
        "due_date": None,
        "team_id": None,
        "assigned_to": ["u-1"],
    }
    base.update(overrides)
    return base


def _task(**fields) -> Task:
    values = _before(**fields)
    return Task(id="t-1", created_by="u-1", **values)


def test_no_changes():
    assert diff_task(_before(), _task()) == {}


def test_field_changes_record_old_and_new():
    due = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)
    changes = diff_task(_before(), _task(status="done", due_date=due))
    assert changes == {
        "status": {"old": "todo", "new": "done"},
        "due_date": {"old": None, "new": "2026-05-01T12:00:00+00:00"},
    }


def test_assignment_diff_lists_added_and_removed():
    changes = diff_task(_before(assigned_to=["u-1", "u-2"]), _task(assigned_to=["u-3", "u-2", "u-4"]))
    assert changes == {"assigned_to": {"added": ["u-3", "u-4"], "removed": ["u-1"]}}


def test_reordering_assignees_is_not_a_change():
    assert diff_task(_before(assigned_to=["a", "b"]), _task(assigned_to=["b", "a"])) == {}
