"""Unit tests for bulk import file parsing and row validation."""

from __future__ import annotations

import io
import json

import pytest
from openpyxl import Workbook, load_workbook

from taskflow.server.errors import InvalidRequestError
from taskflow.server.managers.bulk_import import (
    TEMPLATE_COLUMNS,
    RowError,
    excel_template,
    json_template,
    parse_excel,
    parse_json,
    team_names,
    validate_row,
)
from taskflow.server.models.enums import EmploymentStatus, Role


def _workbook(*rows: list) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# -- JSON ----------------------------------------------------------------------


def test_parse_json_list():
    rows = parse_json(json.dumps([{"email": "a@example.com"}]).encode())
    assert rows == [{"email": "a@example.com"}]


def test_parse_json_rejects_object():
    with pytest.raises(InvalidRequestError, match="array"):
        parse_json(b'{"email": "a@example.com"}')


def test_parse_json_rejects_garbage():
    with pytest.raises(InvalidRequestError, match="Invalid JSON"):
        parse_json(b"not json")


# -- Excel ---------------------------------------------------------------------


def test_parse_excel_uses_header_row_and_skips_blank_rows():
    content = _workbook(
        ["full_name", "email", "password", "role"],
        ["Ann Example", "ann@example.com", "secret1", "hr"],
        [None, None, None, None],
        ["Ben Example", "ben@example.com", "secret2", None],
    )
    rows = parse_excel(content)
    assert rows == [
        {"full_name": "Ann Example", "email": "ann@example.com", "password": "secret1", "role": "hr"},
        {"full_name": "Ben Example", "email": "ben@example.com", "password": "secret2"},
    ]


def test_parse_excel_header_only_is_empty():
    with pytest.raises(InvalidRequestError, match="empty"):
        parse_excel(_workbook(["full_name", "email", "password"]))


def test_parse_excel_rejects_non_workbook():
    with pytest.raises(InvalidRequestError, match="Invalid Excel"):
        parse_excel(b"plain text")


def test_excel_template_parses_back():
    workbook = load_workbook(io.BytesIO(excel_template()))
    assert workbook.sheetnames == ["Users"]
    rows = parse_excel(excel_template())
    assert [r["email"] for r in rows] == [r["email"] for r in json_template()]
    assert team_names(rows[0]) == ["Development", "QA"]


def test_json_template_columns():
    for row in json_template():
        assert set(row) == set(TEMPLATE_COLUMNS)


# -- Rows ------------------------------------------------------------------------


def test_team_names_prefers_teams_list():
    assert team_names({"teams": ["A", "B", "A"], "team": "C"}) == ["A", "B"]


def test_team_names_comma_separated_and_fallback():
    assert team_names({"teams": "A, B ,"}) == ["A", "B"]
    assert team_names({"team_name": "Solo"}) == ["Solo"]
    assert team_names({}) == []


def test_validate_row_defaults():
    assert validate_row({"full_name": " Ann ", "email": "Ann@Example.com", "password": "pw"}) == (
        "Ann",
        "ann@example.com",
        "pw",
        Role.MEMBER,
        EmploymentStatus.ACTIVE,
    )


def test_validate_row_normalises_case():
    row = {"full_name": "Ann", "email": "a@example.com", "password": "pw"}
    _, _, _, role, status = validate_row({**row, "role": "HR", "employment_status": "on_notice"})
    assert role is Role.HR
    assert status is EmploymentStatus.ON_NOTICE


@pytest.mark.parametrize(
    ("row", "message"),
    [
        ({"email": "a@example.com", "password": "pw"}, "Missing required fields"),
        ({"full_name": "Ann", "email": "not-an-email", "password": "pw"}, "Invalid email format"),
        ({"full_name": "Ann", "email": "a@example.com", "password": "pw", "role": "owner"}, "Invalid role"),
        (
            {"full_name": "Ann", "email": "a@example.com", "password": "pw", "role": "community_admin"},
            "Invalid role",
        ),
        (
            {"full_name": "Ann", "email": "a@example.com", "password": "pw", "employment_status": "RETIRED"},
            "Invalid employment_status",
        ),
    ],
)
def test_validate_row_errors(row, message):
    with pytest.raises(RowError, match=message):
        validate_row(row)
