"""Workspace administration, teams, users and the audit trail through the HTTP API."""

from __future__ import annotations

import csv
import io
import json

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.integration


# -- Context resolution ------------------------------------------------------------


async def test_unknown_user_is_unauthorized(client: AsyncClient):
    resp = await client.get("/api/tasks", headers={"X-User-Id": "nobody"})
    assert resp.status_code == 401


async def test_member_cannot_select_another_workspace(client: AsyncClient, seed):
    resp = await client.get("/api/tasks", headers=seed.headers(seed.member, seed.community))
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "WORKSPACE_ACCESS_DENIED"


async def test_system_admin_must_select_workspace_to_write(client: AsyncClient, seed):
    resp = await client.post("/api/tasks", json={"title": "Audit"}, headers=seed.headers(seed.sysadmin))
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "NO_WORKSPACE"

    body = {"title": "Audit", "assigned_to": [seed.admin.id]}
    resp = await client.post("/api/tasks", json=body, headers=seed.headers(seed.sysadmin, seed.core))
    assert resp.status_code == 201
    assert resp.json()["workspace_id"] == seed.core.id


@pytest.mark.parametrize(
    ("method", "path", "body"),
    [
        ("PATCH", "/api/tasks/{task}", {"status": "done"}),
        ("DELETE", "/api/tasks/{task}", None),
        ("PATCH", "/api/teams/{team}", {"name": "Renamed"}),
        ("PATCH", "/api/teams/{team}/pin", None),
        ("DELETE", "/api/teams/{team}/members/{member}", None),
        ("DELETE", "/api/teams/{team}", None),
        ("PUT", "/api/users/{member}", {"full_name": "Renamed"}),
        ("PATCH", "/api/users/{member}/role", {"role": "team_lead"}),
        ("PATCH", "/api/users/{member}/deactivate", None),
        ("DELETE", "/api/users/{member}", None),
    ],
)
async def test_system_admin_edits_need_a_workspace(client: AsyncClient, seed, method, path, body):
    task = {"title": "Tenant task", "assigned_to": [seed.member.id]}
    resp = await client.post("/api/tasks", json=task, headers=seed.headers(seed.admin))
    assert resp.status_code == 201
    url = path.format(task=resp.json()["id"], team=seed.team.id, member=seed.member.id)

    resp = await client.request(method, url, json=body, headers=seed.headers(seed.sysadmin))
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "NO_WORKSPACE"


async def test_system_admin_edits_are_stamped_with_selected_workspace(client: AsyncClient, seed):
    task = {"title": "Ship it", "assigned_to": [seed.member.id]}
    resp = await client.post("/api/tasks", json=task, headers=seed.headers(seed.admin))
    task_id = resp.json()["id"]

    resp = await client.patch(
        f"/api/tasks/{task_id}", json={"status": "done"}, headers=seed.headers(seed.sysadmin, seed.core)
    )
    assert resp.status_code == 200

    resp = await client.get("/api/notifications", headers=seed.headers(seed.member))
    types = [n["type"] for n in resp.json()["notifications"]]
    assert "task_completed" in types

    resp = await client.get(
        "/api/changelog", params={"event_type": "task_status_changed"}, headers=seed.headers(seed.admin)
    )
    entries = resp.json()["logs"]
    assert [e["target_id"] for e in entries] == [task_id]


async def test_inactive_workspace_blocks_its_users(client: AsyncClient, seed):
    resp = await client.patch(f"/api/workspaces/{seed.core.id}/toggle-status", headers=seed.headers(seed.sysadmin))
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    resp = await client.get("/api/tasks", headers=seed.headers(seed.member))
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "WORKSPACE_INACTIVE"


# -- Workspaces ----------------------------------------------------------------------


async def test_list_workspaces_with_usage(client: AsyncClient, seed):
    resp = await client.get("/api/workspaces", headers=seed.headers(seed.sysadmin))
    assert resp.status_code == 200
    by_name = {w["name"]: w for w in resp.json()}
    assert by_name["Acme Corp"]["stats"]["user_count"] == 5
    assert by_name["Hobby Club"]["stats"]["usage"]["users"] == "2/10"
    assert by_name["Acme Corp"]["stats"]["usage"]["tasks"] == "0/Unlimited"

    resp = await client.get("/api/workspaces", headers=seed.headers(seed.member))
    assert resp.status_code == 403


async def test_create_workspace_moves_and_promotes_owner(client: AsyncClient, seed):
    sysadmin = seed.headers(seed.sysadmin)
    body = {"name": "Book Club", "type": "COMMUNITY", "owner_email": seed.other_member.email}
    resp = await client.post("/api/workspaces", json=body, headers=sysadmin)
    assert resp.status_code == 201
    workspace = resp.json()
    assert workspace["owner_id"] == seed.other_member.id
    assert workspace["limits"]["max_teams"] == 3
    assert workspace["user_count"] == 1

    resp = await client.get("/api/users/me", headers=seed.headers(seed.other_member))
    me = resp.json()
    assert me["workspace_id"] == workspace["id"]
    assert me["role"] == "community_admin"

    resp = await client.get(f"/api/workspaces/{seed.core.id}", headers=sysadmin)
    assert resp.json()["stats"]["user_count"] == 4

    resp = await client.post("/api/workspaces", json={"name": "Book Club", "type": "CORE"}, headers=sysadmin)
    assert resp.status_code == 409


async def test_delete_workspace_cascades_and_keeps_audit(client: AsyncClient, seed):
    resp = await client.post("/api/tasks", json={"title": "Knit"}, headers=seed.headers(seed.community_admin))
    assert resp.status_code == 201

    sysadmin = seed.headers(seed.sysadmin)
    resp = await client.delete(f"/api/workspaces/{seed.community.id}", headers=sysadmin)
    assert resp.status_code == 200
    assert resp.json()["deleted"] == {"workspace": "Hobby Club", "users": 2, "tasks": 1, "teams": 0}

    resp = await client.get(f"/api/workspaces/{seed.community.id}", headers=sysadmin)
    assert resp.status_code == 404

    resp = await client.get("/api/changelog", params={"event_type": "system_event"}, headers=sysadmin)
    system = resp.json()["logs"]
    assert any(log["action"] == "Deleted workspace" and log["workspace_id"] is None for log in system)
    resp = await client.get("/api/changelog", params={"search": "Knit"}, headers=sysadmin)
    assert resp.json()["total"] == 1


async def test_admin_cannot_delete_own_workspace_by_id(client: AsyncClient, seed):
    resp = await client.delete(f"/api/workspaces/{seed.core.id}", headers=seed.headers(seed.admin))
    assert resp.status_code == 400


async def test_self_delete_is_limited_to_community_owners(client: AsyncClient, seed):
    resp = await client.delete("/api/workspaces/my-workspace/delete", headers=seed.headers(seed.admin))
    assert resp.status_code == 403

    resp = await client.delete("/api/workspaces/my-workspace/delete", headers=seed.headers(seed.community_member))
    assert resp.status_code == 403

    resp = await client.delete("/api/workspaces/my-workspace/delete", headers=seed.headers(seed.community_admin))
    assert resp.status_code == 200
    assert resp.json()["deleted"]["users"] == 2


# -- Teams -----------------------------------------------------------------------------


async def test_team_lifecycle(client: AsyncClient, seed):
    admin = seed.headers(seed.admin)
    body = {"name": "Design", "hr_id": seed.hr.id, "lead_id": seed.lead.id, "members": [seed.other_member.id]}
    resp = await client.post("/api/teams", json=body, headers=admin)
    assert resp.status_code == 201
    team = resp.json()
    assert team["members"] == [seed.other_member.id]

    resp = await client.get("/api/teams", headers=seed.headers(seed.other_member))
    assert [t["name"] for t in resp.json()] == ["Design"]

    resp = await client.post(f"/api/teams/{team['id']}/members", json={"user_id": seed.member.id}, headers=admin)
    assert set(resp.json()["members"]) == {seed.other_member.id, seed.member.id}
    resp = await client.get(f"/api/users/{seed.member.id}", headers=admin)
    assert set(resp.json()["team_ids"]) == {seed.team.id, team["id"]}

    resp = await client.delete(f"/api/teams/{team['id']}/members/{seed.member.id}", headers=admin)
    assert resp.json()["members"] == [seed.other_member.id]

    resp = await client.delete(f"/api/teams/{team['id']}", headers=admin)
    assert resp.status_code == 200
    resp = await client.get(f"/api/users/{seed.other_member.id}", headers=admin)
    assert resp.json()["team_ids"] == []


async def test_core_team_requires_hr_and_lead(client: AsyncClient, seed):
    resp = await client.post("/api/teams", json={"name": "Ops"}, headers=seed.headers(seed.admin))
    assert resp.status_code == 400
    resp = await client.post(
        "/api/teams",
        json={"name": "Admin", "hr_id": seed.hr.id, "lead_id": seed.lead.id},
        headers=seed.headers(seed.admin),
    )
    assert resp.status_code == 400


async def test_members_cannot_manage_teams(client: AsyncClient, seed):
    resp = await client.post(
        f"/api/teams/{seed.team.id}/members", json={"user_id": seed.other_member.id}, headers=seed.headers(seed.member)
    )
    assert resp.status_code == 403


# -- Users -----------------------------------------------------------------------------


async def test_user_visibility_by_role(client: AsyncClient, seed):
    resp = await client.get("/api/users", headers=seed.headers(seed.admin))
    assert {u["id"] for u in resp.json()} == {
        seed.admin.id,
        seed.hr.id,
        seed.lead.id,
        seed.member.id,
        seed.other_member.id,
    }

    resp = await client.get("/api/users", headers=seed.headers(seed.member))
    assert [u["id"] for u in resp.json()] == [seed.member.id]

    resp = await client.get(f"/api/users/{seed.community_member.id}", headers=seed.headers(seed.admin))
    assert resp.status_code == 404


async def test_create_user_rejects_duplicate_email(client: AsyncClient, seed):
    body = {"full_name": "Nina New", "email": "nina@example.com", "password": "secret123"}
    resp = await client.post("/api/users", json=body, headers=seed.headers(seed.admin))
    assert resp.status_code == 201
    assert resp.json()["workspace_id"] == seed.core.id

    resp = await client.post("/api/users", json={**body, "email": "NINA@example.com"}, headers=seed.headers(seed.admin))
    assert resp.status_code == 409


async def test_bulk_import_json(client: AsyncClient, seed):
    rows = [
        {"full_name": "Ivy Import", "email": "ivy@example.com", "password": "secret123", "teams": ["QA"]},
        {"full_name": "Dup", "email": seed.member.email, "password": "secret123"},
        {"full_name": "Bad Role", "email": "bad@example.com", "password": "secret123", "role": "owner"},
    ]
    files = {"file": ("users.json", json.dumps(rows).encode(), "application/json")}
    resp = await client.post("/api/users/bulk-import/json", files=files, headers=seed.headers(seed.admin))
    assert resp.status_code == 200
    result = resp.json()
    assert result["total"] == 3
    assert [s["email"] for s in result["successful"]] == ["ivy@example.com"]
    assert [f["row"] for f in result["failed"]] == [2, 3]
    assert [t["name"] for t in result["teams_created"]] == ["QA"]

    resp = await client.get("/api/workspaces/current", headers=seed.headers(seed.admin))
    assert resp.json()["user_count"] == 6
    assert resp.json()["team_count"] == 2


async def test_bulk_import_rejects_bad_file(client: AsyncClient, seed):
    files = {"file": ("users.json", b"{not json", "application/json")}
    resp = await client.post("/api/users/bulk-import/json", files=files, headers=seed.headers(seed.admin))
    assert resp.status_code == 400


async def test_bulk_import_requires_permission(client: AsyncClient, seed):
    files = {"file": ("users.json", b"[]", "application/json")}
    resp = await client.post("/api/users/bulk-import/json", files=files, headers=seed.headers(seed.community_admin))
    assert resp.status_code == 403


# -- ChangeLog ---------------------------------------------------------------------------


async def test_export_matches_listing(client: AsyncClient, seed):
    admin = seed.headers(seed.admin)
    for title in ("Alpha launch", "Beta launch", "Gamma"):
        await client.post("/api/tasks", json={"title": title}, headers=admin)

    params = {"search": "launch"}
    listing = (await client.get("/api/changelog", params=params, headers=admin)).json()
    resp = await client.get("/api/changelog/export", params=params, headers=admin)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")

    rows = list(csv.reader(io.StringIO(resp.text)))
    assert rows[0][0] == "Timestamp"
    assert len(rows) - 1 == listing["total"] == 2
    assert {row[7] for row in rows[1:]} == {log["target_name"] for log in listing["logs"]}


async def test_changelog_is_workspace_scoped(client: AsyncClient, seed):
    await client.post("/api/tasks", json={"title": "Private"}, headers=seed.headers(seed.admin))
    await client.post(
        "/api/tasks", json={"title": "Community chore"}, headers=seed.headers(seed.community_admin)
    )
    resp = await client.get("/api/changelog", headers=seed.headers(seed.hr))
    assert [log["target_name"] for log in resp.json()["logs"]] == ["Private"]


async def test_changelog_stats(client: AsyncClient, seed):
    await client.post("/api/tasks", json={"title": "Counted"}, headers=seed.headers(seed.admin))
    resp = await client.get("/api/changelog/stats", headers=seed.headers(seed.admin))
    assert resp.status_code == 200


async def test_change_password_checks_current(client: AsyncClient, seed):
    body = {"full_name": "Pat Password", "email": "pat@example.com", "password": "secret123"}
    user = (await client.post("/api/users", json=body, headers=seed.headers(seed.admin))).json()
    headers = {"X-User-Id": user["id"]}

    change = {"old_password": "secret123", "new_password": "changed456"}
    resp = await client.post("/api/users/me/change-password", json=change, headers=headers)
    assert resp.status_code == 204

    resp = await client.post("/api/users/me/change-password", json=change, headers=headers)
    assert resp.status_code == 400
