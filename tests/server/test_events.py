"""Per-subscriber filtering of the realtime stream."""

from __future__ import annotations

import asyncio
import json

import pytest

from taskflow.server.broadcast.local import LocalBroadcaster
from taskflow.server.context import RequestContext
from taskflow.server.db.tables import User, Workspace
from taskflow.server.models.enums import RealtimeEventType, Role, WorkspaceType
from taskflow.server.models.events import SYSTEM_CHANNEL, RealtimeEvent, user_channel, workspace_channel
from taskflow.server.routers.events import _relay, channels_for, visible_event

TASK = {"id": "t-1", "title": "Secret", "assigned_to": ["u-9"], "created_by": "u-8"}


def _ctx(role: Role, workspace_id: str | None = "ws-1") -> RequestContext:
    user = User(id="u-1", full_name="Test User", email="t@example.com", role=role, workspace_id=workspace_id)
    workspace = Workspace(id="ws-1", name="Acme", type=WorkspaceType.CORE) if workspace_id else None
    return RequestContext(user=user, workspace=workspace)


def _event(kind: RealtimeEventType, channel: str = "workspace:ws-1", payload: dict | None = None) -> RealtimeEvent:
    return RealtimeEvent(event=kind, channel=channel, workspace_id="ws-1", payload=payload or TASK)


def test_channels_for_member():
    assert channels_for(_ctx(Role.MEMBER)) == [user_channel("u-1"), workspace_channel("ws-1")]


def test_channels_for_system_admin():
    assert channels_for(_ctx(Role.ADMIN, None)) == [user_channel("u-1"), SYSTEM_CHANNEL]


@pytest.mark.parametrize("role", [Role.ADMIN, Role.HR, Role.COMMUNITY_ADMIN])
def test_full_payload_for_roles_that_read_everything(role):
    event = _event(RealtimeEventType.TASK_CREATED)
    assert visible_event(_ctx(role), event) is event


@pytest.mark.parametrize(
    "kind",
    [
        RealtimeEventType.TASK_CREATED,
        RealtimeEventType.TASK_UPDATED,
        RealtimeEventType.COMMENT_CREATED,
        RealtimeEventType.USER_UPDATED,
        RealtimeEventType.TEAM_CREATED,
    ],
)
def test_member_gets_entity_id_only(kind):
    seen = visible_event(_ctx(Role.MEMBER), _event(kind))
    assert seen.redacted is True
    assert seen.payload == {"id": "t-1"}
    assert seen.event == kind


def test_team_lead_gets_redacted_tasks():
    assert visible_event(_ctx(Role.TEAM_LEAD), _event(RealtimeEventType.TASK_UPDATED)).redacted


def test_bulk_event_without_id_is_emptied():
    event = _event(RealtimeEventType.USERS_BULK_DELETED, payload={"count": 3, "user_ids": ["u-2"]})
    seen = visible_event(_ctx(Role.MEMBER), event)
    assert seen.redacted and seen.payload == {}


def test_own_user_channel_is_never_redacted():
    event = _event(RealtimeEventType.TASK_ASSIGNED, channel=user_channel("u-1"), payload={"task": TASK})
    assert visible_event(_ctx(Role.MEMBER), event) is event


def test_notification_events_pass_through():
    event = _event(RealtimeEventType.NOTIFICATION_NEW, payload={"id": "n-1", "message": "hi"})
    assert visible_event(_ctx(Role.MEMBER), event) is event


async def test_relay_redacts_for_member():
    broadcaster = LocalBroadcaster()
    stream = _relay(broadcaster, _ctx(Role.MEMBER))
    pending = asyncio.ensure_future(anext(stream))
    while broadcaster.subscriber_count == 0:
        await asyncio.sleep(0)

    await broadcaster.publish(_event(RealtimeEventType.TASK_CREATED))
    message = await asyncio.wait_for(pending, timeout=1)
    await stream.aclose()

    assert message["event"] == "task:created"
    data = json.loads(message["data"])
    assert data["payload"] == {"id": "t-1"}
    assert data["redacted"] is True
