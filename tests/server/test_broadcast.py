"""Tests for the in-process and Redis broadcasters."""

from __future__ import annotations

import asyncio

import pytest

from taskflow.server.broadcast.base import Broadcaster
from taskflow.server.broadcast.local import LocalBroadcaster
from taskflow.server.broadcast.redis import RedisBroadcaster
from taskflow.server.models.enums import RealtimeEventType
from taskflow.server.models.events import RealtimeEvent, user_channel, workspace_channel


def _event(channel: str, event: RealtimeEventType = RealtimeEventType.TASK_CREATED) -> RealtimeEvent:
    return RealtimeEvent(event=event, channel=channel, workspace_id="ws-1", payload={"id": "t-1"})


def test_local_broadcaster_satisfies_protocol():
    assert isinstance(LocalBroadcaster(), Broadcaster)


async def test_local_delivers_only_subscribed_channels():
    broadcaster = LocalBroadcaster()
    async with broadcaster.subscribe([workspace_channel("ws-1"), user_channel("u-1")]) as events:
        await broadcaster.publish(_event(workspace_channel("ws-2")))
        await broadcaster.publish(_event(workspace_channel("ws-1")))
        await broadcaster.publish(_event(user_channel("u-1"), RealtimeEventType.NOTIFICATION_NEW))

        first = await asyncio.wait_for(anext(events), timeout=1)
        second = await asyncio.wait_for(anext(events), timeout=1)

    assert first.channel == "workspace:ws-1"
    assert second.event == RealtimeEventType.NOTIFICATION_NEW


async def test_local_unsubscribes_on_exit():
    broadcaster = LocalBroadcaster()
    async with broadcaster.subscribe(["workspace:ws-1"]):
        assert broadcaster.subscriber_count == 1
    assert broadcaster.subscriber_count == 0
    await broadcaster.publish(_event("workspace:ws-1"))


async def test_local_drops_events_for_full_queue():
    broadcaster = LocalBroadcaster(queue_size=1)
    async with broadcaster.subscribe(["workspace:ws-1"]) as events:
        await broadcaster.publish(_event("workspace:ws-1", RealtimeEventType.TASK_CREATED))
        await broadcaster.publish(_event("workspace:ws-1", RealtimeEventType.TASK_UPDATED))
        received = await asyncio.wait_for(anext(events), timeout=1)
    assert received.event == RealtimeEventType.TASK_CREATED


@pytest.mark.integration
async def test_redis_round_trip(redis_client):
    broadcaster = RedisBroadcaster(redis_client)
    async with broadcaster.subscribe(["workspace:ws-1"]) as events:
        sent = _event("workspace:ws-1")
        await broadcaster.publish(_event("workspace:ws-2"))
        await broadcaster.publish(sent)
        received = await asyncio.wait_for(anext(events), timeout=5)

    assert received.event_id == sent.event_id
    assert received.payload == {"id": "t-1"}
