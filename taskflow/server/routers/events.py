"""Server-sent event stream of realtime updates.

A client receives events for its workspace, for itself, and (system
administrators only) the system channel.  Each SSE message carries the
:class:`RealtimeEvent` envelope as JSON; the SSE ``event`` field repeats the
event type and ``id`` the event id.

Workspace-channel entity events are filtered through the read policy: when
the subscriber's grant for that kind of record is narrower than ``any`` the
event is redacted to the entity id and the client re-fetches what it may see.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException, status
from loguru import logger
from sse_starlette.sse import EventSourceResponse

from taskflow.server.broadcast.base import Broadcaster
from taskflow.server.context import RequestContext
from taskflow.server.deps import Context, EventBus
from taskflow.server.models.events import SYSTEM_CHANNEL, RealtimeEvent, user_channel, workspace_channel
from taskflow.server.policy import Action, Grant, Resource, authorize

router = APIRouter(prefix="/events", tags=["events"])

PING_INTERVAL = 15

# Event prefix -> resource whose read grant decides visibility.  Comments
# follow their task.
_EVENT_RESOURCES = {
    "task": Resource.TASK,
    "comment": Resource.TASK,
    "team": Resource.TEAM,
    "user": Resource.USER,
    "users": Resource.USER,
}


def channels_for(ctx: RequestContext) -> list[str]:
    channels = [user_channel(ctx.user_id)]
    if ctx.workspace_id is not None:
        channels.append(workspace_channel(ctx.workspace_id))
    if ctx.is_system_admin:
        channels.append(SYSTEM_CHANNEL)
    return channels


def visible_event(ctx: RequestContext, event: RealtimeEvent) -> RealtimeEvent:
    """The copy of *event* this subscriber is allowed to see."""
    if event.channel == user_channel(ctx.user_id) or event.channel == SYSTEM_CHANNEL:
        return event
    resource = _EVENT_RESOURCES.get(event.event.split(":", 1)[0])
    if resource is None or authorize(ctx.role, resource, Action.READ) is Grant.ANY:
        return event
    return event.redact()


async def _relay(broadcaster: Broadcaster, ctx: RequestContext) -> AsyncIterator[dict[str, str]]:
    async with broadcaster.subscribe(channels_for(ctx)) as subscription:
        async for event in subscription:
            event = visible_event(ctx, event)
            yield {"event": event.event, "id": event.event_id, "data": event.model_dump_json()}


@router.get("/stream")
async def stream(ctx: Context, broadcaster: EventBus) -> EventSourceResponse:
    if broadcaster is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Realtime events are not enabled.")
    logger.debug("SSE: user {} subscribed to {}", ctx.user_id, channels_for(ctx))
    return EventSourceResponse(_relay(broadcaster, ctx), ping=PING_INTERVAL)
