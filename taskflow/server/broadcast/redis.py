"""Redis pub/sub broadcaster.

Lets several server processes share one event bus: an event published by
any process reaches SSE clients connected to every process.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from loguru import logger

from taskflow.server.models.events import RealtimeEvent

_PREFIX = "taskflow:"


class RedisBroadcaster:
    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def publish(self, event: RealtimeEvent) -> None:
        await self._client.publish(_PREFIX + event.channel, event.model_dump_json())

    @asynccontextmanager
    async def subscribe(self, channels: list[str]) -> AsyncIterator[AsyncIterator[RealtimeEvent]]:
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(*(_PREFIX + c for c in channels))
        logger.debug("Broadcast: redis subscriber joined {}", channels)

        async def _iterate() -> AsyncIterator[RealtimeEvent]:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                yield RealtimeEvent.model_validate_json(message["data"])

        try:
            yield _iterate()
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()
            logger.debug("Broadcast: redis subscriber left {}", channels)

    async def close(self) -> None:
        """The Redis client is owned by the app lifespan; nothing to release here."""
