"""In-process broadcaster backed by asyncio queues.

Used when no Redis URL is configured: only clients connected to this
process receive events.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger

from taskflow.server.models.events import RealtimeEvent


class LocalBroadcaster:
    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue[RealtimeEvent]]] = defaultdict(set)

    @property
    def subscriber_count(self) -> int:
        return len({id(q) for qs in self._subscribers.values() for q in qs})

    async def publish(self, event: RealtimeEvent) -> None:
        for queue in list(self._subscribers.get(event.channel, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Broadcast: dropping {} for slow subscriber on {}", event.event, event.channel)

    @asynccontextmanager
    async def subscribe(self, channels: list[str]) -> AsyncIterator[AsyncIterator[RealtimeEvent]]:
        queue: asyncio.Queue[RealtimeEvent] = asyncio.Queue(maxsize=self._queue_size)
        for channel in channels:
            self._subscribers[channel].add(queue)
        logger.debug("Broadcast: local subscriber joined {}", channels)

        async def _iterate() -> AsyncIterator[RealtimeEvent]:
            while True:
                yield await queue.get()

        try:
            yield _iterate()
        finally:
            for channel in channels:
                self._subscribers[channel].discard(queue)
                if not self._subscribers[channel]:
                    del self._subscribers[channel]
            logger.debug("Broadcast: local subscriber left {}", channels)

    async def close(self) -> None:
        self._subscribers.clear()
