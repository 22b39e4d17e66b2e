"""Broadcaster interface for realtime fan-out.

A broadcaster delivers :class:`RealtimeEvent` envelopes published on a
channel to every subscriber of that channel.  Channels are
``workspace:{id}``, ``user:{id}`` and ``system``; nothing is broadcast
globally.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from typing import Protocol, runtime_checkable

from taskflow.server.models.events import RealtimeEvent


@runtime_checkable
class Broadcaster(Protocol):
    async def publish(self, event: RealtimeEvent) -> None:
        """Deliver *event* to subscribers of ``event.channel``."""
        ...

    def subscribe(self, channels: list[str]) -> AbstractAsyncContextManager[AsyncIterator[RealtimeEvent]]:
        """Open a subscription.  The iterator yields events until the context exits."""
        ...

    async def close(self) -> None:
        ...
