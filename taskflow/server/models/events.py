"""Realtime event envelope.

Events are published after the originating transaction commits and carry
the server-confirmed entity as ``payload``, so subscribers can apply them
directly without re-fetching.  A subscriber whose role may not read every
record of that kind gets a redacted copy holding only the entity id.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from taskflow.server.models.enums import RealtimeEventType

SYSTEM_CHANNEL = "system"


def workspace_channel(workspace_id: str) -> str:
    return f"workspace:{workspace_id}"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


class RealtimeEvent(BaseModel):
    """Wire-format event envelope sent over SSE / Redis pub/sub."""

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event: RealtimeEventType
    channel: str
    workspace_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    payload: dict[str, Any] = Field(default_factory=dict)
    redacted: bool = False

    def redact(self) -> RealtimeEvent:
        """Copy with the payload reduced to the entity id."""
        entity_id = self.payload.get("id")
        payload = {"id": entity_id} if entity_id is not None else {}
        return self.model_copy(update={"payload": payload, "redacted": True})
