"""
Broadcaster - Pushes room events to subscribers.

Delivery is at-most-once and best-effort. A committed game action has
already happened by the time its event is published, so a failed publish
is logged and dropped rather than reported to the caller.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
import logging

from ..clock import utcnow
from .types import EventType

logger = logging.getLogger(__name__)


class Broadcaster(ABC):
    """Publishes events to everyone subscribed to a room."""

    @abstractmethod
    async def publish(self, room_id: str, event_type: EventType, payload: dict[str, Any]):
        """Send one event to the room's subscribers."""


@dataclass
class PublishedEvent:
    room_id: str
    type: EventType
    payload: dict[str, Any]
    published_at: datetime = field(default_factory=utcnow)


class RecordingBroadcaster(Broadcaster):
    """Keeps every published event in memory, in order."""

    def __init__(self):
        self.events: list[PublishedEvent] = []

    async def publish(self, room_id: str, event_type: EventType, payload: dict[str, Any]):
        self.events.append(PublishedEvent(room_id=room_id, type=event_type, payload=payload))

    def of_type(self, event_type: EventType) -> list[PublishedEvent]:
        return [e for e in self.events if e.type == event_type]

    def types(self) -> list[EventType]:
        return [e.type for e in self.events]

    def clear(self):
        self.events.clear()


async def notify(
    broadcaster: Broadcaster | None,
    room_id: str,
    event_type: EventType,
    payload: dict[str, Any],
):
    """Publish and swallow failures."""
    if broadcaster is None:
        return
    try:
        await broadcaster.publish(room_id, event_type, payload)
    except Exception:
        logger.warning("Failed to publish %s to room %s", event_type.value, room_id, exc_info=True)
