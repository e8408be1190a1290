"""
Events Module - Real-time notifications for room subscribers.
"""

from .types import EventType
from .broadcaster import Broadcaster, RecordingBroadcaster, PublishedEvent, notify
from .hub import WebSocketHub
from .presence import PresenceTracker

__all__ = [
    "EventType",
    "Broadcaster",
    "RecordingBroadcaster",
    "PublishedEvent",
    "notify",
    "WebSocketHub",
    "PresenceTracker",
]
