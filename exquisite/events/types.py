"""
Event types pushed to room subscribers.

Values are the wire names clients listen for.
"""

from enum import Enum


class EventType(str, Enum):
    # Game lifecycle
    GAME_STARTED = "game:started"
    TURN_PROCESSING = "turn:processing"
    TURN_COMPLETED = "game:turnCompleted"
    GAME_COMPLETED = "game:completed"
    TURN_ERROR = "turn:error"
    TURN_SKIPPED = "game:turnSkipped"
    GAME_CANCELLED = "game:cancelled"

    # Membership
    PLAYER_JOINED = "room:playerJoined"
    PLAYER_LEFT = "room:playerLeft"
    ROOM_UPDATED = "room:updated"

    # Connection and chat
    USER_CONNECTED = "room:userConnected"
    USER_DISCONNECTED = "room:userDisconnected"
    CHAT_MESSAGE = "room:chatMessage"
    USER_TYPING = "room:userTyping"
