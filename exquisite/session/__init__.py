"""
Session Module - Game lifecycle for rooms.

Rooms move WAITING -> IN_PROGRESS -> COMPLETED (or CANCELLED). Only the
current player may submit a turn, and turns within a room are serialized
by a per-room lock held across the image call.
"""

from .locks import RoomLocks
from .machine import GameSession

__all__ = [
    "RoomLocks",
    "GameSession",
]
