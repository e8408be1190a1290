"""
Rooms Module - Rooms, participants, turns and join codes.
"""

from .models import (
    Room,
    RoomStatus,
    Participant,
    Turn,
    RoomUpdate,
    GameState,
    GameHistory,
    active_in_order,
    first_in_order,
    next_in_order,
)
from .codes import CODE_ALPHABET, CODE_LENGTH, generate_room_code, is_valid_room_code
from .registry import RoomRegistry, UserRoom

__all__ = [
    "Room",
    "RoomStatus",
    "Participant",
    "Turn",
    "RoomUpdate",
    "GameState",
    "GameHistory",
    "active_in_order",
    "first_in_order",
    "next_in_order",
    "CODE_ALPHABET",
    "CODE_LENGTH",
    "generate_room_code",
    "is_valid_room_code",
    "RoomRegistry",
    "UserRoom",
]
