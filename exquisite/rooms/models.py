"""
Room Models - Rooms, participants and turns.

Design principles:
- Plain dataclasses, copied on every read and write by the stores
- Rooms are never deleted: completed rooms remain for history and replay
- Turn history is append-only, numbered 0, 1, 2, ... without gaps
- Turn order is assigned once per participant and never reassigned
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any
from copy import deepcopy

from ..clock import new_id, utcnow


MIN_PLAYERS = 2
MAX_PLAYERS = 20
MIN_TURNS = 1
MAX_TURNS = 50
MAX_NAME_LENGTH = 100

INITIAL_IMAGE_PROMPT = "Initial uploaded image"


class RoomStatus(str, Enum):
    """Lifecycle of a room."""
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in {RoomStatus.COMPLETED, RoomStatus.CANCELLED}

    def can_transition_to(self, target: RoomStatus) -> bool:
        """Status only ever moves forward."""
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[RoomStatus, set[RoomStatus]] = {
    RoomStatus.WAITING: {RoomStatus.IN_PROGRESS, RoomStatus.COMPLETED, RoomStatus.CANCELLED},
    RoomStatus.IN_PROGRESS: {RoomStatus.COMPLETED, RoomStatus.CANCELLED},
    RoomStatus.COMPLETED: set(),
    RoomStatus.CANCELLED: set(),
}


@dataclass
class Room:
    """
    One game session, identified to players by its join code.

    current_player_id is set only while IN_PROGRESS.
    current_image is an opaque reference owned by the image store.
    version increments on every committed write.
    """
    id: str
    code: str
    name: str
    host_id: str
    max_players: int = 8
    max_turns: int = 10

    status: RoomStatus = RoomStatus.WAITING
    current_turn: int = 0
    current_player_id: str | None = None
    current_image: str | None = None

    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    ended_at: datetime | None = None

    version: int = 0

    def transition(self, target: RoomStatus):
        """Move to a new status, refusing to go backwards."""
        if not self.status.can_transition_to(target):
            raise ValueError(
                f"Illegal room transition {self.status.value} -> {target.value}"
            )
        self.status = target

    def clone(self) -> Room:
        return deepcopy(self)


@dataclass
class Participant:
    """Membership of one user in one room."""
    room_id: str
    user_id: str
    turn_order: int
    id: str = field(default_factory=new_id)
    is_active: bool = True
    joined_at: datetime = field(default_factory=utcnow)
    left_at: datetime | None = None

    def clone(self) -> Participant:
        return deepcopy(self)


@dataclass
class Turn:
    """One completed move. Immutable once recorded."""
    room_id: str
    player_id: str
    turn_number: int
    prompt: str
    output_image: str
    input_image: str | None = None
    processing_ms: int = 0
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def clone(self) -> Turn:
        return deepcopy(self)


@dataclass
class RoomUpdate:
    """
    The room settings a host may change while the room is WAITING.

    Nothing else about a room is mutable after creation.
    """
    name: str | None = None
    max_players: int | None = None
    max_turns: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RoomUpdate:
        allowed = {f.name for f in fields(cls)}
        unknown = set(data) - allowed
        if unknown:
            raise ValueError(f"Unknown room fields: {', '.join(sorted(unknown))}")
        return cls(**data)


# =============================================================================
# Turn order
# =============================================================================

def active_in_order(participants: list[Participant]) -> list[Participant]:
    """Active participants sorted by turn order."""
    return sorted(
        (p for p in participants if p.is_active),
        key=lambda p: p.turn_order,
    )


def first_in_order(participants: list[Participant]) -> Participant | None:
    """Active participant with the lowest turn order."""
    ordered = active_in_order(participants)
    return ordered[0] if ordered else None


def next_in_order(participants: list[Participant], user_id: str | None) -> Participant | None:
    """
    Active participant following user_id in turn order, wrapping around.

    Turn orders may have gaps left by departed players. If user_id is no longer
    active, the first active participant after its old position is used.
    """
    ordered = active_in_order(participants)
    if not ordered:
        return None

    current_order = None
    for p in participants:
        if p.user_id == user_id:
            current_order = p.turn_order
            break
    if current_order is None:
        return ordered[0]

    for p in ordered:
        if p.turn_order > current_order:
            return p
    return ordered[0]


# =============================================================================
# Read views
# =============================================================================

def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class GameState:
    """Room state as shown to players: active participants and all turns."""
    room: Room
    participants: list[Participant]
    turns: list[Turn]

    @property
    def status(self) -> RoomStatus:
        return self.room.status

    @property
    def current_player_id(self) -> str | None:
        return self.room.current_player_id

    def to_dict(self) -> dict[str, Any]:
        """
        JSON-safe payload for broadcast events.

        Only the current image is embedded. Turns carry metadata, and their
        images are fetched through the state or history endpoints.
        """
        room = self.room
        return {
            "roomId": room.id,
            "roomCode": room.code,
            "roomName": room.name,
            "status": room.status.value,
            "hostId": room.host_id,
            "currentTurn": room.current_turn,
            "maxTurns": room.max_turns,
            "maxPlayers": room.max_players,
            "currentPlayerId": room.current_player_id,
            "currentImage": room.current_image,
            "startedAt": _iso(room.started_at),
            "endedAt": _iso(room.ended_at),
            "participants": [
                {
                    "userId": p.user_id,
                    "turnOrder": p.turn_order,
                    "isActive": p.is_active,
                }
                for p in self.participants
            ],
            "turns": [
                {
                    "turnNumber": t.turn_number,
                    "playerId": t.player_id,
                    "prompt": t.prompt,
                    "createdAt": _iso(t.created_at),
                }
                for t in self.turns
            ],
        }


@dataclass
class GameHistory:
    """Full record of a room for replay, including departed participants."""
    room: Room
    participants: list[Participant]
    turns: list[Turn]

    @property
    def total_turns(self) -> int:
        return len(self.turns)
