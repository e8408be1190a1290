"""
Room Registry - Room creation, lookup and membership.

Membership changes share the per-room lock with the game state machine,
so a join or leave never lands in the middle of a turn.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, TYPE_CHECKING
import logging

from ..errors import (
    AlreadyJoined,
    CodeGenerationExhausted,
    HostCannotLeave,
    InvalidRoomCode,
    InvalidRoomSettings,
    NotAParticipant,
    NotHost,
    RoomFull,
    RoomNotEditable,
    RoomNotFound,
    RoomNotJoinable,
)
from ..clock import new_id, utcnow
from ..events import Broadcaster, EventType, notify
from ..session.locks import RoomLocks
from .codes import MAX_CODE_ATTEMPTS, generate_room_code, is_valid_room_code, normalize_room_code
from .models import (
    MAX_NAME_LENGTH,
    MAX_PLAYERS,
    MAX_TURNS,
    MIN_PLAYERS,
    MIN_TURNS,
    Participant,
    Room,
    RoomStatus,
    RoomUpdate,
    first_in_order,
)

if TYPE_CHECKING:
    from ..store.base import RoomStore

logger = logging.getLogger(__name__)


@dataclass
class UserRoom:
    """A room as listed for one of its members."""
    room: Room
    is_host: bool
    participant_count: int


def _validate_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidRoomSettings("Room name is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidRoomSettings(f"Room name must not exceed {MAX_NAME_LENGTH} characters")
    return name


def _validate_range(value, low: int, high: int, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise InvalidRoomSettings(f"{label} must be between {low} and {high}")
    return value


class RoomRegistry:
    """
    Rooms and who is in them.

    Usage:
        registry = RoomRegistry(store, locks=locks, broadcaster=hub)
        room = await registry.create_room("host-1", "Friday doodles", max_players=4)
        await registry.join_room(room.id, "user-2")
    """

    def __init__(
        self,
        store: RoomStore,
        locks: RoomLocks | None = None,
        broadcaster: Broadcaster | None = None,
        code_factory: Callable[[], str] = generate_room_code,
    ):
        self.store = store
        self.locks = locks or RoomLocks()
        self.broadcaster = broadcaster
        self.code_factory = code_factory

    async def create_room(
        self,
        host_id: str,
        name: str,
        max_players: int = 8,
        max_turns: int = 10,
    ) -> Room:
        """Create a WAITING room with a fresh join code. The host joins at turn order 0."""
        name = _validate_name(name)
        _validate_range(max_players, MIN_PLAYERS, MAX_PLAYERS, "Max players")
        _validate_range(max_turns, MIN_TURNS, MAX_TURNS, "Max turns")

        room = Room(
            id=new_id(),
            code=self._unique_code(),
            name=name,
            host_id=host_id,
            max_players=max_players,
            max_turns=max_turns,
        )
        host = Participant(room_id=room.id, user_id=host_id, turn_order=0)
        self.store.insert_room(room, host)

        logger.info("Room %s (%s) created by %s", room.id, room.code, host_id)
        return room

    def get_room(self, room_id: str) -> Room:
        room = self.store.get_room(room_id)
        if room is None:
            raise RoomNotFound()
        return room

    def get_room_by_code(self, code: str) -> Room:
        """Look up a room by join code, case-insensitively."""
        if not is_valid_room_code(code):
            raise InvalidRoomCode()
        room = self.store.find_room_by_code(normalize_room_code(code))
        if room is None:
            raise RoomNotFound()
        return room

    def list_user_rooms(self, user_id: str) -> list[UserRoom]:
        """Rooms where the user is an active member, most recently joined first."""
        return [
            UserRoom(
                room=snapshot.room,
                is_host=snapshot.room.host_id == user_id,
                participant_count=len(snapshot.active_participants),
            )
            for snapshot in self.store.rooms_for_user(user_id)
        ]

    async def join_room(self, room_id: str, user_id: str) -> Room:
        """
        Add a user to a WAITING room.

        A user who left earlier gets their old row back with the same turn order.
        """
        async with self.locks.for_room(room_id):
            with self.store.transaction(room_id) as tx:
                if tx.room.status != RoomStatus.WAITING:
                    raise RoomNotJoinable()

                if len(tx.active_participants) >= tx.room.max_players:
                    raise RoomFull()
                existing = tx.participant(user_id)
                if existing is not None and existing.is_active:
                    raise AlreadyJoined()

                if existing is not None:
                    existing.is_active = True
                    existing.left_at = None
                else:
                    turn_order = max((p.turn_order for p in tx.participants), default=-1) + 1
                    tx.add_participant(Participant(
                        room_id=room_id,
                        user_id=user_id,
                        turn_order=turn_order,
                    ))
                count = len(tx.active_participants)
            room = self.get_room(room_id)

        logger.info("User %s joined room %s", user_id, room_id)
        await notify(self.broadcaster, room_id, EventType.PLAYER_JOINED, {
            "userId": user_id,
            "participantCount": count,
        })
        return room

    async def leave_room(self, room_id: str, user_id: str):
        """
        Remove a user from a room.

        If the leaver held the turn in a running game, the turn passes to
        the active participant with the lowest turn order.
        """
        async with self.locks.for_room(room_id):
            with self.store.transaction(room_id) as tx:
                if tx.room.host_id == user_id:
                    raise HostCannotLeave()

                participant = tx.participant(user_id)
                if participant is None or not participant.is_active:
                    raise NotAParticipant("You are not in this room")

                participant.is_active = False
                participant.left_at = utcnow()

                if (
                    tx.room.status == RoomStatus.IN_PROGRESS
                    and tx.room.current_player_id == user_id
                ):
                    first = first_in_order(tx.participants)
                    tx.room.current_player_id = first.user_id if first else None

                count = len(tx.active_participants)
                current_player_id = tx.room.current_player_id

        logger.info("User %s left room %s", user_id, room_id)
        await notify(self.broadcaster, room_id, EventType.PLAYER_LEFT, {
            "userId": user_id,
            "participantCount": count,
            "currentPlayerId": current_player_id,
        })

    async def update_room(self, room_id: str, host_id: str, update: RoomUpdate) -> Room:
        """Change name, max_players or max_turns while the room is WAITING."""
        async with self.locks.for_room(room_id):
            with self.store.transaction(room_id) as tx:
                room = tx.room
                if room.host_id != host_id:
                    raise NotHost("Only the host can update room settings")
                if room.status != RoomStatus.WAITING:
                    raise RoomNotEditable()

                if update.name is not None:
                    room.name = _validate_name(update.name)
                if update.max_players is not None:
                    _validate_range(update.max_players, MIN_PLAYERS, MAX_PLAYERS, "Max players")
                    if update.max_players < len(tx.active_participants):
                        raise InvalidRoomSettings(
                            "Max players cannot be less than the current number of players"
                        )
                    room.max_players = update.max_players
                if update.max_turns is not None:
                    room.max_turns = _validate_range(update.max_turns, MIN_TURNS, MAX_TURNS, "Max turns")

            updated = self.get_room(room_id)

        logger.info("Room %s settings updated", room_id)
        await notify(self.broadcaster, room_id, EventType.ROOM_UPDATED, {
            "roomId": room_id,
            "name": updated.name,
            "maxPlayers": updated.max_players,
            "maxTurns": updated.max_turns,
        })
        return updated

    def _unique_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self.code_factory()
            if not self.store.code_exists(code):
                return code
        logger.error("Room code generation exhausted after %d attempts", MAX_CODE_ATTEMPTS)
        raise CodeGenerationExhausted()
