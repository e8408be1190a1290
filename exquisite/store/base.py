"""
Room Store - Persistence boundary for rooms, participants and turns.

The store is the only owner of authoritative game state. All writes go
through `transaction()`, which applies the room, its participants and any
new turns together or not at all.

Optimistic concurrency:
- Every committed write bumps Room.version
- A caller that read the room earlier passes that version as
  `expected_version`; if another writer committed in between, the
  transaction raises ConcurrentModification before touching anything
- New turns must continue the contiguous 0, 1, 2, ... sequence
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass, field

from ..errors import ConcurrentModification
from ..rooms.models import Room, Participant, Turn, RoomStatus, active_in_order


@dataclass
class RoomSnapshot:
    """A consistent copy of one room and everything it owns."""
    room: Room
    participants: list[Participant] = field(default_factory=list)
    turns: list[Turn] = field(default_factory=list)

    def participant(self, user_id: str) -> Participant | None:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None

    @property
    def active_participants(self) -> list[Participant]:
        return active_in_order(self.participants)


class RoomTransaction:
    """
    Staged changes to one room.

    Callers mutate `room` and the participant copies in place, and append
    new participants and turns. The store writes everything on commit.
    """

    def __init__(self, snapshot: RoomSnapshot):
        self.room = snapshot.room
        self.participants = snapshot.participants
        self.turns = snapshot.turns
        self.new_turns: list[Turn] = []

    @property
    def active_participants(self) -> list[Participant]:
        return active_in_order(self.participants)

    def participant(self, user_id: str) -> Participant | None:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None

    def add_participant(self, participant: Participant):
        if self.participant(participant.user_id) is not None:
            raise ConcurrentModification("Participant already exists for this user")
        self.participants.append(participant)

    def add_turn(self, turn: Turn):
        expected = len(self.turns) + len(self.new_turns)
        if turn.turn_number != expected:
            raise ConcurrentModification(
                f"Turn {turn.turn_number} is out of sequence (expected {expected})"
            )
        self.new_turns.append(turn)


class RoomStore(ABC):
    """Transactional storage for rooms."""

    @abstractmethod
    def insert_room(self, room: Room, host: Participant):
        """Persist a new room together with its host participant."""

    @abstractmethod
    def code_exists(self, code: str) -> bool:
        """Whether any room already uses this join code."""

    @abstractmethod
    def get_room(self, room_id: str) -> Room | None:
        """Get a room by id."""

    @abstractmethod
    def find_room_by_code(self, code: str) -> Room | None:
        """Get a room by its join code."""

    @abstractmethod
    def load(self, room_id: str) -> RoomSnapshot | None:
        """Read a room with all participants and turns."""

    @abstractmethod
    def transaction(
        self,
        room_id: str,
        expected_version: int | None = None,
    ) -> AbstractContextManager[RoomTransaction]:
        """
        Open an atomic read-modify-write unit on one room.

        Raises RoomNotFound if the room does not exist and
        ConcurrentModification if the version check fails.
        """

    @abstractmethod
    def rooms_for_user(self, user_id: str) -> list[RoomSnapshot]:
        """Rooms where the user is an active participant, newest join first."""

    @abstractmethod
    def games_for_user(
        self,
        user_id: str,
        status: RoomStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[RoomSnapshot], int]:
        """Rooms the user ever took part in, newest first, with the total count."""
