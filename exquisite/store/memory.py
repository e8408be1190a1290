"""
In-memory room store.

Used for development, tests, and single-process deployments without a
database. State lives only as long as the process.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator
import threading

from ..errors import RoomNotFound, ConcurrentModification
from ..rooms.models import Room, Participant, Turn, RoomStatus
from .base import RoomStore, RoomSnapshot, RoomTransaction


class InMemoryRoomStore(RoomStore):
    """
    Dictionary-backed store.

    Every read returns copies and every commit replaces the stored rows, so
    callers can never mutate stored state outside a transaction.
    """

    def __init__(self):
        self._rooms: dict[str, Room] = {}
        self._participants: dict[str, list[Participant]] = {}
        self._turns: dict[str, list[Turn]] = {}
        self._lock = threading.Lock()

    def insert_room(self, room: Room, host: Participant):
        with self._lock:
            if room.id in self._rooms:
                raise ValueError(f"Room {room.id} already exists")
            if any(r.code == room.code for r in self._rooms.values()):
                raise ValueError(f"Room code {room.code} already in use")
            self._rooms[room.id] = room.clone()
            self._participants[room.id] = [host.clone()]
            self._turns[room.id] = []

    def code_exists(self, code: str) -> bool:
        with self._lock:
            return any(r.code == code for r in self._rooms.values())

    def get_room(self, room_id: str) -> Room | None:
        with self._lock:
            room = self._rooms.get(room_id)
            return room.clone() if room else None

    def find_room_by_code(self, code: str) -> Room | None:
        with self._lock:
            for room in self._rooms.values():
                if room.code == code:
                    return room.clone()
        return None

    def load(self, room_id: str) -> RoomSnapshot | None:
        with self._lock:
            return self._snapshot(room_id)

    @contextmanager
    def transaction(
        self,
        room_id: str,
        expected_version: int | None = None,
    ) -> Iterator[RoomTransaction]:
        snapshot = self.load(room_id)
        if snapshot is None:
            raise RoomNotFound()
        if expected_version is not None and snapshot.room.version != expected_version:
            raise ConcurrentModification()

        base_version = snapshot.room.version
        base_turns = len(snapshot.turns)
        tx = RoomTransaction(snapshot)

        yield tx

        with self._lock:
            current = self._rooms[room_id]
            if current.version != base_version or len(self._turns[room_id]) != base_turns:
                raise ConcurrentModification()

            tx.room.version = base_version + 1
            self._rooms[room_id] = tx.room.clone()
            self._participants[room_id] = [p.clone() for p in tx.participants]
            self._turns[room_id].extend(t.clone() for t in tx.new_turns)

    def rooms_for_user(self, user_id: str) -> list[RoomSnapshot]:
        with self._lock:
            memberships = []
            for room_id, participants in self._participants.items():
                for p in participants:
                    if p.user_id == user_id and p.is_active:
                        memberships.append((p.joined_at, room_id))
            memberships.sort(key=lambda m: m[0], reverse=True)
            return [self._snapshot(room_id) for _, room_id in memberships]

    def games_for_user(
        self,
        user_id: str,
        status: RoomStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[RoomSnapshot], int]:
        with self._lock:
            rooms = [
                room for room_id, room in self._rooms.items()
                if any(p.user_id == user_id for p in self._participants[room_id])
                and (status is None or room.status == status)
            ]
            rooms.sort(key=lambda r: r.created_at, reverse=True)
            page = rooms[offset:offset + limit]
            return [self._snapshot(r.id) for r in page], len(rooms)

    def _snapshot(self, room_id: str) -> RoomSnapshot | None:
        """Copy one room. Caller holds the lock."""
        room = self._rooms.get(room_id)
        if room is None:
            return None
        return RoomSnapshot(
            room=room.clone(),
            participants=[p.clone() for p in self._participants[room_id]],
            turns=[t.clone() for t in self._turns[room_id]],
        )
