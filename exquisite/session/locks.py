"""
Per-room mutual exclusion.

One asyncio.Lock per room id, shared by the registry and the state machine,
so join/leave/update never interleave with a turn in flight. Locks are
process-local; cross-process safety comes from the store's version check.
"""

from __future__ import annotations
import asyncio


class RoomLocks:

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def for_room(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_id] = lock
        return lock

    def is_locked(self, room_id: str) -> bool:
        lock = self._locks.get(room_id)
        return lock is not None and lock.locked()
