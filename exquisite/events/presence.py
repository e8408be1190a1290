"""
Presence - Which users have a live connection to which room.

This is process-local and ephemeral. It answers "who is online right now"
for display only. Membership and turn decisions always come from the store.
"""

from __future__ import annotations
import threading


class PresenceTracker:
    """Room id -> set of connected user ids, with per-user connection counts."""

    def __init__(self):
        self._rooms: dict[str, dict[str, int]] = {}
        self._lock = threading.Lock()

    def connect(self, room_id: str, user_id: str) -> bool:
        """Register a connection. Returns True if the user just came online."""
        with self._lock:
            users = self._rooms.setdefault(room_id, {})
            users[user_id] = users.get(user_id, 0) + 1
            return users[user_id] == 1

    def disconnect(self, room_id: str, user_id: str) -> bool:
        """Drop a connection. Returns True if the user went offline."""
        with self._lock:
            users = self._rooms.get(room_id)
            if not users or user_id not in users:
                return False
            users[user_id] -= 1
            if users[user_id] > 0:
                return False
            del users[user_id]
            if not users:
                del self._rooms[room_id]
            return True

    def online_users(self, room_id: str) -> list[str]:
        with self._lock:
            return sorted(self._rooms.get(room_id, {}))

    def is_online(self, room_id: str, user_id: str) -> bool:
        with self._lock:
            return user_id in self._rooms.get(room_id, {})
