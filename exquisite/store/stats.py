"""
User Statistics - Per-user counters kept alongside games.

Counters are owned by this collaborator, not by the game core. The core
updates them best-effort after a successful commit: a failed increment is
logged and never fails the game action.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
import threading


class StatField(str, Enum):
    GAMES_PLAYED = "games_played"
    GAMES_HOSTED = "games_hosted"
    TOTAL_TURNS = "total_turns"


@dataclass
class UserStatistics:
    user_id: str
    games_played: int = 0
    games_hosted: int = 0
    total_turns: int = 0


class StatsRecorder(ABC):
    """Storage for per-user counters."""

    @abstractmethod
    def increment(self, user_id: str, stat: StatField, amount: int = 1):
        """Add to one counter, creating the user's row if needed."""

    @abstractmethod
    def get(self, user_id: str) -> UserStatistics:
        """Counters for one user (all zero if never recorded)."""

    @abstractmethod
    def leaderboard(self, sort_by: StatField, limit: int = 10) -> list[UserStatistics]:
        """Top users by one counter, highest first."""


class InMemoryStatsRecorder(StatsRecorder):

    def __init__(self):
        self._stats: dict[str, UserStatistics] = {}
        self._lock = threading.Lock()

    def increment(self, user_id: str, stat: StatField, amount: int = 1):
        with self._lock:
            stats = self._stats.setdefault(user_id, UserStatistics(user_id=user_id))
            setattr(stats, stat.value, getattr(stats, stat.value) + amount)

    def get(self, user_id: str) -> UserStatistics:
        with self._lock:
            stats = self._stats.get(user_id)
            if stats is None:
                return UserStatistics(user_id=user_id)
            return UserStatistics(**vars(stats))

    def leaderboard(self, sort_by: StatField, limit: int = 10) -> list[UserStatistics]:
        with self._lock:
            ranked = sorted(
                self._stats.values(),
                key=lambda s: (-getattr(s, sort_by.value), s.user_id),
            )
            return [UserStatistics(**vars(s)) for s in ranked[:limit]]
