"""
Moderation audit log.

Every moderation decision is recorded for later review. Writing to the log
is best-effort: the gate never fails a check because the log is down.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
import threading

from ..clock import utcnow

MAX_LOGGED_PROMPT = 1000


@dataclass
class ModerationLogEntry:
    prompt: str
    flagged: bool
    reason: str | None = None
    user_id: str | None = None
    room_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ModerationStats:
    total_checks: int
    flagged_count: int

    @property
    def flag_rate(self) -> float:
        """Percentage of checks that were flagged."""
        if self.total_checks == 0:
            return 0.0
        return self.flagged_count / self.total_checks * 100


class AuditLog(ABC):
    """Where moderation decisions are written."""

    @abstractmethod
    def record(self, entry: ModerationLogEntry):
        """Store one decision."""

    @abstractmethod
    def stats(self) -> ModerationStats:
        """Totals across all recorded decisions."""

    @abstractmethod
    def recent_flagged(self, limit: int = 50) -> list[ModerationLogEntry]:
        """Most recent flagged decisions, newest first."""


class InMemoryAuditLog(AuditLog):

    def __init__(self):
        self._entries: list[ModerationLogEntry] = []
        self._lock = threading.Lock()

    @property
    def entries(self) -> list[ModerationLogEntry]:
        with self._lock:
            return list(self._entries)

    def record(self, entry: ModerationLogEntry):
        with self._lock:
            self._entries.append(entry)

    def stats(self) -> ModerationStats:
        with self._lock:
            flagged = sum(1 for e in self._entries if e.flagged)
            return ModerationStats(total_checks=len(self._entries), flagged_count=flagged)

    def recent_flagged(self, limit: int = 50) -> list[ModerationLogEntry]:
        with self._lock:
            flagged = [e for e in self._entries if e.flagged]
        flagged.sort(key=lambda e: e.created_at, reverse=True)
        return flagged[:limit]
