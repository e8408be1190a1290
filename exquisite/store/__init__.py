"""
Store Module - Authoritative storage for rooms, statistics and audit logs.

Two backends share one interface:
- memory: dictionaries, for development and tests
- sql: SQLAlchemy, for anything that must survive a restart
"""

from .base import RoomStore, RoomSnapshot, RoomTransaction
from .memory import InMemoryRoomStore
from .stats import StatField, StatsRecorder, UserStatistics, InMemoryStatsRecorder
from .sql import (
    SqlRoomStore,
    SqlStatsRecorder,
    SqlAuditLog,
    make_engine,
    make_session_factory,
    init_db,
)

__all__ = [
    "RoomStore",
    "RoomSnapshot",
    "RoomTransaction",
    "InMemoryRoomStore",
    "StatField",
    "StatsRecorder",
    "UserStatistics",
    "InMemoryStatsRecorder",
    "SqlRoomStore",
    "SqlStatsRecorder",
    "SqlAuditLog",
    "make_engine",
    "make_session_factory",
    "init_db",
]
