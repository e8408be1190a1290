"""
Moderation Module - Prompt safety checks.

Every prompt passes through the gate before it may reach the image service.
Decisions are written to an audit log on a best-effort basis.
"""

from .gate import ModerationGate, ModerationResult, BLOCKED_WORDS, BLOCKED_PATTERNS
from .audit import AuditLog, InMemoryAuditLog, ModerationLogEntry, ModerationStats

__all__ = [
    "ModerationGate",
    "ModerationResult",
    "BLOCKED_WORDS",
    "BLOCKED_PATTERNS",
    "AuditLog",
    "InMemoryAuditLog",
    "ModerationLogEntry",
    "ModerationStats",
]
