"""
Clock - Timestamps and identifiers shared by every module.

Imports nothing from the package, so any module may depend on it.
"""

from datetime import datetime, timezone
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())
