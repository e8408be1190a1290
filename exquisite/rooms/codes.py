"""
Join codes - short user-facing room keys.

Codes are 6 characters from a 32-symbol alphabet with the visually
ambiguous 0, O, I and 1 removed.
"""

from __future__ import annotations
import re
import secrets

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10

_CODE_RE = re.compile(r"^[A-Z0-9]{6}$")


def generate_room_code() -> str:
    """Draw a random join code."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_room_code(code: str) -> str:
    return code.strip().upper()


def is_valid_room_code(code: str | None) -> bool:
    """Check a user-supplied code has the right shape (case-insensitive)."""
    if not code:
        return False
    return bool(_CODE_RE.match(normalize_room_code(code)))
