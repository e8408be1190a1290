"""
Moderation Gate - Rejects disallowed or malformed prompts.

Runs before any prompt reaches the image service:
1. validate_format: length and content shape
2. check: blocked words and patterns, on a lowercased, trimmed copy

The word and pattern lists are fixed, so check() is deterministic:
the same prompt always produces the same flagged/reason.
"""

from __future__ import annotations
from dataclasses import dataclass
import logging
import re

from ..errors import (
    ModerationRejected,
    PromptMissing,
    PromptNoAlphanumeric,
    PromptTooLong,
    PromptTooShort,
)
from .audit import AuditLog, ModerationLogEntry, ModerationStats, MAX_LOGGED_PROMPT

logger = logging.getLogger(__name__)

MIN_PROMPT_LENGTH = 3
MAX_PROMPT_LENGTH = 500

BLOCKED_WORDS = (
    # Violence
    "kill", "murder", "death", "violence", "blood", "gore", "torture",
    # Adult content
    "nude", "naked", "nsfw", "porn", "xxx", "sexual", "erotic",
    # Hate speech
    "hate", "racist", "nazi", "discrimination",
    # Harmful
    "suicide", "self-harm", "drugs", "illegal",
)

BLOCKED_PATTERNS = (
    re.compile(r"\b(kill|murder|hurt)\s+(people|person|someone|child|children)", re.IGNORECASE),
    re.compile(r"\b(nude|naked)\s+(woman|man|person|child|children)", re.IGNORECASE),
    re.compile(r"\bexplicit\s+(content|image|picture)", re.IGNORECASE),
    re.compile(r"\b(child|children)\s+in\s+(danger|trouble)", re.IGNORECASE),
)

PATTERN_REASON = "Prompt contains potentially harmful content pattern"

_ALPHANUMERIC = re.compile(r"[a-zA-Z0-9]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ModerationResult:
    flagged: bool
    reason: str | None
    cleaned_prompt: str


class ModerationGate:
    """
    Prompt validation and filtering.

    Usage:
        gate = ModerationGate(audit_log=InMemoryAuditLog())
        cleaned = gate.moderate("add a cat", user_id="u1", room_id="r1")
    """

    def __init__(self, audit_log: AuditLog | None = None, audit_enabled: bool = True):
        self.audit_log = audit_log
        self.audit_enabled = audit_enabled

    def validate_format(self, prompt) -> str:
        """
        Check prompt shape. Returns the trimmed prompt.

        Raises PromptMissing, PromptTooShort, PromptTooLong or
        PromptNoAlphanumeric.
        """
        if not prompt or not isinstance(prompt, str):
            raise PromptMissing()

        trimmed = prompt.strip()
        if not trimmed:
            raise PromptMissing()
        if len(trimmed) < MIN_PROMPT_LENGTH:
            raise PromptTooShort()
        if len(trimmed) > MAX_PROMPT_LENGTH:
            raise PromptTooLong()
        if not _ALPHANUMERIC.search(trimmed):
            raise PromptNoAlphanumeric()
        return trimmed

    def check(
        self,
        prompt: str,
        user_id: str | None = None,
        room_id: str | None = None,
    ) -> ModerationResult:
        """Screen a prompt against the blocked word and pattern lists."""
        normalized = prompt.lower().strip()
        result = None

        for word in BLOCKED_WORDS:
            if word in normalized:
                result = ModerationResult(
                    flagged=True,
                    reason=f'Prompt contains prohibited content: "{word}"',
                    cleaned_prompt=prompt,
                )
                break

        if result is None:
            for pattern in BLOCKED_PATTERNS:
                if pattern.search(normalized):
                    result = ModerationResult(
                        flagged=True,
                        reason=PATTERN_REASON,
                        cleaned_prompt=prompt,
                    )
                    break

        if result is None:
            cleaned = _WHITESPACE.sub(" ", prompt).strip()[:MAX_PROMPT_LENGTH]
            result = ModerationResult(flagged=False, reason=None, cleaned_prompt=cleaned)

        self._audit(prompt, result, user_id, room_id)
        return result

    def moderate(
        self,
        prompt,
        user_id: str | None = None,
        room_id: str | None = None,
    ) -> str:
        """
        Validate and screen a prompt in one step.

        Returns the cleaned prompt or raises a validation error or
        ModerationRejected.
        """
        self.validate_format(prompt)
        result = self.check(prompt, user_id=user_id, room_id=room_id)
        if result.flagged:
            logger.info("Prompt rejected for user %s in room %s: %s", user_id, room_id, result.reason)
            raise ModerationRejected(result.reason)
        return result.cleaned_prompt

    def stats(self) -> ModerationStats:
        if self.audit_log is None:
            return ModerationStats(total_checks=0, flagged_count=0)
        return self.audit_log.stats()

    def recent_flagged(self, limit: int = 50) -> list[ModerationLogEntry]:
        if self.audit_log is None:
            return []
        return self.audit_log.recent_flagged(limit)

    def _audit(
        self,
        prompt: str,
        result: ModerationResult,
        user_id: str | None,
        room_id: str | None,
    ):
        if not self.audit_enabled or self.audit_log is None:
            return
        try:
            self.audit_log.record(
                ModerationLogEntry(
                    prompt=prompt[:MAX_LOGGED_PROMPT],
                    flagged=result.flagged,
                    reason=result.reason,
                    user_id=user_id,
                    room_id=room_id,
                )
            )
        except Exception:
            logger.exception("Failed to log moderation decision")
