"""
Tests for the moderation gate.

Tests:
- Prompt format validation
- Blocked words and patterns
- Determinism
- Audit logging (including failure tolerance)
"""

import pytest

from ..errors import (
    ModerationRejected,
    PromptMissing,
    PromptNoAlphanumeric,
    PromptTooLong,
    PromptTooShort,
)
from ..moderation import InMemoryAuditLog, ModerationGate
from ..moderation.audit import AuditLog, ModerationLogEntry
from ..moderation.gate import PATTERN_REASON


class BrokenAuditLog(AuditLog):
    def record(self, entry):
        raise RuntimeError("database down")

    def stats(self):
        raise RuntimeError("database down")

    def recent_flagged(self, limit=50):
        raise RuntimeError("database down")


class TestValidateFormat:
    """Tests for prompt shape checks."""

    def test_returns_trimmed_prompt(self, gate):
        assert gate.validate_format("  add a cat  ") == "add a cat"

    @pytest.mark.parametrize("prompt", [None, "", "    ", 42])
    def test_missing(self, gate, prompt):
        with pytest.raises(PromptMissing):
            gate.validate_format(prompt)

    def test_too_short(self, gate):
        with pytest.raises(PromptTooShort):
            gate.validate_format(" ab ")

    def test_length_boundaries(self, gate):
        assert gate.validate_format("abc") == "abc"
        assert gate.validate_format("a" * 500) == "a" * 500
        with pytest.raises(PromptTooLong):
            gate.validate_format("a" * 501)

    def test_no_alphanumeric(self, gate):
        with pytest.raises(PromptNoAlphanumeric):
            gate.validate_format("!!! ???")


class TestCheck:
    """Tests for blocked content screening."""

    def test_clean_prompt_passes(self, gate):
        result = gate.check("add a cat")
        assert not result.flagged
        assert result.reason is None
        assert result.cleaned_prompt == "add a cat"

    def test_blocked_word(self, gate):
        result = gate.check("kill the balloon")
        assert result.flagged
        assert result.reason == 'Prompt contains prohibited content: "kill"'
        assert result.cleaned_prompt == "kill the balloon"

    def test_blocked_word_case_insensitive(self, gate):
        result = gate.check("Add Some BLOOD")
        assert result.flagged
        assert "blood" in result.reason

    def test_blocked_word_matches_substrings(self, gate):
        assert gate.check("a skilled painter").flagged

    def test_first_listed_word_wins(self, gate):
        result = gate.check("naked murder")
        assert result.reason == 'Prompt contains prohibited content: "murder"'

    @pytest.mark.parametrize("prompt", [
        "hurt someone please",
        "show explicit content",
        "children in trouble",
    ])
    def test_blocked_patterns(self, gate, prompt):
        result = gate.check(prompt)
        assert result.flagged
        assert result.reason == PATTERN_REASON

    def test_whitespace_collapsed(self, gate):
        result = gate.check("  add   a\n\tcat  ")
        assert result.cleaned_prompt == "add a cat"

    def test_cleaned_prompt_truncated(self, gate):
        result = gate.check("a " * 400)
        assert len(result.cleaned_prompt) == 500

    @pytest.mark.parametrize("prompt", ["kill the balloon", "add a cat", "hurt someone"])
    def test_deterministic(self, gate, prompt):
        first = gate.check(prompt)
        second = gate.check(prompt)
        assert (first.flagged, first.reason) == (second.flagged, second.reason)


class TestModerate:
    """Tests for the combined validate-and-check step."""

    def test_returns_cleaned(self, gate):
        assert gate.moderate("  make   it blue ") == "make it blue"

    def test_flagged_raises(self, gate):
        with pytest.raises(ModerationRejected) as exc_info:
            gate.moderate("kill the balloon", user_id="u1", room_id="r1")
        assert exc_info.value.reason == 'Prompt contains prohibited content: "kill"'
        assert exc_info.value.code == "MODERATION_REJECTED"

    def test_format_errors_raise_before_check(self, gate, audit_log):
        with pytest.raises(PromptTooShort):
            gate.moderate("hi")
        assert audit_log.entries == []


class TestAuditLog:
    """Tests for moderation audit logging."""

    def test_every_check_recorded(self, gate, audit_log):
        gate.check("add a cat", user_id="u1", room_id="r1")
        gate.check("kill it", user_id="u2", room_id="r1")

        entries = audit_log.entries
        assert len(entries) == 2
        assert entries[0].user_id == "u1"
        assert not entries[0].flagged
        assert entries[1].flagged
        assert entries[1].reason == 'Prompt contains prohibited content: "kill"'

    def test_long_prompts_truncated_in_log(self, gate, audit_log):
        gate.check("kill " * 300)
        assert len(audit_log.entries[0].prompt) == 1000

    def test_audit_disabled(self, audit_log):
        gate = ModerationGate(audit_log=audit_log, audit_enabled=False)
        gate.check("kill it")
        assert audit_log.entries == []

    def test_audit_failure_swallowed(self):
        gate = ModerationGate(audit_log=BrokenAuditLog())
        result = gate.check("kill it")
        assert result.flagged
        assert gate.moderate("add a cat") == "add a cat"

    def test_stats(self, gate):
        gate.check("add a cat")
        gate.check("make it blue")
        gate.check("kill it")
        gate.check("add gore")

        stats = gate.stats()
        assert stats.total_checks == 4
        assert stats.flagged_count == 2
        assert stats.flag_rate == 50.0

    def test_stats_without_log(self):
        stats = ModerationGate().stats()
        assert stats.total_checks == 0
        assert stats.flag_rate == 0.0

    def test_recent_flagged_newest_first(self):
        log = InMemoryAuditLog()
        log.record(ModerationLogEntry(prompt="old", flagged=True, reason="r"))
        log.record(ModerationLogEntry(prompt="clean", flagged=False))
        newest = ModerationLogEntry(prompt="new", flagged=True, reason="r")
        newest.created_at = newest.created_at.replace(year=newest.created_at.year + 1)
        log.record(newest)

        flagged = log.recent_flagged()
        assert [e.prompt for e in flagged] == ["new", "old"]
        assert log.recent_flagged(limit=1)[0].prompt == "new"
