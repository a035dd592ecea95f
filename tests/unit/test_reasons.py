"""Unit tests for block reason parsing (formguard/events/reasons.py)."""

from __future__ import annotations

import pytest

from formguard.events.reasons import parse_block_reason, split_triggers, trigger_category


class TestParseBlockReason:
    """Score, threshold and trigger extraction from reason text."""

    def test_scored_reason(self) -> None:
        parsed = parse_block_reason(
            "Risk score 95 >= 70. Triggers: JA4 ip_clustering detected, Email pattern suspicious"
        )
        assert parsed.is_scored
        assert parsed.risk_score == 95.0
        assert parsed.threshold == 70
        assert parsed.triggers == ["JA4 ip_clustering detected", "Email pattern suspicious"]

    def test_fractional_score(self) -> None:
        parsed = parse_block_reason("Risk score 72.5 >= 70. Triggers: Bot score low")
        assert parsed.risk_score == 72.5
        assert parsed.triggers == ["Bot score low"]

    def test_plain_reason_has_no_parts(self) -> None:
        parsed = parse_block_reason("Duplicate email address reused")
        assert not parsed.is_scored
        assert parsed.threshold is None
        assert parsed.triggers == []
        assert parsed.full_text == "Duplicate email address reused"

    @pytest.mark.parametrize("text", [None, ""])
    def test_empty(self, text) -> None:
        parsed = parse_block_reason(text)
        assert parsed.full_text == ""
        assert parsed.triggers == []


class TestSplitTriggers:
    """Commas only separate triggers when followed by an uppercase letter."""

    def test_inner_lowercase_commas_kept(self) -> None:
        text = "Velocity high (5 in 10m, 12 in 1h), IP diversity 4"
        assert split_triggers(text) == ["Velocity high (5 in 10m, 12 in 1h)", "IP diversity 4"]

    def test_whitespace_variants(self) -> None:
        assert split_triggers("Email bad,Proxy detected,   Bot score") == [
            "Email bad",
            "Proxy detected",
            "Bot score",
        ]

    def test_single_trigger(self) -> None:
        assert split_triggers("Duplicate email") == ["Duplicate email"]


class TestTriggerCategory:
    @pytest.mark.parametrize(
        "trigger,category",
        [
            ("Email pattern suspicious", "email"),
            ("JA4 ip_clustering detected", "fingerprint"),
            ("Session hopping", "fingerprint"),
            ("Proxy detected", "network"),
            ("Multiple IPs", "network"),
            ("Velocity high", "velocity"),
            ("Validation frequency", "velocity"),
            ("Bot score low", "bot"),
            ("Duplicate submission", "duplicate"),
            ("Something else", "other"),
        ],
    )
    def test_category(self, trigger: str, category: str) -> None:
        assert trigger_category(trigger) == category
