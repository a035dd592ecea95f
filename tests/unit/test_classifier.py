"""Unit tests for detection type resolution (formguard/events/classifier.py).

Covers:
  - Every legacy inference rule, in precedence order
  - Precedence conflicts: JA4 sub-types vs the "ja4" catch-all, token replay first
  - Case insensitivity, empty / None reasons → OTHER
  - Structured tags: current taxonomy values and legacy aliases win over text
  - Unknown tags fall back to inference from the reason
"""

from __future__ import annotations

import pytest

from formguard.events.classifier import (
    LEGACY_TAG_ALIASES,
    classify,
    resolve_detection_type,
    tag_to_detection_type,
)
from formguard.events.models import DetectionType

# ─── Legacy inference rules ───────────────────────────────────────────────────


class TestClassifyRules:
    """One representative reason per rule."""

    @pytest.mark.parametrize(
        "reason,expected",
        [
            ("Token replay attempt detected", DetectionType.TOKEN_REPLAY),
            ("Triggers: JA4 ip_clustering detected", DetectionType.JA4_IP_CLUSTERING),
            ("ja4 rapid_global burst", DetectionType.JA4_RAPID_GLOBAL),
            ("JA4 extended_global volume", DetectionType.JA4_EXTENDED_GLOBAL),
            ("JA4 fingerprint reuse", DetectionType.JA4_SESSION_HOPPING),
            ("Session hopping across tabs", DetectionType.JA4_SESSION_HOPPING),
            ("Ephemeral ID reused", DetectionType.EPHEMERAL_ID_FRAUD),
            ("Automated submission pattern", DetectionType.EPHEMERAL_ID_FRAUD),
            ("Multiple submissions in 1h", DetectionType.EPHEMERAL_ID_FRAUD),
            ("IP diversity across device", DetectionType.IP_DIVERSITY),
            ("Device seen from multiple IPs", DetectionType.IP_DIVERSITY),
            ("Validation frequency exceeded", DetectionType.VALIDATION_FREQUENCY),
            ("Turnstile challenge failed", DetectionType.TURNSTILE_FAILED),
            ("Duplicate email address reused", DetectionType.DUPLICATE_EMAIL),
            ("Something nobody anticipated", DetectionType.OTHER),
        ],
    )
    def test_rule(self, reason: str, expected: DetectionType) -> None:
        assert classify(reason) is expected

    def test_case_insensitive(self) -> None:
        assert classify("TOKEN REPLAY") is DetectionType.TOKEN_REPLAY
        assert classify("ja4 IP_CLUSTERING") is DetectionType.JA4_IP_CLUSTERING

    @pytest.mark.parametrize("reason", [None, ""])
    def test_empty_reason_is_other(self, reason) -> None:
        assert classify(reason) is DetectionType.OTHER


# ─── Precedence ───────────────────────────────────────────────────────────────


class TestClassifyPrecedence:
    """First matching rule wins; more specific rules sit above the catch-alls."""

    def test_ja4_subtype_beats_catch_all(self) -> None:
        """'ja4' alone would match rule 5; ip_clustering must win."""
        assert classify("JA4 session hopping with ip_clustering") is DetectionType.JA4_IP_CLUSTERING

    def test_token_replay_beats_everything(self) -> None:
        reason = "Token replay from JA4 ip_clustering, duplicate email"
        assert classify(reason) is DetectionType.TOKEN_REPLAY

    def test_token_without_replay_does_not_match_rule_one(self) -> None:
        assert classify("Token expired, Turnstile failed") is DetectionType.TURNSTILE_FAILED

    def test_ephemeral_beats_ip_diversity(self) -> None:
        assert classify("Ephemeral ID seen on multiple IPs") is DetectionType.EPHEMERAL_ID_FRAUD

    def test_ip_requires_diversity_or_multiple_ip(self) -> None:
        """'ip' is a substring of many words; alone it is not enough."""
        assert classify("IP reputation poor") is DetectionType.OTHER

    def test_validation_needs_frequency(self) -> None:
        assert classify("Validation failed") is DetectionType.OTHER

    def test_duplicate_needs_email(self) -> None:
        assert classify("Duplicate phone number") is DetectionType.OTHER

    def test_classification_is_deterministic(self) -> None:
        reason = "Risk score 88 >= 70. Triggers: JA4 rapid_global, Email pattern"
        assert len({classify(reason) for _ in range(20)}) == 1


# ─── Structured tags ──────────────────────────────────────────────────────────


class TestResolveDetectionType:
    """Structured tag first, legacy inference only as fallback."""

    @pytest.mark.parametrize("member", list(DetectionType))
    def test_taxonomy_tag_wins_over_text(self, member: DetectionType) -> None:
        assert resolve_detection_type(member.value, "Duplicate email address") is member

    @pytest.mark.parametrize("tag,expected", sorted(LEGACY_TAG_ALIASES.items()))
    def test_legacy_aliases(self, tag: str, expected: DetectionType) -> None:
        assert resolve_detection_type(tag, "") is expected

    def test_tag_matching_ignores_case_and_whitespace(self) -> None:
        assert tag_to_detection_type("  IP_Diversity ") is DetectionType.IP_DIVERSITY

    def test_unknown_tag_falls_back_to_reason(self) -> None:
        result = resolve_detection_type("email_fraud_detection", "Duplicate email address reused")
        assert result is DetectionType.DUPLICATE_EMAIL

    def test_missing_tag_falls_back_to_reason(self) -> None:
        assert resolve_detection_type(None, "Turnstile failed") is DetectionType.TURNSTILE_FAILED

    @pytest.mark.parametrize("tag", ["email_fraud_detection", "pre_validation_blacklist"])
    def test_cause_free_layer_tags_use_reason(self, tag: str) -> None:
        assert tag not in LEGACY_TAG_ALIASES
        assert tag_to_detection_type(tag) is None
        assert resolve_detection_type(tag, "Token replay attempt") is DetectionType.TOKEN_REPLAY

    def test_unknown_tag_and_unknown_text_is_other(self) -> None:
        assert resolve_detection_type("pre_validation_blacklist", "blocked") is DetectionType.OTHER
