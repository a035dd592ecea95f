"""Detection type resolution.

Primary path: the structured ``detection_type`` tag written by the enforcement
service (current taxonomy values, or one of the older layer-based tags listed
in LEGACY_TAG_ALIASES).

Legacy path: records written before tagging existed, or carrying a tag this
engine does not know, are classified from their free-text block reason by
``classify()``. Rules are ordered most specific first and the first match wins;
"ja4" alone is a catch-all that must not shadow the JA4 sub-types above it.

Two layer-based tags are left out of LEGACY_TAG_ALIASES on purpose and go
through text inference: ``email_fraud_detection`` covers pattern-based email
fraud (random, sequential, dated addresses) that has no member in the current
taxonomy, and ``pre_validation_blacklist`` names where a request was stopped,
not why. The block reason carries the actual cause for both.
"""

from __future__ import annotations

from typing import Callable, Optional

from formguard.events.models import DetectionType
from formguard.utils.logger import get_logger

logger = get_logger(__name__)

# Tags emitted by the layer-based taxonomy that preceded the current one.
LEGACY_TAG_ALIASES: dict[str, DetectionType] = {
    "token_replay_protection": DetectionType.TOKEN_REPLAY,
    "ja4_fingerprinting": DetectionType.JA4_SESSION_HOPPING,
    "ja4_fraud": DetectionType.JA4_SESSION_HOPPING,
    "ephemeral_id_tracking": DetectionType.EPHEMERAL_ID_FRAUD,
    "turnstile_validation": DetectionType.TURNSTILE_FAILED,
}

_TAGS: dict[str, DetectionType] = {member.value: member for member in DetectionType}


def _all(*needles: str) -> Callable[[str], bool]:
    return lambda text: all(n in text for n in needles)


def _any(*needles: str) -> Callable[[str], bool]:
    return lambda text: any(n in text for n in needles)


# Order matters: first match wins.
_RULES: tuple[tuple[Callable[[str], bool], DetectionType], ...] = (
    (_all("token", "replay"), DetectionType.TOKEN_REPLAY),
    (_all("ja4", "ip_clustering"), DetectionType.JA4_IP_CLUSTERING),
    (_all("ja4", "rapid_global"), DetectionType.JA4_RAPID_GLOBAL),
    (_all("ja4", "extended_global"), DetectionType.JA4_EXTENDED_GLOBAL),
    (_any("ja4", "session hopping"), DetectionType.JA4_SESSION_HOPPING),
    (_any("ephemeral", "automated", "multiple submissions"), DetectionType.EPHEMERAL_ID_FRAUD),
    (
        lambda text: "ip" in text and ("diversity" in text or "multiple ip" in text),
        DetectionType.IP_DIVERSITY,
    ),
    (_all("validation", "frequency"), DetectionType.VALIDATION_FREQUENCY),
    (_any("turnstile"), DetectionType.TURNSTILE_FAILED),
    (_all("duplicate", "email"), DetectionType.DUPLICATE_EMAIL),
)


def classify(reason: Optional[str]) -> DetectionType:
    """Infer a DetectionType from free-text block reason (legacy inference).

    Case-insensitive substring matching; returns DetectionType.OTHER when no
    rule matches or the reason is empty.
    """
    text = (reason or "").lower()
    if not text:
        return DetectionType.OTHER
    for matches, detection_type in _RULES:
        if matches(text):
            return detection_type
    return DetectionType.OTHER


def tag_to_detection_type(tag: Optional[str]) -> Optional[DetectionType]:
    """Map a structured tag to the taxonomy, or None if the tag is not recognized."""
    if not tag:
        return None
    key = tag.strip().lower()
    return _TAGS.get(key) or LEGACY_TAG_ALIASES.get(key)


def resolve_detection_type(tag: Optional[str], reason: Optional[str]) -> DetectionType:
    """Structured tag when recognized, else legacy inference from the reason text."""
    resolved = tag_to_detection_type(tag)
    if resolved is not None:
        return resolved

    inferred = classify(reason)
    logger.debug(
        "Detection type inferred from block reason",
        source_tag=tag,
        detection_type=inferred.value,
    )
    return inferred
