"""SecurityEvent dataclass, the DetectionType taxonomy and type aliases.

Every record pulled from the two record sources (active blocks and blocked
validation detections) is normalized into one SecurityEvent. The source record
shapes live in formguard/events/records.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

# ─── Type Aliases ─────────────────────────────────────────────────────────────

EventKind = Literal["active_block", "detection"]
IdentifierKind = Literal["ephemeral", "ip"]
RiskLevel = Literal["critical", "high", "medium", "low"]

EVENT_KINDS: frozenset[str] = frozenset({"active_block", "detection"})
RISK_LEVELS: tuple[str, ...] = ("critical", "high", "medium", "low")


# ─── DetectionType ────────────────────────────────────────────────────────────


class DetectionType(str, Enum):
    """Closed taxonomy every security event is classified into.

    The values are the structured tags written by the enforcement service.
    Members subclass str so they serialize to JSON as their tag value.
    """

    TOKEN_REPLAY = "token_replay"
    JA4_IP_CLUSTERING = "ja4_ip_clustering"
    JA4_RAPID_GLOBAL = "ja4_rapid_global"
    JA4_EXTENDED_GLOBAL = "ja4_extended_global"
    JA4_SESSION_HOPPING = "ja4_session_hopping"
    EPHEMERAL_ID_FRAUD = "ephemeral_id_fraud"
    IP_DIVERSITY = "ip_diversity"
    VALIDATION_FREQUENCY = "validation_frequency"
    TURNSTILE_FAILED = "turnstile_failed"
    DUPLICATE_EMAIL = "duplicate_email"
    OTHER = "other"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


# ─── SecurityEvent ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SecurityEvent:
    """One row of the security events timeline.

    Built by the normalizer from either an ActiveBlockRecord or a
    DetectionRecord. The id is namespaced by kind ("block-<id>" or
    "detection-<id>") so ids never collide across the two sources.

    Field reference:
        Always present: id, kind, timestamp, identifier_kind, identifier,
                        block_reason, risk_score, detection_type
        Active blocks only: expires_at, offense_count, detection_confidence,
                            submission_count, last_seen_at
        Optional: geo, ja4, erfid and the opaque metadata blobs
    """

    # ── Required fields ───────────────────────────────────────────────────────
    id: str
    """Namespaced stable id: 'block-<source id>' or 'detection-<source id>'."""
    kind: EventKind
    """'active_block' (currently enforced) or 'detection' (historical log entry)."""
    timestamp: datetime
    """Aware UTC datetime: blocked_at for active blocks, the attempt time for detections."""
    identifier_kind: IdentifierKind
    """'ephemeral' iff an ephemeral id is present, else 'ip'."""
    identifier: str
    """The ephemeral id if present, else the IP address. Dedup key."""
    block_reason: str
    """Free-text reason written by the enforcement service."""
    risk_score: int
    """Risk score in [0, 100], carried through from the source record."""
    detection_type: DetectionType
    """Structured tag when the source carried a recognized one, else inferred."""

    # ── Identity ──────────────────────────────────────────────────────────────
    ephemeral_id: Optional[str] = None
    ip_address: Optional[str] = None

    # ── Active block only ─────────────────────────────────────────────────────
    expires_at: Optional[datetime] = None
    """Block expiry. None for detections or when the source value was unparseable."""
    offense_count: Optional[int] = None
    """Number of offenses for this identifier (drives the progressive timeout)."""
    detection_confidence: Optional[str] = None
    submission_count: Optional[int] = None
    last_seen_at: Optional[datetime] = None

    # ── Optional enrichment ───────────────────────────────────────────────────
    country: Optional[str] = None
    city: Optional[str] = None
    ja4: Optional[str] = None
    erfid: Optional[str] = None
    """Request correlation id shared with the validation log."""
    detection_metadata: Any = None
    """Decoded JSON object, or the raw text when it was not valid JSON."""
    ja4_signals: Any = None
    risk_score_breakdown: Any = None

    @property
    def is_active_block(self) -> bool:
        return self.kind == "active_block"
