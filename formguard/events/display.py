"""Derived display values for security events.

Pure functions of an event and an explicit ``now``; nothing here reads the
clock. Urgency tiers for active blocks (time remaining before expiry):

    expired   <= 0s   (still shown; the source stops returning the row)
    imminent  < 15 minutes
    soon      < 1 hour
    normal    otherwise
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal, Optional

from formguard.constants import (
    PROGRESSIVE_TIMEOUTS,
    TRIGGER_DISPLAY_MAX_CHARS,
    URGENCY_IMMINENT_S,
    URGENCY_SOON_S,
)
from formguard.events.filters import risk_level_for_score
from formguard.events.models import DetectionType, SecurityEvent
from formguard.events.reasons import parse_block_reason, trigger_category

UrgencyLabel = Literal["expired", "imminent", "soon", "normal"]

DETECTION_TYPE_LABELS: dict[DetectionType, str] = {
    DetectionType.TOKEN_REPLAY: "Token Replay",
    DetectionType.JA4_IP_CLUSTERING: "JA4 IP Clustering",
    DetectionType.JA4_RAPID_GLOBAL: "JA4 Rapid Global",
    DetectionType.JA4_EXTENDED_GLOBAL: "JA4 Extended Global",
    DetectionType.JA4_SESSION_HOPPING: "JA4 Session Hopping",
    DetectionType.EPHEMERAL_ID_FRAUD: "Ephemeral ID Fraud",
    DetectionType.IP_DIVERSITY: "IP Diversity",
    DetectionType.VALIDATION_FREQUENCY: "Validation Frequency",
    DetectionType.TURNSTILE_FAILED: "Turnstile Failed",
    DetectionType.DUPLICATE_EMAIL: "Duplicate Email",
    DetectionType.OTHER: "Other",
}


@dataclass(frozen=True)
class Urgency:
    label: UrgencyLabel
    relative_time: str
    """'in 45m', 'in 3h 20m', or '5m ago' once expired."""
    seconds_remaining: int


def detection_type_label(detection_type: DetectionType) -> str:
    return DETECTION_TYPE_LABELS[detection_type]


def risk_level_label(score: int) -> str:
    return risk_level_for_score(score).capitalize()


def format_duration(seconds: float) -> str:
    """Compact duration: '45s', '12m', '3h 20m', '2d 4h'."""
    total = int(abs(seconds))
    if total < 60:
        return f"{total}s"
    minutes, _ = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h" if hours else f"{days}d"


def time_ago(ts: datetime, now: datetime) -> str:
    elapsed = (now - ts).total_seconds()
    if elapsed < 60:
        return "just now"
    return f"{format_duration(elapsed)} ago"


def urgency(expires_at: datetime, now: datetime) -> Urgency:
    delta = expires_at - now
    remaining = int(delta.total_seconds())
    if delta <= timedelta(0):
        return Urgency("expired", f"{format_duration(remaining)} ago", remaining)

    relative = f"in {format_duration(remaining)}"
    if remaining < URGENCY_IMMINENT_S:
        label: UrgencyLabel = "imminent"
    elif remaining < URGENCY_SOON_S:
        label = "soon"
    else:
        label = "normal"
    return Urgency(label, relative, remaining)


def progressive_timeout(offense_count: int) -> tuple[str, Optional[str]]:
    """(current, next) block duration on the 1h → 4h → 8h → 12h → 24h ladder.

    next is None once the identifier is on the last rung.
    """
    index = min(max(offense_count, 1), len(PROGRESSIVE_TIMEOUTS)) - 1
    current = PROGRESSIVE_TIMEOUTS[index]
    upcoming = PROGRESSIVE_TIMEOUTS[index + 1] if index + 1 < len(PROGRESSIVE_TIMEOUTS) else None
    return current, upcoming


def truncate_trigger(trigger: str) -> str:
    if len(trigger) > TRIGGER_DISPLAY_MAX_CHARS:
        return trigger[:TRIGGER_DISPLAY_MAX_CHARS] + "..."
    return trigger


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def event_to_dict(event: SecurityEvent, now: datetime) -> dict[str, Any]:
    """JSON-ready event with every derived display string.

    The key set is the same for both kinds; block-only keys are None on
    detections. Metadata blobs are passed through (decoded object or raw text).
    """
    parsed = parse_block_reason(event.block_reason)
    level = risk_level_for_score(event.risk_score)

    payload: dict[str, Any] = {
        "id": event.id,
        "kind": event.kind,
        "timestamp": event.timestamp.isoformat(),
        "time_ago": time_ago(event.timestamp, now),
        "identifier_kind": event.identifier_kind,
        "identifier": event.identifier,
        "ephemeral_id": event.ephemeral_id,
        "ip_address": event.ip_address,
        "status_label": "Blocked" if event.is_active_block else "Blocked (Expired)",
        "risk_score": event.risk_score,
        "risk_level": level,
        "risk_level_label": level.capitalize(),
        "detection_type": event.detection_type.value,
        "detection_type_label": detection_type_label(event.detection_type),
        "block_reason": event.block_reason,
        "reason_threshold": parsed.threshold,
        "triggers": [
            {
                "text": trigger,
                "display_text": truncate_trigger(trigger),
                "category": trigger_category(trigger),
            }
            for trigger in parsed.triggers
        ],
        "country": event.country,
        "city": event.city,
        "ja4": event.ja4,
        "erfid": event.erfid,
        "expires_at": _iso(event.expires_at),
        "urgency": None,
        "offense_count": event.offense_count,
        "progressive_timeout": None,
        "detection_confidence": event.detection_confidence,
        "submission_count": event.submission_count,
        "last_seen_at": _iso(event.last_seen_at),
        "detection_metadata": event.detection_metadata,
        "ja4_signals": event.ja4_signals,
        "risk_score_breakdown": event.risk_score_breakdown,
    }

    if event.is_active_block:
        if event.expires_at is not None:
            u = urgency(event.expires_at, now)
            payload["urgency"] = {
                "label": u.label,
                "relative_time": u.relative_time,
                "seconds_remaining": u.seconds_remaining,
            }
        if event.offense_count is not None:
            current, upcoming = progressive_timeout(event.offense_count)
            payload["progressive_timeout"] = {"current": current, "next": upcoming}

    return payload
