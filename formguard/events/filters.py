"""EventFilters value object and the filter pipeline.

All predicates are independent and AND-composed, so the result does not depend
on the order they are applied in. ``all`` (the default) disables a predicate.

Risk buckets (contiguous and exhaustive over [0, 100]):
    critical  score >= 90
    high      70 <= score < 90
    medium    50 <= score < 70
    low       score < 50
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from formguard.constants import RISK_CRITICAL_MIN, RISK_HIGH_MIN, RISK_MEDIUM_MIN
from formguard.events.models import RISK_LEVELS, DetectionType, RiskLevel, SecurityEvent
from formguard.events.records import parse_timestamp

ALL = "all"

STATUS_VALUES: frozenset[str] = frozenset({ALL, "active", "detection"})
RISK_LEVEL_VALUES: frozenset[str] = frozenset({ALL, *RISK_LEVELS})
DETECTION_TYPE_VALUES: frozenset[str] = frozenset({ALL, *DetectionType.values()})

_STATUS_KIND = {"active": "active_block", "detection": "detection"}


class InvalidFilterError(ValueError):
    """Raised for an unknown filter value or an inverted date range."""


def risk_level_for_score(score: int) -> RiskLevel:
    if score >= RISK_CRITICAL_MIN:
        return "critical"
    if score >= RISK_HIGH_MIN:
        return "high"
    if score >= RISK_MEDIUM_MIN:
        return "medium"
    return "low"


# ─── EventFilters ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EventFilters:
    """Filter criteria for the security events timeline.

    Immutable and serializable (to_dict / from_dict) so it can be carried in a
    query string or a saved view and compared for equality.
    An empty EventFilters() matches every event.
    """

    detection_type: str = ALL
    """A DetectionType value, or 'all'."""
    status: str = ALL
    """'active' (active blocks), 'detection' (historical detections), or 'all'."""
    risk_level: str = ALL
    """'critical', 'high', 'medium', 'low', or 'all'."""
    start: Optional[datetime] = None
    """Include events with timestamp >= start (inclusive)."""
    end: Optional[datetime] = None
    """Include events with timestamp <= end (inclusive)."""

    def __post_init__(self) -> None:
        if isinstance(self.detection_type, DetectionType):
            object.__setattr__(self, "detection_type", self.detection_type.value)
        if self.detection_type not in DETECTION_TYPE_VALUES:
            raise InvalidFilterError(f"unknown detection_type: {self.detection_type!r}")
        if self.status not in STATUS_VALUES:
            raise InvalidFilterError(f"unknown status: {self.status!r}")
        if self.risk_level not in RISK_LEVEL_VALUES:
            raise InvalidFilterError(f"unknown risk_level: {self.risk_level!r}")
        if self.start is not None and self.end is not None and self.start > self.end:
            raise InvalidFilterError("start must not be later than end")

    @property
    def has_active_filters(self) -> bool:
        return (
            self.detection_type != ALL
            or self.status != ALL
            or self.risk_level != ALL
            or self.start is not None
            or self.end is not None
        )

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "EventFilters":
        """Build filters from query-string style values. Blank values mean 'all'.

        Raises:
            InvalidFilterError: unknown value or unparseable start/end.
        """
        return cls(
            detection_type=_choice(raw.get("detection_type")),
            status=_choice(raw.get("status")),
            risk_level=_choice(raw.get("risk_level")),
            start=_bound(raw.get("start"), "start"),
            end=_bound(raw.get("end"), "end"),
        )

    def to_dict(self) -> dict[str, Optional[str]]:
        return {
            "detection_type": self.detection_type,
            "status": self.status,
            "risk_level": self.risk_level,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


def _choice(value: Any) -> str:
    if value is None:
        return ALL
    text = str(value.value if isinstance(value, DetectionType) else value).strip().lower()
    return text or ALL


def _bound(value: Any, name: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        raise InvalidFilterError(f"{name} is not a valid timestamp: {value!r}") from None


# ─── Pipeline ─────────────────────────────────────────────────────────────────


def matches(event: SecurityEvent, filters: EventFilters) -> bool:
    if filters.status != ALL and event.kind != _STATUS_KIND[filters.status]:
        return False
    if filters.detection_type != ALL and event.detection_type.value != filters.detection_type:
        return False
    if filters.risk_level != ALL and risk_level_for_score(event.risk_score) != filters.risk_level:
        return False
    if filters.start is not None and event.timestamp < filters.start:
        return False
    if filters.end is not None and event.timestamp > filters.end:
        return False
    return True


def apply_filters(events: Iterable[SecurityEvent], filters: EventFilters) -> list[SecurityEvent]:
    """Keep the events matching every active predicate, preserving order."""
    return [event for event in events if matches(event, filters)]
