"""Aggregate counts over a (filtered) event list for the stats cards."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from formguard.events.filters import risk_level_for_score
from formguard.events.models import RISK_LEVELS, DetectionType, SecurityEvent


@dataclass(frozen=True)
class EventStats:
    total: int = 0
    active_blocks: int = 0
    detections: int = 0
    unique_ephemeral_ids: int = 0
    unique_ips: int = 0
    avg_risk_score: float = 0.0
    risk_breakdown: dict[str, int] = field(default_factory=lambda: dict.fromkeys(RISK_LEVELS, 0))
    """Counts per risk level; always sums to total."""
    detection_types: dict[str, int] = field(default_factory=dict)
    """Counts per DetectionType value, only for types that occur."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "active_blocks": self.active_blocks,
            "detections": self.detections,
            "unique_ephemeral_ids": self.unique_ephemeral_ids,
            "unique_ips": self.unique_ips,
            "avg_risk_score": self.avg_risk_score,
            "risk_breakdown": dict(self.risk_breakdown),
            "detection_types": dict(self.detection_types),
        }


def summarize(events: Iterable[SecurityEvent]) -> EventStats:
    events = list(events)
    if not events:
        return EventStats()

    breakdown = dict.fromkeys(RISK_LEVELS, 0)
    for event in events:
        breakdown[risk_level_for_score(event.risk_score)] += 1

    type_counts = Counter(event.detection_type for event in events)
    active = sum(1 for event in events if event.is_active_block)

    return EventStats(
        total=len(events),
        active_blocks=active,
        detections=len(events) - active,
        unique_ephemeral_ids=len({e.ephemeral_id for e in events if e.ephemeral_id}),
        unique_ips=len({e.ip_address for e in events if e.ip_address}),
        avg_risk_score=round(sum(e.risk_score for e in events) / len(events), 1),
        risk_breakdown=breakdown,
        detection_types={t.value: type_counts[t] for t in DetectionType if type_counts[t]},
    )


def block_reason_breakdown(events: Iterable[SecurityEvent]) -> list[dict[str, Any]]:
    """Per block reason: count, distinct ephemeral ids and IPs, average score.

    Ordered by count descending, then reason ascending. Events with an empty
    reason are grouped under "".
    """
    groups: dict[str, list[SecurityEvent]] = {}
    for event in events:
        groups.setdefault(event.block_reason, []).append(event)

    rows = [
        {
            "block_reason": reason,
            "count": len(members),
            "unique_ephemeral_ids": len({e.ephemeral_id for e in members if e.ephemeral_id}),
            "unique_ips": len({e.ip_address for e in members if e.ip_address}),
            "avg_risk_score": round(sum(e.risk_score for e in members) / len(members), 1),
        }
        for reason, members in groups.items()
    ]
    rows.sort(key=lambda row: (-row["count"], row["block_reason"]))
    return rows
