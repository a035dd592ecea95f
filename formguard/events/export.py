"""CSV / JSON export of the filtered security events timeline."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Literal, Optional

from formguard.constants import DEFAULT_EXPORT_LIMIT, MAX_EXPORT_LIMIT, MIN_EXPORT_LIMIT
from formguard.events.filters import risk_level_for_score
from formguard.events.models import SecurityEvent

ExportFormat = Literal["csv", "json"]
EXPORT_FORMATS: frozenset[str] = frozenset({"csv", "json"})

MEDIA_TYPES: dict[str, str] = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
}

# CSV column order. JSON rows use the same keys plus the metadata blobs.
EXPORT_COLUMNS: tuple[str, ...] = (
    "id",
    "kind",
    "timestamp",
    "identifier_kind",
    "identifier",
    "ephemeral_id",
    "ip_address",
    "risk_score",
    "risk_level",
    "detection_type",
    "block_reason",
    "country",
    "city",
    "ja4",
    "erfid",
    "expires_at",
    "offense_count",
    "detection_confidence",
    "submission_count",
    "last_seen_at",
)

_BLOB_COLUMNS: tuple[str, ...] = ("detection_metadata", "ja4_signals", "risk_score_breakdown")


def clamp_export_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_EXPORT_LIMIT
    return max(MIN_EXPORT_LIMIT, min(limit, MAX_EXPORT_LIMIT))


def export_filename(fmt: str, now: datetime) -> str:
    return f"security-events-export-{now.strftime('%Y-%m-%d')}.{fmt}"


def _row(event: SecurityEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "kind": event.kind,
        "timestamp": event.timestamp.isoformat(),
        "identifier_kind": event.identifier_kind,
        "identifier": event.identifier,
        "ephemeral_id": event.ephemeral_id,
        "ip_address": event.ip_address,
        "risk_score": event.risk_score,
        "risk_level": risk_level_for_score(event.risk_score),
        "detection_type": event.detection_type.value,
        "block_reason": event.block_reason,
        "country": event.country,
        "city": event.city,
        "ja4": event.ja4,
        "erfid": event.erfid,
        "expires_at": event.expires_at.isoformat() if event.expires_at else None,
        "offense_count": event.offense_count,
        "detection_confidence": event.detection_confidence,
        "submission_count": event.submission_count,
        "last_seen_at": event.last_seen_at.isoformat() if event.last_seen_at else None,
    }


def export_events(
    events: Sequence[SecurityEvent],
    fmt: str,
    limit: Optional[int] = None,
) -> str:
    """Serialize up to ``limit`` events (clamped to [1, 5000], default 1000).

    Raises:
        ValueError: fmt is not 'csv' or 'json'.
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"unsupported export format: {fmt!r}")
    selected = events[:clamp_export_limit(limit)]

    if fmt == "json":
        rows = []
        for event in selected:
            row = _row(event)
            for key in _BLOB_COLUMNS:
                row[key] = getattr(event, key)
            rows.append(row)
        return json.dumps(rows, indent=2, default=str)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for event in selected:
        row = _row(event)
        writer.writerow(["" if row[col] is None else row[col] for col in EXPORT_COLUMNS])
    return buffer.getvalue()
