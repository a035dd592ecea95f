"""Source record dataclasses and the row decoder for both record sources.

Rows arrive as JSON objects from:
    GET /api/analytics/blacklist              → ActiveBlockRecord
    GET /api/analytics/blocked-validations    → DetectionRecord

Decoding policy for malformed rows:
  - No id, no identifier (neither ephemeral_id nor ip_address), or an
    unparseable primary timestamp → RecordDecodeError; decode_* drops the row
    with a warning.
  - Unparseable expires_at / last_seen_at → None.
  - Missing risk_score → confidence fallback (blocks) or 0 (detections).
    Out-of-range scores (infinities included) are clamped to [0, 100] with a
    warning. NaN is not a number and drops the row.
  - JSON blobs that fail to decode are kept as the raw string.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from formguard.constants import (
    CONFIDENCE_RISK_SCORE_DEFAULT,
    CONFIDENCE_RISK_SCORES,
    RISK_SCORE_MAX,
    RISK_SCORE_MIN,
)
from formguard.utils.logger import get_logger

logger = get_logger(__name__)

RecordId = Union[int, str]


class RecordDecodeError(ValueError):
    """Raised when a source row cannot be turned into a record."""

    def __init__(self, message: str, record_id: Optional[RecordId] = None) -> None:
        super().__init__(message)
        self.record_id = record_id


# ─── Field helpers ────────────────────────────────────────────────────────────


def parse_timestamp(value: Any) -> datetime:
    """Parse a source timestamp into an aware UTC datetime.

    Accepts datetime objects (naive values are taken as UTC), ISO-8601 strings
    with a 'Z' suffix or an explicit offset, and the database's
    'YYYY-MM-DD HH:MM:SS' format (UTC).

    Raises:
        ValueError: value is missing or not a recognizable timestamp.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"not a timestamp: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        raise ValueError(f"timestamp out of range: {value!r}") from None


def decode_blob(value: Any) -> Any:
    """Decode a JSON metadata column. Undecodable text is returned unchanged."""
    if value is None or isinstance(value, (dict, list)):
        return value
    if not isinstance(value, str):
        return value
    if not value.strip():
        return None
    try:
        decoded = json.loads(value)
    except ValueError:
        return value
    return decoded if isinstance(decoded, (dict, list)) else value


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _optional_timestamp(value: Any, record_id: RecordId, field_name: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        logger.warning(
            "Unparseable optional timestamp ignored",
            record_id=record_id,
            field=field_name,
            value=str(value),
        )
        return None


def _risk_score(value: Any, record_id: RecordId, fallback: int) -> int:
    if value is None or value == "":
        return fallback
    if isinstance(value, bool):
        raise RecordDecodeError(f"risk_score is not a number: {value!r}", record_id)
    try:
        number = float(value)
    except OverflowError:
        # int too large for a float
        number = math.inf if value > 0 else -math.inf
    except (TypeError, ValueError):
        raise RecordDecodeError(f"risk_score is not a number: {value!r}", record_id) from None
    if math.isnan(number):
        raise RecordDecodeError(f"risk_score is not a number: {value!r}", record_id)

    score = number if math.isinf(number) else int(round(number))
    clamped = max(RISK_SCORE_MIN, min(score, RISK_SCORE_MAX))
    if clamped != score:
        logger.warning(
            "Risk score out of range, clamped",
            record_id=record_id,
            risk_score=score,
            clamped_to=clamped,
        )
    return clamped


def _require_identity(row: Mapping[str, Any]) -> tuple[RecordId, Optional[str], Optional[str]]:
    record_id = row.get("id")
    if record_id is None or isinstance(record_id, bool):
        raise RecordDecodeError("row has no id")
    ephemeral_id = _text(row.get("ephemeral_id"))
    ip_address = _text(row.get("ip_address"))
    if ephemeral_id is None and ip_address is None:
        raise RecordDecodeError("row has neither ephemeral_id nor ip_address", record_id)
    return record_id, ephemeral_id, ip_address


def _require_timestamp(row: Mapping[str, Any], key: str, record_id: RecordId) -> datetime:
    try:
        return parse_timestamp(row.get(key))
    except ValueError:
        raise RecordDecodeError(f"unparseable {key}: {row.get(key)!r}", record_id) from None


def confidence_risk_score(confidence: Optional[str]) -> int:
    """Fallback score for blocks written before risk_score was persisted."""
    return CONFIDENCE_RISK_SCORES.get((confidence or "").lower(), CONFIDENCE_RISK_SCORE_DEFAULT)


# ─── ActiveBlockRecord ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ActiveBlockRecord:
    """A currently enforced, time-bounded block (one blacklist row)."""

    id: RecordId
    block_reason: str
    risk_score: int
    offense_count: int
    blocked_at: datetime
    expires_at: Optional[datetime] = None
    ephemeral_id: Optional[str] = None
    ip_address: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    ja4: Optional[str] = None
    erfid: Optional[str] = None
    detection_type: Optional[str] = None
    """Structured tag as written upstream (may be a legacy alias or absent)."""
    detection_confidence: Optional[str] = None
    submission_count: Optional[int] = None
    last_seen_at: Optional[datetime] = None
    detection_metadata: Any = None
    ja4_signals: Any = None

    @classmethod
    def from_row(cls, row: Any) -> "ActiveBlockRecord":
        """Decode one /api/analytics/blacklist row.

        Raises:
            RecordDecodeError: row is not a mapping, or has no id, no identifier,
                               an unparseable blocked_at or a non-numeric risk_score.
        """
        if not isinstance(row, Mapping):
            raise RecordDecodeError(f"row is not an object: {type(row).__name__}")
        record_id, ephemeral_id, ip_address = _require_identity(row)
        confidence = _text(row.get("detection_confidence"))

        offense_count = _optional_int(row.get("offense_count"))
        return cls(
            id=record_id,
            block_reason=_text(row.get("block_reason")) or "",
            risk_score=_risk_score(
                row.get("risk_score"), record_id, confidence_risk_score(confidence)
            ),
            offense_count=max(1, offense_count or 1),
            blocked_at=_require_timestamp(row, "blocked_at", record_id),
            expires_at=_optional_timestamp(row.get("expires_at"), record_id, "expires_at"),
            ephemeral_id=ephemeral_id,
            ip_address=ip_address,
            country=_text(row.get("country")),
            city=_text(row.get("city")),
            ja4=_text(row.get("ja4")),
            erfid=_text(row.get("erfid")),
            detection_type=_text(row.get("detection_type")),
            detection_confidence=confidence,
            submission_count=_optional_int(row.get("submission_count")),
            last_seen_at=_optional_timestamp(row.get("last_seen_at"), record_id, "last_seen_at"),
            detection_metadata=decode_blob(row.get("detection_metadata")),
            ja4_signals=decode_blob(row.get("ja4_signals")),
        )


# ─── DetectionRecord ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DetectionRecord:
    """A historical blocked validation attempt (append-only log entry)."""

    id: RecordId
    block_reason: str
    risk_score: int
    timestamp: datetime
    ephemeral_id: Optional[str] = None
    ip_address: Optional[str] = None
    detection_type: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    ja4: Optional[str] = None
    erfid: Optional[str] = None
    risk_score_breakdown: Any = None

    @classmethod
    def from_row(cls, row: Any) -> "DetectionRecord":
        """Decode one /api/analytics/blocked-validations row.

        The attempt time is served as ``challenge_ts``; ``timestamp`` is
        accepted as well.

        Raises:
            RecordDecodeError: row is not a mapping, or has no id, no identifier,
                               an unparseable timestamp or a non-numeric risk_score.
        """
        if not isinstance(row, Mapping):
            raise RecordDecodeError(f"row is not an object: {type(row).__name__}")
        record_id, ephemeral_id, ip_address = _require_identity(row)
        ts_key = "challenge_ts" if row.get("challenge_ts") is not None else "timestamp"

        return cls(
            id=record_id,
            block_reason=_text(row.get("block_reason")) or "",
            risk_score=_risk_score(row.get("risk_score"), record_id, 0),
            timestamp=_require_timestamp(row, ts_key, record_id),
            ephemeral_id=ephemeral_id,
            ip_address=ip_address,
            detection_type=_text(row.get("detection_type")),
            country=_text(row.get("country")),
            city=_text(row.get("city")),
            ja4=_text(row.get("ja4")),
            erfid=_text(row.get("erfid")),
            risk_score_breakdown=decode_blob(row.get("risk_score_breakdown")),
        )


# ─── Batch decoding ───────────────────────────────────────────────────────────


def decode_active_blocks(rows: Iterable[Any]) -> list[ActiveBlockRecord]:
    """Decode blacklist rows, dropping (and logging) any that fail to decode."""
    records: list[ActiveBlockRecord] = []
    for row in rows:
        try:
            records.append(ActiveBlockRecord.from_row(row))
        except RecordDecodeError as exc:
            logger.warning(
                "Dropping undecodable active block row",
                record_id=exc.record_id,
                reason=str(exc),
            )
    return records


def decode_detections(rows: Iterable[Any]) -> list[DetectionRecord]:
    """Decode blocked-validation rows, dropping (and logging) any that fail to decode."""
    records: list[DetectionRecord] = []
    for row in rows:
        try:
            records.append(DetectionRecord.from_row(row))
        except RecordDecodeError as exc:
            logger.warning(
                "Dropping undecodable detection row",
                record_id=exc.record_id,
                reason=str(exc),
            )
    return records
