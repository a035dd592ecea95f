"""Normalizer: source records → SecurityEvent."""

from __future__ import annotations

from collections.abc import Iterable

from formguard.events.classifier import resolve_detection_type
from formguard.events.models import SecurityEvent
from formguard.events.records import ActiveBlockRecord, DetectionRecord


def _identity(ephemeral_id, ip_address) -> tuple[str, str]:
    if ephemeral_id:
        return "ephemeral", ephemeral_id
    return "ip", ip_address


def normalize_block(record: ActiveBlockRecord) -> SecurityEvent:
    identifier_kind, identifier = _identity(record.ephemeral_id, record.ip_address)
    return SecurityEvent(
        id=f"block-{record.id}",
        kind="active_block",
        timestamp=record.blocked_at,
        identifier_kind=identifier_kind,
        identifier=identifier,
        block_reason=record.block_reason,
        risk_score=record.risk_score,
        detection_type=resolve_detection_type(record.detection_type, record.block_reason),
        ephemeral_id=record.ephemeral_id,
        ip_address=record.ip_address,
        expires_at=record.expires_at,
        offense_count=record.offense_count,
        detection_confidence=record.detection_confidence,
        submission_count=record.submission_count,
        last_seen_at=record.last_seen_at,
        country=record.country,
        city=record.city,
        ja4=record.ja4,
        erfid=record.erfid,
        detection_metadata=record.detection_metadata,
        ja4_signals=record.ja4_signals,
    )


def normalize_detection(record: DetectionRecord) -> SecurityEvent:
    identifier_kind, identifier = _identity(record.ephemeral_id, record.ip_address)
    return SecurityEvent(
        id=f"detection-{record.id}",
        kind="detection",
        timestamp=record.timestamp,
        identifier_kind=identifier_kind,
        identifier=identifier,
        block_reason=record.block_reason,
        risk_score=record.risk_score,
        detection_type=resolve_detection_type(record.detection_type, record.block_reason),
        ephemeral_id=record.ephemeral_id,
        ip_address=record.ip_address,
        country=record.country,
        city=record.city,
        ja4=record.ja4,
        erfid=record.erfid,
        risk_score_breakdown=record.risk_score_breakdown,
    )


def normalize(
    blocks: Iterable[ActiveBlockRecord],
    detections: Iterable[DetectionRecord],
) -> list[SecurityEvent]:
    """One event per record: all active blocks first, then all detections.

    Pure; never fails on decoded records.
    """
    events = [normalize_block(block) for block in blocks]
    events.extend(normalize_detection(detection) for detection in detections)
    return events
