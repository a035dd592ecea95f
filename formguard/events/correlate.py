"""Deduplication and merge of the normalized event streams."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

from formguard.events.models import SecurityEvent
from formguard.events.normalizer import normalize
from formguard.events.records import ActiveBlockRecord, DetectionRecord


def dedupe(events: Iterable[SecurityEvent]) -> list[SecurityEvent]:
    """Drop detections whose identifier already has an active block.

    An active block is itself the evidence of a detection, so listing the same
    actor twice would double count. Active blocks are never removed, including
    two concurrent blocks for one identifier. Input order is preserved.
    """
    events = list(events)
    blocked = {event.identifier for event in events if event.kind == "active_block"}
    return [
        event
        for event in events
        if event.kind == "active_block" or event.identifier not in blocked
    ]


def sort_events(events: Iterable[SecurityEvent]) -> list[SecurityEvent]:
    """Newest first; equal timestamps ordered by id ascending."""
    ordered = sorted(events, key=lambda event: event.id)
    ordered.sort(key=lambda event: event.timestamp, reverse=True)
    return ordered


def merge(
    blocks: Iterable[ActiveBlockRecord],
    detections: Iterable[DetectionRecord],
) -> list[SecurityEvent]:
    """Normalize → dedupe → sort. The result is the full timeline for one snapshot."""
    return sort_events(dedupe(normalize(blocks, detections)))


@dataclass(frozen=True)
class EventDetail:
    """One event looked up by id, with the detections correlated to it."""

    event: SecurityEvent
    in_timeline: bool
    """False for a detection hidden by an active block on the same identifier."""
    correlated_detection: Optional[SecurityEvent] = None
    """Newest detection sharing the block's erfid (blocks only)."""
    shadowed_detections: tuple[SecurityEvent, ...] = ()
    """Detections dedupe() hides behind this block, newest first (blocks only)."""


def event_detail(
    blocks: Iterable[ActiveBlockRecord],
    detections: Iterable[DetectionRecord],
    event_id: str,
) -> Optional[EventDetail]:
    """Find an event by id, including detections dedupe() removed from the timeline.

    Returns None when no record in the snapshot has that id.
    """
    events = normalize(blocks, detections)
    event = next((candidate for candidate in events if candidate.id == event_id), None)
    if event is None:
        return None

    if event.kind == "detection":
        blocked = any(
            other.kind == "active_block" and other.identifier == event.identifier
            for other in events
        )
        return EventDetail(event=event, in_timeline=not blocked)

    detection_events = [other for other in events if other.kind == "detection"]
    correlated = None
    if event.erfid:
        matches = sort_events(other for other in detection_events if other.erfid == event.erfid)
        correlated = matches[0] if matches else None
    return EventDetail(
        event=event,
        in_timeline=True,
        correlated_detection=correlated,
        shadowed_detections=tuple(
            sort_events(other for other in detection_events if other.identifier == event.identifier)
        ),
    )
