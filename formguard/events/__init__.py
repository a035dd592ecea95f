"""FormGuard security events engine.

Re-exports the public API for ergonomic imports:

    from formguard.events import merge, EventFilters, ViewState, build_view

Layout:
    models.py       SecurityEvent + DetectionType + type aliases
    records.py      ActiveBlockRecord / DetectionRecord + row decoder
    classifier.py   structured tag resolution + legacy reason inference
    normalizer.py   records → SecurityEvent
    correlate.py    dedupe + merge/sort + event_detail lookup
    filters.py      EventFilters + filter pipeline + risk buckets
    pagination.py   paginate + ViewState + build_view
    reasons.py      block reason parser + trigger categories
    display.py      urgency, labels, relative times, event_to_dict
    stats.py        summarize + block_reason_breakdown
    export.py       CSV / JSON export
"""

from formguard.events.classifier import classify, resolve_detection_type
from formguard.events.correlate import EventDetail, dedupe, event_detail, merge, sort_events
from formguard.events.display import Urgency, event_to_dict, urgency
from formguard.events.filters import (
    EventFilters,
    InvalidFilterError,
    apply_filters,
    risk_level_for_score,
)
from formguard.events.models import (
    DetectionType,
    EventKind,
    IdentifierKind,
    RiskLevel,
    SecurityEvent,
)
from formguard.events.normalizer import normalize
from formguard.events.pagination import Page, TimelineView, ViewState, build_view, paginate
from formguard.events.records import (
    ActiveBlockRecord,
    DetectionRecord,
    RecordDecodeError,
    decode_active_blocks,
    decode_detections,
)

__all__ = [
    # Type aliases
    "EventKind",
    "IdentifierKind",
    "RiskLevel",
    # Records + events
    "ActiveBlockRecord",
    "DetectionRecord",
    "DetectionType",
    "SecurityEvent",
    "RecordDecodeError",
    "decode_active_blocks",
    "decode_detections",
    # Pipeline
    "normalize",
    "classify",
    "resolve_detection_type",
    "dedupe",
    "sort_events",
    "merge",
    "EventDetail",
    "event_detail",
    "EventFilters",
    "InvalidFilterError",
    "apply_filters",
    "risk_level_for_score",
    "Page",
    "paginate",
    "ViewState",
    "TimelineView",
    "build_view",
    # Display
    "Urgency",
    "urgency",
    "event_to_dict",
]
