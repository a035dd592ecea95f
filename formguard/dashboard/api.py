"""Dashboard API endpoints for the security events timeline.

All endpoints are unauthenticated (localhost binding is the security boundary).
Reads the current snapshot through app.state.snapshot_store; refreshes go
through app.state.refresher.

Routes (prefixed with /dashboard/api in main.py):
    GET  /status                     snapshot age, counts, last refresh error
    GET  /security-events            filtered, paginated timeline
    GET  /security-events/stats      aggregate counts over the filtered set
    GET  /security-events/export     CSV / JSON download of the filtered set
    GET  /security-events/{id}       one event plus its correlated detections
    POST /refresh                    manual refresh (supersedes one in flight)

Filter query params (all optional): status, risk_level, detection_type,
start, end (ISO-8601). With neither start nor end given, the window defaults
to the last engine.default_window_days days.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, Response

from formguard.constants import MAX_PAGE_SIZE
from formguard.events.correlate import event_detail
from formguard.events.display import event_to_dict
from formguard.events.export import EXPORT_FORMATS, MEDIA_TYPES, export_events, export_filename
from formguard.events.filters import EventFilters, InvalidFilterError, apply_filters
from formguard.events.models import SecurityEvent
from formguard.events.pagination import ViewState, build_view
from formguard.events.stats import block_reason_breakdown, summarize
from formguard.sources.snapshot import Snapshot, SnapshotStore
from formguard.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["dashboard"])


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _now(request: Request) -> datetime:
    clock = getattr(request.app.state, "clock", None)
    return clock() if clock is not None else datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"status": "invalid", "message": message})


def _require_snapshot(request: Request) -> tuple[Snapshot, list[SecurityEvent]]:
    """Raise HTTP 503 until the first snapshot has been fetched."""
    store: Optional[SnapshotStore] = getattr(request.app.state, "snapshot_store", None)
    if store is None or store.snapshot is None:
        detail = {"status": "starting", "message": "No security events snapshot yet"}
        if store is not None and store.last_error:
            detail["last_error"] = store.last_error
        raise HTTPException(status_code=503, detail=detail)
    return store.snapshot, store.timeline()


def _filters_from_query(
    request: Request,
    status: Optional[str],
    risk_level: Optional[str],
    detection_type: Optional[str],
    start: Optional[str],
    end: Optional[str],
) -> EventFilters:
    try:
        filters = EventFilters.from_dict({
            "status": status,
            "risk_level": risk_level,
            "detection_type": detection_type,
            "start": start,
            "end": end,
        })
    except InvalidFilterError as exc:
        raise _bad_request(str(exc)) from exc

    window_days = request.app.state.config.engine.default_window_days
    if filters.start is None and filters.end is None and window_days > 0:
        now = _now(request)
        filters = EventFilters(
            detection_type=filters.detection_type,
            status=filters.status,
            risk_level=filters.risk_level,
            start=now - timedelta(days=window_days),
            end=now,
        )
    return filters


def _snapshot_summary(snapshot: Snapshot) -> dict:
    return {"refresh_id": snapshot.refresh_id, "fetched_at": snapshot.fetched_at.isoformat()}


# ─── GET /status ──────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status(request: Request) -> dict:
    """Snapshot status for the dashboard header.

    Response:
        ready:         true once a snapshot has been fetched
        refreshing:    a refresh is in flight
        snapshot:      {refresh_id, fetched_at, age_seconds, active_blocks,
                        detections, timeline_events} | null
        last_error:    message of the last failed refresh (cleared on success)
        last_error_at: ISO timestamp | null

    Never 503: this is the endpoint the dashboard polls while starting up.
    """
    store: Optional[SnapshotStore] = getattr(request.app.state, "snapshot_store", None)
    refresher = getattr(request.app.state, "refresher", None)
    snapshot = store.snapshot if store is not None else None

    snapshot_data = None
    if snapshot is not None:
        snapshot_data = {
            **_snapshot_summary(snapshot),
            "age_seconds": int((_now(request) - snapshot.fetched_at).total_seconds()),
            "active_blocks": len(snapshot.blocks),
            "detections": len(snapshot.detections),
            "timeline_events": len(store.timeline()),
        }

    return {
        "ready": snapshot is not None,
        "refreshing": bool(refresher is not None and refresher.in_flight),
        "snapshot": snapshot_data,
        "last_error": store.last_error if store is not None else None,
        "last_error_at": _iso(store.last_error_at) if store is not None else None,
    }


# ─── GET /security-events ─────────────────────────────────────────────────────


@router.get("/security-events")
async def get_security_events(
    request: Request,
    status: Optional[str] = None,
    risk_level: Optional[str] = None,
    detection_type: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    page: int = 0,
    page_size: Optional[int] = None,
) -> dict:
    """Filtered, paginated security events.

    page is zero-based and clamped to the last page of the filtered set.
    page_size defaults to engine.page_size (1 to 100).

    Response:
        events:        list of event objects with derived display fields
        page:          effective zero-based page index
        page_size:     int
        total_pages:   max(1, ceil(total_count / page_size))
        total_count:   events matching the filters
        overall_count: events in the timeline before filtering
        filters:       effective filters (including the default window)
        snapshot:      {refresh_id, fetched_at}
    """
    snapshot, timeline = _require_snapshot(request)
    filters = _filters_from_query(request, status, risk_level, detection_type, start, end)

    size = page_size if page_size is not None else request.app.state.config.engine.page_size
    if not 1 <= size <= MAX_PAGE_SIZE:
        raise _bad_request(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
    if page < 0:
        raise _bad_request("page must be >= 0")

    view = build_view(timeline, ViewState(filters=filters, page_index=page, page_size=size))
    now = _now(request)

    return {
        "events": [event_to_dict(event, now) for event in view.events],
        "page": view.page.page_index,
        "page_size": view.page.page_size,
        "total_pages": view.page.total_pages,
        "total_count": view.total_count,
        "overall_count": view.overall_count,
        "filters": view.state.filters.to_dict(),
        "snapshot": _snapshot_summary(snapshot),
    }


# ─── GET /security-events/stats ───────────────────────────────────────────────


@router.get("/security-events/stats")
async def get_security_event_stats(
    request: Request,
    status: Optional[str] = None,
    risk_level: Optional[str] = None,
    detection_type: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> dict:
    """Stats cards + block reason breakdown over the filtered set.

    risk_breakdown counts always sum to stats.total.
    """
    snapshot, timeline = _require_snapshot(request)
    filters = _filters_from_query(request, status, risk_level, detection_type, start, end)
    filtered = apply_filters(timeline, filters)

    return {
        "stats": summarize(filtered).to_dict(),
        "block_reasons": block_reason_breakdown(filtered),
        "filters": filters.to_dict(),
        "snapshot": _snapshot_summary(snapshot),
    }


# ─── GET /security-events/export ──────────────────────────────────────────────


@router.get("/security-events/export")
async def export_security_events(
    request: Request,
    format: str = "csv",
    limit: Optional[int] = None,
    status: Optional[str] = None,
    risk_level: Optional[str] = None,
    detection_type: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> Response:
    """Download the filtered timeline as an attachment.

    format: 'csv' (default) or 'json'. limit is clamped to [1, 5000]; when
    omitted, engine.export_limit applies.
    """
    fmt = format.strip().lower()
    if fmt not in EXPORT_FORMATS:
        raise _bad_request(f"format must be one of {sorted(EXPORT_FORMATS)}")

    _, timeline = _require_snapshot(request)
    filters = _filters_from_query(request, status, risk_level, detection_type, start, end)
    filtered = apply_filters(timeline, filters)

    effective_limit = limit if limit is not None else request.app.state.config.engine.export_limit
    body = export_events(filtered, fmt, limit=effective_limit)
    filename = export_filename(fmt, _now(request))

    logger.info(
        "Security events exported",
        format=fmt,
        matched=len(filtered),
        limit=effective_limit,
    )
    return Response(
        content=body,
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ─── GET /security-events/{event_id} ──────────────────────────────────────────


@router.get("/security-events/{event_id}")
async def get_security_event(request: Request, event_id: str) -> dict:
    """One event by id (block-<id> / detection-<id>) for the detail view.

    Detections hidden from the timeline by an active block are still found.

    Response:
        event:                event object with derived display fields
        in_timeline:          false for a detection shadowed by an active block
        correlated_detection: newest detection with the block's erfid | null
        shadowed_detections:  detections hidden behind the block, newest first
        snapshot:             {refresh_id, fetched_at}
    """
    snapshot, _ = _require_snapshot(request)
    detail = event_detail(snapshot.blocks, snapshot.detections, event_id)
    if detail is None:
        raise HTTPException(
            status_code=404,
            detail={"status": "not_found", "message": f"Unknown event id: {event_id}"},
        )

    now = _now(request)
    correlated = detail.correlated_detection
    return {
        "event": event_to_dict(detail.event, now),
        "in_timeline": detail.in_timeline,
        "correlated_detection": event_to_dict(correlated, now) if correlated is not None else None,
        "shadowed_detections": [event_to_dict(event, now) for event in detail.shadowed_detections],
        "snapshot": _snapshot_summary(snapshot),
    }


# ─── POST /refresh────────────────────────────────────────────────────────────


@router.post("/refresh", status_code=202)
async def trigger_refresh(request: Request) -> dict:
    """Start a refresh now. Any refresh already in flight is cancelled.

    Returns immediately (202); poll GET /status for the result.
    """
    refresher = getattr(request.app.state, "refresher", None)
    if refresher is None:
        raise HTTPException(
            status_code=503,
            detail={"status": "starting", "message": "Refresher not running"},
        )
    refresher.trigger()
    logger.info("Manual refresh triggered")
    return {"status": "refreshing"}
