"""Tests for the FormGuard dashboard API endpoints.

    GET  /dashboard/api/status
    GET  /dashboard/api/security-events
    GET  /dashboard/api/security-events/stats
    GET  /dashboard/api/security-events/export
    GET  /dashboard/api/security-events/{event_id}
    POST /dashboard/api/refresh

Also covers / and /health.

TESTING STRATEGY:
    TestClient is used WITHOUT the context manager so the real lifespan (config
    load, record source client, periodic refresh) never runs. app.state is set
    by hand: a real SnapshotStore holding a fixed snapshot, a MagicMock
    refresher and a fixed clock, so every derived time string is deterministic.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from formguard.config import Config
from formguard.events.records import ActiveBlockRecord, DetectionRecord
from formguard.main import create_app
from formguard.sources.snapshot import Snapshot, SnapshotStore

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
REFRESH_ID = "01JNCZ7Q8M5T3V9W2X4Y6Z8A0B"

API = "/dashboard/api"


# ─── Fixtures ─────────────────────────────────────────────────────────────────


def _blocks() -> list[ActiveBlockRecord]:
    return [
        ActiveBlockRecord(
            id=1,
            ephemeral_id="E1",
            ip_address="203.0.113.9",
            block_reason="Risk score 95 >= 70. Triggers: JA4 ip_clustering detected",
            risk_score=95,
            offense_count=2,
            blocked_at=NOW - timedelta(hours=1),
            expires_at=NOW + timedelta(minutes=10),
            erfid="erf-1",
        ),
        ActiveBlockRecord(
            id=2,
            ip_address="10.0.0.5",
            block_reason="Turnstile failed",
            risk_score=75,
            offense_count=1,
            blocked_at=NOW - timedelta(hours=2),
            expires_at=NOW + timedelta(hours=3),
        ),
    ]


def _detections() -> list[DetectionRecord]:
    return [
        # Shadowed by block 1 (same ephemeral id).
        DetectionRecord(id=1, ephemeral_id="E1", block_reason="Token replay", risk_score=90,
                        timestamp=NOW - timedelta(minutes=30), erfid="erf-1"),
        DetectionRecord(id=2, ephemeral_id="E2", block_reason="Duplicate email address",
                        risk_score=60, timestamp=NOW - timedelta(minutes=20)),
        DetectionRecord(id=3, ip_address="10.0.0.9", block_reason="Validation frequency exceeded",
                        risk_score=30, timestamp=NOW - timedelta(days=3)),
        # Outside the default 7-day window.
        DetectionRecord(id=4, ip_address="10.0.0.10", block_reason="Session hopping",
                        risk_score=55, timestamp=NOW - timedelta(days=10)),
    ]


def _configured_client(
    with_snapshot: bool = True,
    last_error: str | None = None,
    refresher: object | None = "mock",
    ready: bool = True,
    config: Config | None = None,
):
    """TestClient with app.state set by hand (lifespan does NOT run)."""
    app = create_app()

    store = SnapshotStore()
    if with_snapshot:
        store.swap(
            Snapshot(
                blocks=tuple(_blocks()),
                detections=tuple(_detections()),
                fetched_at=NOW - timedelta(seconds=42),
                refresh_id=REFRESH_ID,
            )
        )
    if last_error:
        store.record_error(last_error, NOW - timedelta(seconds=5))

    if refresher == "mock":
        refresher = MagicMock()
        refresher.in_flight = False

    app.state.ready = ready
    app.state.config = config or Config.defaults()
    app.state.snapshot_store = store
    app.state.refresher = refresher
    app.state.clock = lambda: NOW

    return TestClient(app, raise_server_exceptions=False)


# ─── Root + health ────────────────────────────────────────────────────────────


class TestRootAndHealth:
    def test_root(self) -> None:
        body = _configured_client().get("/").json()
        assert body["service"] == "FormGuard"
        assert body["dashboard_api"] == "/dashboard/api"

    def test_health_ready(self) -> None:
        resp = _configured_client().get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_health_starting(self) -> None:
        resp = _configured_client(ready=False).get("/health")
        assert resp.status_code == 503
        assert resp.json() == {"status": "starting"}


# ─── GET /status ──────────────────────────────────────────────────────────────


class TestStatus:
    """Status is always 200, even before the first snapshot."""

    def test_with_snapshot(self) -> None:
        body = _configured_client().get(f"{API}/status").json()
        assert body["ready"] is True
        assert body["refreshing"] is False
        assert body["snapshot"] == {
            "refresh_id": REFRESH_ID,
            "fetched_at": (NOW - timedelta(seconds=42)).isoformat(),
            "age_seconds": 42,
            "active_blocks": 2,
            "detections": 4,
            "timeline_events": 5,
        }
        assert body["last_error"] is None

    def test_before_first_snapshot(self) -> None:
        resp = _configured_client(with_snapshot=False, last_error="blacklist unreachable").get(
            f"{API}/status"
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["ready"] is False
        assert body["snapshot"] is None
        assert body["last_error"] == "blacklist unreachable"
        assert body["last_error_at"] == (NOW - timedelta(seconds=5)).isoformat()


# ─── GET /security-events ─────────────────────────────────────────────────────


class TestSecurityEvents:
    """Filtered, paginated timeline."""

    def test_default_window(self) -> None:
        body = _configured_client().get(f"{API}/security-events").json()
        assert [e["id"] for e in body["events"]] == ["detection-2", "block-1", "block-2", "detection-3"]
        assert body["total_count"] == 4
        assert body["overall_count"] == 5
        assert body["page"] == 0
        assert body["page_size"] == 15
        assert body["total_pages"] == 1
        assert body["filters"]["start"] == (NOW - timedelta(days=7)).isoformat()
        assert body["filters"]["end"] == NOW.isoformat()
        assert body["snapshot"]["refresh_id"] == REFRESH_ID

    def test_explicit_range_overrides_default_window(self) -> None:
        body = _configured_client().get(
            f"{API}/security-events", params={"start": "2025-02-01T00:00:00Z"}
        ).json()
        assert body["total_count"] == 5
        assert body["filters"]["end"] is None

    def test_default_window_disabled(self) -> None:
        config = Config.defaults()
        config.engine.default_window_days = 0
        body = _configured_client(config=config).get(f"{API}/security-events").json()
        assert body["total_count"] == 5

    def test_status_filter(self) -> None:
        body = _configured_client().get(f"{API}/security-events", params={"status": "active"}).json()
        assert [e["id"] for e in body["events"]] == ["block-1", "block-2"]

    def test_combined_filters(self) -> None:
        body = _configured_client().get(
            f"{API}/security-events",
            params={"detection_type": "turnstile_failed", "risk_level": "high"},
        ).json()
        assert [e["id"] for e in body["events"]] == ["block-2"]

    def test_event_payload(self) -> None:
        body = _configured_client().get(f"{API}/security-events", params={"status": "active"}).json()
        event = body["events"][0]
        assert event["detection_type"] == "ja4_ip_clustering"
        assert event["detection_type_label"] == "JA4 IP Clustering"
        assert event["risk_level"] == "critical"
        assert event["time_ago"] == "1h ago"
        assert event["urgency"]["label"] == "imminent"
        assert event["progressive_timeout"] == {"current": "4h", "next": "8h"}
        assert event["triggers"][0]["category"] == "fingerprint"

    def test_pagination_clamped(self) -> None:
        body = _configured_client().get(
            f"{API}/security-events", params={"page": 99, "page_size": 1}
        ).json()
        assert body["total_pages"] == 4
        assert body["page"] == 3
        assert [e["id"] for e in body["events"]] == ["detection-3"]

    def test_no_matches_is_one_empty_page(self) -> None:
        body = _configured_client().get(
            f"{API}/security-events", params={"detection_type": "token_replay"}
        ).json()
        assert body["events"] == []
        assert body["total_count"] == 0
        assert body["total_pages"] == 1

    def test_no_snapshot_is_503(self) -> None:
        resp = _configured_client(with_snapshot=False, last_error="timeout").get(f"{API}/security-events")
        assert resp.status_code == 503
        error = resp.json()["error"]
        assert error["status"] == "starting"
        assert error["last_error"] == "timeout"


class TestSecurityEventsValidation:
    """Bad query parameters are 400s, never 500s."""

    def _get(self, **params):
        return _configured_client().get(f"{API}/security-events", params=params)

    def test_unknown_status(self) -> None:
        resp = self._get(status="expired")
        assert resp.status_code == 400
        assert resp.json()["error"]["status"] == "invalid"

    def test_unknown_detection_type(self) -> None:
        assert self._get(detection_type="ja4_fraud").status_code == 400

    def test_bad_timestamp(self) -> None:
        assert self._get(start="yesterday").status_code == 400

    def test_out_of_range_timestamp(self) -> None:
        assert self._get(start="0001-01-01T00:00:00+01:00").status_code == 400

    def test_inverted_range(self) -> None:
        assert self._get(start="2025-03-02T00:00:00Z", end="2025-03-01T00:00:00Z").status_code == 400

    def test_non_integer_page(self) -> None:
        resp = self._get(page="two")
        assert resp.status_code == 400
        assert "page" in resp.json()["error"]["fields"][0]

    def test_negative_page(self) -> None:
        assert self._get(page=-1).status_code == 400

    def test_page_size_bounds(self) -> None:
        assert self._get(page_size=0).status_code == 400
        assert self._get(page_size=101).status_code == 400
        assert self._get(page_size=100).status_code == 200


# ─── GET /security-events/stats ───────────────────────────────────────────────


class TestStats:
    def test_stats_over_default_window(self) -> None:
        body = _configured_client().get(f"{API}/security-events/stats").json()
        stats = body["stats"]
        assert stats["total"] == 4
        assert stats["active_blocks"] == 2
        assert stats["detections"] == 2
        assert stats["risk_breakdown"] == {"critical": 1, "high": 1, "medium": 1, "low": 1}
        assert sum(stats["risk_breakdown"].values()) == stats["total"]
        assert len(body["block_reasons"]) == 4

    def test_stats_respect_filters(self) -> None:
        body = _configured_client().get(
            f"{API}/security-events/stats", params={"status": "detection"}
        ).json()
        assert body["stats"]["total"] == 2
        assert body["filters"]["status"] == "detection"

    def test_stats_invalid_filter(self) -> None:
        resp = _configured_client().get(f"{API}/security-events/stats", params={"risk_level": "severe"})
        assert resp.status_code == 400


# ─── GET /security-events/export ──────────────────────────────────────────────


class TestExport:
    def test_csv_default(self) -> None:
        resp = _configured_client().get(f"{API}/security-events/export")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.headers["content-disposition"] == (
            'attachment; filename="security-events-export-2025-03-01.csv"'
        )
        rows = list(csv.reader(io.StringIO(resp.text)))
        assert rows[0][0] == "id"
        assert [row[0] for row in rows[1:]] == ["detection-2", "block-1", "block-2", "detection-3"]

    def test_json_with_limit(self) -> None:
        resp = _configured_client().get(
            f"{API}/security-events/export", params={"format": "json", "limit": 2}
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/json")
        rows = json.loads(resp.text)
        assert [row["id"] for row in rows] == ["detection-2", "block-1"]

    def test_unknown_format(self) -> None:
        resp = _configured_client().get(f"{API}/security-events/export", params={"format": "xml"})
        assert resp.status_code == 400

    def test_no_snapshot(self) -> None:
        resp = _configured_client(with_snapshot=False).get(f"{API}/security-events/export")
        assert resp.status_code == 503


# ─── GET /security-events/{event_id} ──────────────────────────────────────────


class TestSecurityEventDetail:
    """Single-event lookup for the detail view."""

    def _get(self, event_id: str):
        return _configured_client().get(f"{API}/security-events/{event_id}")

    def test_block_with_correlated_detection(self) -> None:
        resp = self._get("block-1")
        assert resp.status_code == 200
        body = resp.json()
        assert body["event"]["id"] == "block-1"
        assert body["event"]["urgency"]["label"] == "imminent"
        assert body["in_timeline"] is True
        assert body["correlated_detection"]["id"] == "detection-1"
        assert body["correlated_detection"]["erfid"] == "erf-1"
        assert [d["id"] for d in body["shadowed_detections"]] == ["detection-1"]
        assert body["snapshot"]["refresh_id"] == REFRESH_ID

    def test_block_without_erfid(self) -> None:
        body = self._get("block-2").json()
        assert body["correlated_detection"] is None
        assert body["shadowed_detections"] == []

    def test_shadowed_detection_still_reachable(self) -> None:
        body = self._get("detection-1").json()
        assert body["event"]["kind"] == "detection"
        assert body["in_timeline"] is False
        assert body["correlated_detection"] is None

    def test_lookup_ignores_default_window(self) -> None:
        body = self._get("detection-4").json()
        assert body["in_timeline"] is True
        assert body["event"]["detection_type"] == "ja4_session_hopping"

    def test_unknown_id_is_404(self) -> None:
        resp = self._get("block-99")
        assert resp.status_code == 404
        assert resp.json()["error"]["status"] == "not_found"

    def test_stats_route_not_shadowed(self) -> None:
        assert "stats" in _configured_client().get(f"{API}/security-events/stats").json()

    def test_no_snapshot_is_503(self) -> None:
        resp = _configured_client(with_snapshot=False).get(f"{API}/security-events/block-1")
        assert resp.status_code == 503


# ─── POST /refresh ────────────────────────────────────────────────────────────


class TestRefresh:
    def test_refresh_accepted(self) -> None:
        client = _configured_client()
        resp = client.post(f"{API}/refresh")
        assert resp.status_code == 202
        assert resp.json() == {"status": "refreshing"}
        client.app.state.refresher.trigger.assert_called_once_with()

    def test_refresh_without_refresher(self) -> None:
        resp = _configured_client(refresher=None).post(f"{API}/refresh")
        assert resp.status_code == 503

    def test_refreshing_flag_in_status(self) -> None:
        client = _configured_client()
        client.app.state.refresher.in_flight = True
        assert client.get(f"{API}/status").json()["refreshing"] is True
