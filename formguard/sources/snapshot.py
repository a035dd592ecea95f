"""Snapshot store and refresher.

The engine always works over one immutable (blocks, detections) snapshot.
A refresh fetches both sources, then swaps the new snapshot in with a single
assignment; snapshots are never merged incrementally. A failed refresh keeps
the previous snapshot and records the error for the dashboard.

Refreshes run on a timer (run_periodic, started as an asyncio.Task by the
lifespan) or on demand (trigger). A manual trigger cancels the refresh
currently in flight and starts a new one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from formguard.events.correlate import merge
from formguard.events.models import SecurityEvent
from formguard.events.records import ActiveBlockRecord, DetectionRecord
from formguard.sources.client import RecordSourceClient, RecordSourceError
from formguard.utils.logger import PerformanceLogger, bind_refresh_id, clear_refresh_id, get_logger
from formguard.utils.ulid import generate_ulid

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Snapshot:
    blocks: tuple[ActiveBlockRecord, ...]
    detections: tuple[DetectionRecord, ...]
    fetched_at: datetime
    refresh_id: str
    """ULID of the refresh cycle that produced this snapshot."""


class SnapshotStore:
    """Holds the current snapshot and its merged timeline.

    The timeline is built lazily on first read and cached until the next swap.
    """

    def __init__(self) -> None:
        self._snapshot: Optional[Snapshot] = None
        self._timeline: Optional[tuple[str, list[SecurityEvent]]] = None
        self.last_error: Optional[str] = None
        self.last_error_at: Optional[datetime] = None

    @property
    def snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    @property
    def ready(self) -> bool:
        return self._snapshot is not None

    def swap(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot
        self._timeline = None
        self.last_error = None
        self.last_error_at = None

    def record_error(self, error: str, at: datetime) -> None:
        self.last_error = error
        self.last_error_at = at

    def timeline(self) -> list[SecurityEvent]:
        """Merged, deduplicated, sorted events for the current snapshot."""
        snapshot = self._snapshot
        if snapshot is None:
            return []
        cached = self._timeline
        if cached is not None and cached[0] == snapshot.refresh_id:
            return cached[1]

        with PerformanceLogger("Timeline build", logger, refresh_id=snapshot.refresh_id):
            events = merge(snapshot.blocks, snapshot.detections)
        self._timeline = (snapshot.refresh_id, events)
        return events


class Refresher:
    """Fetches snapshots from a RecordSourceClient into a SnapshotStore."""

    def __init__(
        self,
        client: RecordSourceClient,
        store: SnapshotStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._store = store
        self._clock = clock
        self._inflight: Optional[asyncio.Task[Optional[Snapshot]]] = None

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def refresh(self) -> Optional[Snapshot]:
        """Run one refresh cycle. Returns the new snapshot, or None on failure.

        RecordSourceError is recorded in the store, never raised. Cancellation
        propagates and leaves the current snapshot untouched.
        """
        refresh_id = generate_ulid()
        bind_refresh_id(refresh_id)
        try:
            try:
                blocks, detections = await self._client.fetch_snapshot()
            except RecordSourceError as exc:
                self._store.record_error(str(exc), self._clock())
                logger.warning(
                    "Snapshot refresh failed, keeping previous snapshot",
                    endpoint=exc.endpoint,
                    status_code=exc.status_code,
                    error=str(exc),
                )
                return None

            snapshot = Snapshot(
                blocks=tuple(blocks),
                detections=tuple(detections),
                fetched_at=self._clock(),
                refresh_id=refresh_id,
            )
            self._store.swap(snapshot)
            logger.info(
                "Snapshot refreshed",
                active_blocks=len(snapshot.blocks),
                detections=len(snapshot.detections),
            )
            return snapshot
        except asyncio.CancelledError:
            logger.debug("Snapshot refresh cancelled")
            raise
        finally:
            clear_refresh_id()

    def _record_unexpected_failure(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        self._store.record_error(f"{type(exc).__name__}: {exc}", self._clock())
        logger.error(
            "Refresh cycle error (non-fatal)",
            error=str(exc),
            error_type=type(exc).__name__,
        )

    def _launch(self) -> asyncio.Task[Optional[Snapshot]]:
        task = asyncio.create_task(self.refresh())
        task.add_done_callback(self._record_unexpected_failure)
        self._inflight = task
        return task

    def trigger(self) -> asyncio.Task[Optional[Snapshot]]:
        """Start a refresh now, superseding any refresh already in flight."""
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
            logger.info("In-flight refresh superseded by manual trigger")
        return self._launch()

    async def run_periodic(self, interval_s: float) -> None:
        """Refresh every interval_s seconds until cancelled.

        Joins a refresh already in flight instead of starting a second one.
        Designed to run as an asyncio.Task (cancelled on shutdown).
        """
        logger.info("Periodic refresh started", interval_s=interval_s)
        try:
            while True:
                task = self._inflight
                if task is None or task.done():
                    task = self._launch()
                await asyncio.wait({task})
                await asyncio.sleep(interval_s)
        except asyncio.CancelledError:
            logger.debug("Periodic refresh cancelled")
            raise

    async def stop(self) -> None:
        """Cancel the refresh in flight, if any, and wait for it to finish."""
        task = self._inflight
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
