"""Async client for the two record-source endpoints.

    GET {base_url}/api/analytics/blacklist                     → active blocks
    GET {base_url}/api/analytics/blocked-validations?limit=N   → recent detections

Both return the envelope ``{"success": true, "data": [...]}``. The API key, if
configured, is sent as ``X-API-KEY``.

Failure handling:
  - httpx.TransportError (connect, timeout, protocol) → RecordSourceError
  - Non-200 status                                   → RecordSourceError
  - Non-JSON body or an envelope without a data list → RecordSourceError
  - Individual bad rows are dropped by the record decoder, not raised.
No retries here: the refresher simply tries again on its next cycle.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx

from formguard.constants import (
    DEFAULT_DETECTION_LIMIT,
    DEFAULT_SOURCE_TIMEOUT_S,
    MAX_DETECTION_LIMIT,
)
from formguard.events.records import (
    ActiveBlockRecord,
    DetectionRecord,
    decode_active_blocks,
    decode_detections,
)
from formguard.utils.logger import get_logger

logger = get_logger(__name__)

BLACKLIST_PATH = "/api/analytics/blacklist"
BLOCKED_VALIDATIONS_PATH = "/api/analytics/blocked-validations"
API_KEY_HEADER = "X-API-KEY"

POOL_MAX_CONNECTIONS: int = 10
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds


class RecordSourceError(Exception):
    """A record source could not be read (network, status or envelope failure)."""

    def __init__(self, message: str, endpoint: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


def create_http_client(timeout_s: float = DEFAULT_SOURCE_TIMEOUT_S) -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient used for every source request.

    Created once at lifespan startup and stored in app.state.http_client.
    """
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_CONNECTIONS,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=False,
    )


def clamp_detection_limit(limit: int) -> int:
    return max(1, min(limit, MAX_DETECTION_LIMIT))


class RecordSourceClient:
    """Reads active blocks and recent detections from the analytics API.

    The http_client is owned by the caller (lifespan), not closed here.
    """

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        detection_limit: int = DEFAULT_DETECTION_LIMIT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http_client
        self._api_key = api_key
        self.detection_limit = clamp_detection_limit(detection_limit)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers[API_KEY_HEADER] = self._api_key
        return headers

    async def _get_rows(self, path: str, params: Optional[dict[str, Any]] = None) -> list[Any]:
        url = f"{self.base_url}{path}"
        try:
            response = await self._http.get(url, params=params, headers=self._headers())
        except httpx.TransportError as exc:
            logger.warning(
                "Record source unavailable",
                endpoint=path,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise RecordSourceError(f"{path} unreachable: {exc}", path) from exc

        if response.status_code != 200:
            logger.warning(
                "Record source returned error status",
                endpoint=path,
                status_code=response.status_code,
            )
            raise RecordSourceError(
                f"{path} returned HTTP {response.status_code}", path, response.status_code
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise RecordSourceError(f"{path} returned a non-JSON body", path, 200) from exc

        if not isinstance(body, dict) or body.get("success") is False:
            raise RecordSourceError(f"{path} reported failure", path, 200)
        rows = body.get("data")
        if not isinstance(rows, list):
            raise RecordSourceError(f"{path} envelope has no data list", path, 200)
        return rows

    async def fetch_active_blocks(self) -> list[ActiveBlockRecord]:
        rows = await self._get_rows(BLACKLIST_PATH)
        records = decode_active_blocks(rows)
        logger.debug("Active blocks fetched", rows=len(rows), decoded=len(records))
        return records

    async def fetch_detections(self, limit: Optional[int] = None) -> list[DetectionRecord]:
        effective = clamp_detection_limit(limit if limit is not None else self.detection_limit)
        rows = await self._get_rows(BLOCKED_VALIDATIONS_PATH, params={"limit": effective})
        records = decode_detections(rows)
        logger.debug("Detections fetched", rows=len(rows), decoded=len(records), limit=effective)
        return records

    async def fetch_snapshot(self) -> tuple[list[ActiveBlockRecord], list[DetectionRecord]]:
        """Fetch both sources concurrently. Fails if either source fails."""
        blocks, detections = await asyncio.gather(
            self.fetch_active_blocks(),
            self.fetch_detections(),
        )
        return blocks, detections
