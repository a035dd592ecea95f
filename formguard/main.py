"""FormGuard FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app(): testable application factory
  - lifespan: @asynccontextmanager startup/shutdown sequence
  - /, /health: service discovery and liveness
  - app = create_app(): module-level instance for uvicorn

Startup sequence:
  1. load_config()            → app.state.config
  2. create_http_client()     → app.state.http_client
  3. RecordSourceClient       → bound to source.base_url and the API key env var
  4. SnapshotStore/Refresher  → app.state.snapshot_store, app.state.refresher
  5. Periodic refresh task    → first fetch starts immediately
  6. app.state.ready = True

Shutdown sequence (reverse):
  app.state.ready = False → cancel periodic refresh → stop in-flight refresh →
  close HTTP client
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from formguard import __version__
from formguard.config import Config, load_config
from formguard.dashboard.api import router as dashboard_router
from formguard.events.filters import InvalidFilterError
from formguard.sources.client import RecordSourceClient, create_http_client
from formguard.sources.snapshot import Refresher, SnapshotStore
from formguard.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
# Configure logging at module import time (before any other imports that may log).
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Root Endpoints ───────────────────────────────────────────────────────────

root_router = APIRouter(tags=["root"])


@root_router.get("/")
async def root() -> dict[str, str]:
    """Root endpoint: service identity / discovery."""
    return {
        "service": "FormGuard",
        "version": __version__,
        "health": "/health",
        "dashboard_api": "/dashboard/api",
    }


@root_router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Liveness: 200 once startup has completed, 503 before."""
    ready = bool(getattr(request.app.state, "ready", False))
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ok" if ready else "starting"},
    )


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown sequence."""
    logger.info("FormGuard starting up...")

    # ── Step 1: Load configuration ────────────────────────────────────────────
    # load_config() raises SystemExit on parse error or missing version field,
    # so the process exits non-zero before ready=True is ever set.
    config: Config = load_config()
    app.state.config = config

    # ── Step 2: Shared HTTP client for the record sources ────────────────────
    http_client: httpx.AsyncClient = create_http_client(config.source.timeout_s)
    app.state.http_client = http_client

    # ── Step 3: Record source client ──────────────────────────────────────────
    api_key = config.source.api_key
    if api_key is None:
        logger.warning(
            "Record source API key not set; requests are sent without X-API-KEY",
            api_key_env=config.source.api_key_env,
        )
    source_client = RecordSourceClient(
        base_url=config.source.base_url,
        http_client=http_client,
        api_key=api_key,
        detection_limit=config.source.detection_limit,
    )

    # ── Step 4: Snapshot store + refresher ────────────────────────────────────
    store = SnapshotStore()
    refresher = Refresher(source_client, store)
    app.state.snapshot_store = store
    app.state.refresher = refresher

    # ── Step 5: Refresh loop ──────────────────────────────────────────────────
    # Non-blocking: the first fetch runs in the background; dashboard endpoints
    # return 503 until it lands.
    refresh_task: asyncio.Task[None] | None = None
    if config.refresh.enabled:
        refresh_task = asyncio.create_task(refresher.run_periodic(config.refresh.interval_s))
    else:
        refresher.trigger()
        logger.info("Periodic refresh disabled; fetched once at startup")

    # ── Step 6: Mark as ready ─────────────────────────────────────────────────
    app.state.ready = True
    logger.info(
        "FormGuard ready",
        source_base_url=config.source.base_url,
        refresh_interval_s=config.refresh.interval_s if config.refresh.enabled else None,
    )

    yield

    # ── Shutdown (reverse order) ──────────────────────────────────────────────
    logger.info("FormGuard shutting down...")
    app.state.ready = False

    if refresh_task is not None and not refresh_task.done():
        refresh_task.cancel()
        try:
            await refresh_task
        except asyncio.CancelledError:
            pass

    await refresher.stop()

    try:
        await http_client.aclose()
        logger.info("HTTP client closed")
    except Exception as exc:
        logger.warning("HTTP client close error (non-fatal)", error=str(exc))

    logger.info("FormGuard shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the FormGuard FastAPI application.

    Call this function directly in unit tests to get an isolated app instance:
        app = create_app()

    The module-level `app` is created at import time for uvicorn:
        uvicorn formguard.main:app --host 127.0.0.1 --port 8788
    """
    # Swagger UI and ReDoc only with DEBUG=true.
    _debug = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="FormGuard Security Events",
        description="Correlated timeline of active blocks and blocked validation attempts",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if _debug else None,
        redoc_url="/redoc" if _debug else None,
        openapi_url="/openapi.json" if _debug else None,
    )

    # Initialize ready flag before lifespan
    application.state.ready = False

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:8788",
            "http://127.0.0.1:8788",
            "http://localhost:3000",   # Dev dashboard (if served separately)
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    application.include_router(root_router)
    application.include_router(dashboard_router, prefix="/dashboard/api")

    # Global exception handlers
    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        logger.warning("Invalid request parameters", fields=fields, path=str(request.url.path))
        return JSONResponse(
            status_code=400,
            content={"error": {"status": "invalid", "message": "Invalid query parameters", "fields": fields}},
        )

    @application.exception_handler(InvalidFilterError)
    async def invalid_filter_handler(
        request: Request, exc: InvalidFilterError
    ) -> JSONResponse:
        logger.warning("Invalid filter", error=str(exc), path=str(request.url.path))
        return JSONResponse(
            status_code=400,
            content={"error": {"status": "invalid", "message": str(exc)}},
        )

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
