"""FastAPI server for the site monitor."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sitemonitor.api.health_routes import health_router
from sitemonitor.config import settings
from sitemonitor.connectors.client import RestTableClient
from sitemonitor.health.audit import AuditLog, RestAuditLog, SQLiteAuditLog
from sitemonitor.health.monitor import SiteMonitor
from sitemonitor.notifications import get_notifier
from sitemonitor.targets.registry import MonitorConfig, TargetRegistry

logger = logging.getLogger(__name__)


def make_audit_log(backend: str, config: MonitorConfig) -> AuditLog | None:
    """Build the configured audit sink (``sqlite`` | ``rest`` | ``none``)."""
    if backend == "sqlite":
        return SQLiteAuditLog(Path(settings.audit_db_path))
    if backend == "rest":
        if not config.service_key:
            logger.warning("No service key — REST audit log disabled")
            return None
        return RestAuditLog(RestTableClient(config.rest_url, config.service_key))
    if backend != "none":
        logger.warning("Unknown audit backend %r — audit log disabled", backend)
    return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize shared resources on startup."""
    # Target registry
    registry = TargetRegistry()
    config = registry.load()
    app.state.registry = registry

    # Monitor pipeline
    app.state.monitor = SiteMonitor(config)
    logger.info(
        "Site monitor ready: %d pages, %d functions, deadline %.0fs",
        len(config.pages), len(config.functions), config.deadline_seconds(),
    )

    # Audit log
    try:
        app.state.audit_log = make_audit_log(settings.audit_backend, config)
    except Exception:
        logger.exception("Audit log failed to initialise — running without audit")
        app.state.audit_log = None

    # Alerts
    app.state.notifier = get_notifier()

    yield

    # Shutdown
    if app.state.audit_log is not None:
        app.state.audit_log.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Site Monitor - Health Checks & Self-Healing",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    app.include_router(health_router, prefix="/api")

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    return app


app = create_app()
