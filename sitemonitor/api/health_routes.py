"""API routes for the site monitor.

Endpoints:
  GET  /api/site-monitor            — run one invocation (``?self_healing=false`` to disable healing)
  POST /api/site-monitor            — same; also accepts ``{"self_healing": false}``
  GET  /api/health/latest           — latest stored batch (dashboard feed)
  GET  /api/health/history/{check_type}/{check_name} — time series + 24h uptime
  GET  /api/health/remediations     — recent remediation records
  GET  /api/targets                 — configured targets + remediation policy
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Request
from pydantic import BaseModel

from sitemonitor.config import settings
from sitemonitor.health.audit import SQLiteAuditLog, persist_report

logger = logging.getLogger(__name__)

health_router = APIRouter()


class MonitorRequest(BaseModel):
    self_healing: bool | None = None


async def _run_monitor(
    request: Request, background: BackgroundTasks, self_healing: bool | None,
) -> dict[str, Any]:
    """Run the pipeline; audit write + alerting happen after the response."""
    monitor = request.app.state.monitor
    heal = settings.self_healing_default if self_healing is None else self_healing

    report = await monitor.run(self_healing=heal)

    audit = getattr(request.app.state, "audit_log", None)
    if audit is not None:
        background.add_task(persist_report, audit, report)
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is not None and notifier.is_enabled:
        background.add_task(notifier.notify_report, report)

    return report.to_dict()


# ── Invocation ───────────────────────────────────────────────────────────────


@health_router.get("/site-monitor")
async def run_site_monitor(
    request: Request, background: BackgroundTasks, self_healing: bool | None = None,
) -> dict[str, Any]:
    """Run all probes, self-heal, and return the health report."""
    return await _run_monitor(request, background, self_healing)


@health_router.post("/site-monitor")
async def trigger_site_monitor(
    request: Request,
    background: BackgroundTasks,
    self_healing: bool | None = None,
    body: MonitorRequest | None = None,
) -> dict[str, Any]:
    """POST variant for schedulers; the body flag wins over the query flag."""
    if body is not None and body.self_healing is not None:
        self_healing = body.self_healing
    return await _run_monitor(request, background, self_healing)


# ── Dashboard feed ───────────────────────────────────────────────────────────


def _sqlite_audit(request: Request) -> SQLiteAuditLog | None:
    audit = getattr(request.app.state, "audit_log", None)
    return audit if isinstance(audit, SQLiteAuditLog) else None


@health_router.get("/health/latest")
def latest_batch(request: Request) -> dict[str, Any]:
    """Checks from the most recent stored batch."""
    audit = _sqlite_audit(request)
    checks = audit.get_latest_batch() if audit else []
    return {
        "checked_at": checks[0]["checked_at"] if checks else None,
        "checks": checks,
    }


@health_router.get("/health/history/{check_type}/{check_name}")
def check_history(
    check_type: str, check_name: str, request: Request, limit: int = 100,
) -> dict[str, Any]:
    """Time-series history for a specific check."""
    audit = _sqlite_audit(request)
    return {
        "check_type": check_type,
        "check_name": check_name,
        "uptime_24h": audit.get_uptime_24h(check_type, check_name) if audit else None,
        "history": audit.get_history(check_type, check_name, limit) if audit else [],
    }


@health_router.get("/health/remediations")
def list_remediations(request: Request, limit: int = 50) -> dict[str, Any]:
    audit = _sqlite_audit(request)
    return {"remediations": audit.get_remediations(limit) if audit else []}


@health_router.get("/targets")
def list_targets(request: Request) -> dict[str, Any]:
    """Configured targets and remediation policy (hook URLs redacted)."""
    return request.app.state.registry.to_dict()
