"""Probe executors — one bounded check per external target.

Supports: page reachability, function liveness (CORS preflight), database
connectivity / freshness / volume, transport-security header heuristic.

Every probe returns a HealthCheck and never raises: transport errors, DNS
failures and timeouts become ``status=fail`` with the error captured in
``details.error`` and its taxonomy name in ``details.error_kind``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from sitemonitor.connectors.client import RestTableClient, UpstreamError, UpstreamUnavailableError
from sitemonitor.health.errors import (
    MonitorError,
    ProbeLogicalFailure,
    ProbeTimeout,
    ProbeTransportError,
)
from sitemonitor.health.models import CheckStatus, CheckType, HealthCheck
from sitemonitor.targets.registry import MonitorConfig

logger = logging.getLogger(__name__)

USER_AGENT = "SiteMonitor/1.0"


def _elapsed_ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 1)


def _classify_exception(exc: BaseException) -> MonitorError:
    """Map a library exception onto the probe error taxonomy."""
    if isinstance(exc, MonitorError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return ProbeTimeout(str(exc) or "request timed out")
    if isinstance(exc, UpstreamUnavailableError):
        if exc.timed_out:
            return ProbeTimeout(str(exc))
        return ProbeTransportError(str(exc))
    if isinstance(exc, UpstreamError):
        return ProbeLogicalFailure(str(exc))
    return ProbeTransportError(f"{type(exc).__name__}: {exc}")


def failed_check(
    check_type: CheckType,
    check_name: str,
    exc: BaseException,
    response_time_ms: float = 0.0,
    **details: Any,
) -> HealthCheck:
    """Build the ``fail`` HealthCheck for an exception raised while probing."""
    err = _classify_exception(exc)
    logger.debug("Probe %s/%s failed: %s: %s", check_type.value, check_name, err.kind, err)
    return HealthCheck(
        check_type=check_type,
        check_name=check_name,
        status=CheckStatus.FAIL,
        response_time_ms=response_time_ms,
        details={**details, "error": str(err), "error_kind": err.kind},
    )


# ── Probe runners ────────────────────────────────────────────────────────────


def run_page_probe(url: str, name: str, timeout_s: float = 10.0) -> HealthCheck:
    """GET a page, following redirects.

    2xx → pass, other <500 → warn (configuration, not outage), ≥500 → fail.
    """
    t0 = time.perf_counter()
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=True) as client:
            resp = client.get(url, headers={"User-Agent": USER_AGENT})
        latency = _elapsed_ms(t0)

        if resp.is_success:
            status = CheckStatus.PASS
        elif resp.status_code < 500:
            status = CheckStatus.WARN
        else:
            status = CheckStatus.FAIL

        return HealthCheck(
            check_type=CheckType.PAGE, check_name=name,
            status=status, response_time_ms=latency,
            details={
                "url": url,
                "http_status": resp.status_code,
                "content_type": resp.headers.get("content-type"),
                "has_hsts": bool(resp.headers.get("strict-transport-security")),
            },
        )
    except Exception as e:
        return failed_check(CheckType.PAGE, name, e, _elapsed_ms(t0), url=url)


def run_function_probe(
    functions_url: str,
    name: str,
    expected_origin: str,
    timeout_s: float = 10.0,
) -> HealthCheck:
    """Liveness via CORS preflight — the lightest request, no execution.

    Passes only when the preflight succeeds *and* the allow-origin header
    echoes ``expected_origin``. Anything else reachable is ``warn``.
    """
    t0 = time.perf_counter()
    url = f"{functions_url.rstrip('/')}/{name}"
    try:
        with httpx.Client(timeout=timeout_s) as client:
            resp = client.request(
                "OPTIONS", url,
                headers={
                    "Origin": expected_origin,
                    "Access-Control-Request-Method": "POST",
                    "User-Agent": USER_AGENT,
                },
            )
        latency = _elapsed_ms(t0)

        cors_origin = resp.headers.get("access-control-allow-origin")
        cors_ok = cors_origin == expected_origin
        details: dict[str, Any] = {
            "http_status": resp.status_code,
            "cors_origin": cors_origin,
            "cors_valid": cors_ok,
        }
        if resp.is_success and cors_ok:
            status = CheckStatus.PASS
        else:
            status = CheckStatus.WARN
            details["error_kind"] = ProbeLogicalFailure.__name__

        return HealthCheck(
            check_type=CheckType.FUNCTION, check_name=name,
            status=status, response_time_ms=latency, details=details,
        )
    except Exception as e:
        return failed_check(CheckType.FUNCTION, name, e, _elapsed_ms(t0))


def run_db_connectivity_probe(
    db: RestTableClient, table: str, timeout_s: float = 10.0,
) -> HealthCheck:
    """Trivial bounded read; any error is a failure."""
    t0 = time.perf_counter()
    try:
        db.select(table, columns="id", limit=1, timeout=timeout_s)
        return HealthCheck(
            check_type=CheckType.DATABASE, check_name="connectivity",
            status=CheckStatus.PASS, response_time_ms=_elapsed_ms(t0),
            details={"table": table},
        )
    except UpstreamError as e:
        return failed_check(
            CheckType.DATABASE, "connectivity", e, _elapsed_ms(t0),
            table=table, http_status=e.status_code,
        )
    except Exception as e:
        return failed_check(CheckType.DATABASE, "connectivity", e, _elapsed_ms(t0), table=table)


def run_db_freshness_probe(
    db: RestTableClient,
    table: str,
    column: str = "created_at",
    window_hours: int = 24,
    timeout_s: float = 10.0,
    now: datetime | None = None,
) -> HealthCheck:
    """At least one record created inside the rolling window, else warn."""
    name = f"data_freshness_{window_hours}h"
    t0 = time.perf_counter()
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=window_hours)
    try:
        rows = db.select(
            table, columns="id",
            filters={column: f"gte.{cutoff.isoformat()}"},
            limit=1, timeout=timeout_s,
        )
        fresh = len(rows) > 0
        return HealthCheck(
            check_type=CheckType.DATABASE, check_name=name,
            status=CheckStatus.PASS if fresh else CheckStatus.WARN,
            response_time_ms=_elapsed_ms(t0),
            details={"table": table, "has_recent_data": fresh, "since": cutoff.isoformat()},
        )
    except UpstreamError as e:
        # Store answered; treat like "no fresh data" rather than an outage
        return HealthCheck(
            check_type=CheckType.DATABASE, check_name=name,
            status=CheckStatus.WARN, response_time_ms=_elapsed_ms(t0),
            details={
                "table": table, "has_recent_data": False, "http_status": e.status_code,
                "error": str(e), "error_kind": ProbeLogicalFailure.__name__,
            },
        )
    except Exception as e:
        return failed_check(CheckType.DATABASE, name, e, _elapsed_ms(t0), table=table)


def run_db_volume_probe(
    db: RestTableClient, table: str, timeout_s: float = 10.0,
) -> HealthCheck:
    """Exact row count must be > 0, else warn."""
    name = f"{table}_count"
    t0 = time.perf_counter()
    try:
        total = db.count(table, timeout=timeout_s)
        return HealthCheck(
            check_type=CheckType.DATABASE, check_name=name,
            status=CheckStatus.PASS if total > 0 else CheckStatus.WARN,
            response_time_ms=_elapsed_ms(t0),
            details={"table": table, "total_rows": total},
        )
    except UpstreamError as e:
        return HealthCheck(
            check_type=CheckType.DATABASE, check_name=name,
            status=CheckStatus.WARN, response_time_ms=_elapsed_ms(t0),
            details={
                "table": table, "total_rows": 0, "http_status": e.status_code,
                "error": str(e), "error_kind": ProbeLogicalFailure.__name__,
            },
        )
    except Exception as e:
        return failed_check(CheckType.DATABASE, name, e, _elapsed_ms(t0), table=table)


def run_transport_probe(site_url: str, timeout_s: float = 10.0) -> HealthCheck:
    """HEAD the primary site; pass if a strict-transport header is present.

    Header heuristic only — the certificate itself is not inspected.
    """
    t0 = time.perf_counter()
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=True) as client:
            resp = client.head(site_url, headers={"User-Agent": USER_AGENT})
        hsts = resp.headers.get("strict-transport-security")
        return HealthCheck(
            check_type=CheckType.TRANSPORT, check_name="strict_transport",
            status=CheckStatus.PASS if hsts else CheckStatus.WARN,
            response_time_ms=_elapsed_ms(t0),
            details={
                "url": site_url,
                "http_status": resp.status_code,
                "hsts_header": hsts,
                "protocol": resp.url.scheme,
            },
        )
    except Exception as e:
        return failed_check(CheckType.TRANSPORT, "strict_transport", e, _elapsed_ms(t0), url=site_url)


# ── Probe set ────────────────────────────────────────────────────────────────


@dataclass
class Probe:
    """A bound probe: everything needed to (re-)run one check."""

    check_type: CheckType
    check_name: str
    run: Callable[[], HealthCheck]

    @property
    def key(self) -> tuple[CheckType, str]:
        return (self.check_type, self.check_name)


def build_probes(config: MonitorConfig, db: RestTableClient | None = None) -> list[Probe]:
    """Bind every configured target to its probe, in batch order.

    Order: pages, functions, database (connectivity, freshness, volume),
    transport.
    """
    timeout = config.probe_timeout_seconds
    db = db or RestTableClient(config.rest_url, config.service_key, timeout=timeout)
    target = config.database
    probes: list[Probe] = []

    for page in config.pages:
        probes.append(Probe(
            CheckType.PAGE, page.name,
            lambda p=page: run_page_probe(p.url, p.name, timeout),
        ))

    for fn in config.functions:
        probes.append(Probe(
            CheckType.FUNCTION, fn,
            lambda f=fn: run_function_probe(config.functions_url, f, config.expected_origin, timeout),
        ))

    probes.append(Probe(
        CheckType.DATABASE, "connectivity",
        lambda: run_db_connectivity_probe(db, target.connectivity_table, timeout),
    ))
    probes.append(Probe(
        CheckType.DATABASE, f"data_freshness_{target.freshness_window_hours}h",
        lambda: run_db_freshness_probe(
            db, target.freshness_table, target.freshness_column,
            target.freshness_window_hours, timeout,
        ),
    ))
    probes.append(Probe(
        CheckType.DATABASE, f"{target.volume_table}_count",
        lambda: run_db_volume_probe(db, target.volume_table, timeout),
    ))
    probes.append(Probe(
        CheckType.TRANSPORT, "strict_transport",
        lambda: run_transport_probe(config.site_url, timeout),
    ))
    return probes
