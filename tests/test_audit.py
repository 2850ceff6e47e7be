"""Tests for the audit log sinks."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from sitemonitor.connectors.client import RestTableClient
from sitemonitor.health.audit import RestAuditLog, SQLiteAuditLog, persist_report
from sitemonitor.health.errors import PersistenceFailure
from sitemonitor.health.models import (
    CheckStatus,
    CheckType,
    HealthCheck,
    HealthReport,
    Remediation,
    RemediationStatus,
)
from sitemonitor.health.summary import build_summary


def _ts(hours_ago: float = 0) -> str:
    return (datetime.now(timezone.utc) - timedelta(hours=hours_ago)).isoformat()


def _batch(checked_at: str, connectivity: CheckStatus = CheckStatus.PASS) -> list[HealthCheck]:
    return [
        HealthCheck(CheckType.PAGE, "Homepage", CheckStatus.PASS, 120.0, {"http_status": 200}, checked_at),
        HealthCheck(CheckType.DATABASE, "connectivity", connectivity, 80.0, {}, checked_at),
    ]


def _report(checks: list[HealthCheck], remediations: list[Remediation] | None = None) -> HealthReport:
    remediations = remediations or []
    summary = build_summary(checks, remediations, self_healing_enabled=True, execution_time_ms=10)
    return HealthReport(summary=summary, checks=checks, remediations=remediations)


@pytest.fixture
def audit(tmp_path: Path):
    log = SQLiteAuditLog(tmp_path / "audit" / "health.db")
    yield log
    log.close()


class TestSQLiteAuditLog:
    def test_latest_batch(self, audit: SQLiteAuditLog) -> None:
        audit.record(_batch(_ts(2)), [])
        newest = _ts(0)
        audit.record(_batch(newest, CheckStatus.FAIL), [])

        latest = audit.get_latest_batch()
        assert [c["check_name"] for c in latest] == ["Homepage", "connectivity"]
        assert {c["checked_at"] for c in latest} == {newest}
        assert latest[0]["details"] == {"http_status": 200}
        assert latest[1]["status"] == "fail"

    def test_history_newest_first(self, audit: SQLiteAuditLog) -> None:
        for hours in (3, 2, 1):
            audit.record(_batch(_ts(hours)), [])

        history = audit.get_history("database", "connectivity", limit=2)
        assert len(history) == 2
        assert history[0]["checked_at"] > history[1]["checked_at"]

    def test_remediations_linked_to_batch(self, audit: SQLiteAuditLog) -> None:
        ts = _ts()
        r = Remediation(
            "database_unreachable", "retry_database_connectivity", RemediationStatus.FAILED,
            details={"original_status": "fail"},
        )
        audit.record(_batch(ts, CheckStatus.FAIL), [r])

        rows = audit.get_remediations()
        assert len(rows) == 1
        assert rows[0]["action"] == "retry_database_connectivity"
        assert rows[0]["status"] == "failed"
        assert rows[0]["batch_checked_at"] == ts
        assert rows[0]["details"] == {"original_status": "fail"}

    def test_uptime_24h(self, audit: SQLiteAuditLog) -> None:
        assert audit.get_uptime_24h("database", "connectivity") == 100.0

        audit.record(_batch(_ts(30), CheckStatus.FAIL), [])  # outside the window
        audit.record(_batch(_ts(3), CheckStatus.FAIL), [])
        audit.record(_batch(_ts(2)), [])
        audit.record(_batch(_ts(1)), [])
        assert audit.get_uptime_24h("database", "connectivity") == 66.7
        assert audit.get_uptime_24h("page", "Homepage") == 100.0

    def test_write_error_raises_persistence_failure(self, audit: SQLiteAuditLog) -> None:
        audit._get_conn().execute("DROP TABLE remediations")
        r = Remediation("stale_data", "trigger_refresh:x", RemediationStatus.SUCCESS)
        with pytest.raises(PersistenceFailure):
            audit.record(_batch(_ts()), [r])
        # transaction rolled back
        assert audit.get_latest_batch() == []


class TestPersistReport:
    def test_writes_final_batch(self, audit: SQLiteAuditLog) -> None:
        checks = _batch(_ts())
        checks[1].details.update({"healed": True, "original_status": "fail"})
        assert persist_report(audit, _report(checks)) is True
        stored = audit.get_latest_batch()
        assert stored[1]["status"] == "pass"
        assert stored[1]["details"]["healed"] is True

    def test_no_sink(self) -> None:
        assert persist_report(None, _report(_batch(_ts()))) is False

    def test_failure_is_swallowed(self) -> None:
        class Broken:
            def record(self, checks, remediations) -> None:
                raise RuntimeError("disk full")

            def close(self) -> None:
                pass

        assert persist_report(Broken(), _report(_batch(_ts()))) is False


class TestRestAuditLog:
    def test_appends_to_both_tables(self, mock_http) -> None:
        mock_http.handler = lambda req: httpx.Response(201)
        sink = RestAuditLog(RestTableClient("https://api.test/rest/v1", "svc"))
        r = Remediation("page_failure", "trigger_redeploy", RemediationStatus.TRIGGERED)

        sink.record(_batch("2025-06-01T00:00:00+00:00"), [r])

        assert [req.url.path for req in mock_http.requests] == [
            "/rest/v1/site_health_checks", "/rest/v1/self_healing_log",
        ]
        rows = json.loads(mock_http.requests[0].content)
        assert rows[0]["check_type"] == "page"
        assert rows[0]["status"] == "pass"
        assert json.loads(mock_http.requests[1].content)[0]["action"] == "trigger_redeploy"

    def test_no_remediations_skips_second_insert(self, mock_http) -> None:
        mock_http.handler = lambda req: httpx.Response(201)
        RestAuditLog(RestTableClient("https://api.test/rest/v1", "svc")).record(_batch(_ts()), [])
        assert len(mock_http.requests) == 1

    def test_http_error_becomes_persistence_failure(self, mock_http) -> None:
        mock_http.handler = lambda req: httpx.Response(401, json={"message": "bad key"})
        sink = RestAuditLog(RestTableClient("https://api.test/rest/v1", "svc"))
        with pytest.raises(PersistenceFailure):
            sink.record(_batch(_ts()), [])
