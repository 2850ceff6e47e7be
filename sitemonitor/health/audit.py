"""Audit log — append-only persistence of check batches and remediations.

Two sinks:
- ``SQLiteAuditLog``: local SQLite file, also feeds the dashboard queries.
- ``RestAuditLog``: the platform's REST tables (``site_health_checks`` and
  ``self_healing_log``).

Writes are best-effort: ``persist_report`` logs and swallows any failure so
the health report is returned regardless.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

from sitemonitor.connectors.client import RestTableClient
from sitemonitor.health.errors import PersistenceFailure
from sitemonitor.health.models import CheckStatus, HealthCheck, HealthReport, Remediation

logger = logging.getLogger(__name__)

DB_PATH = Path("data") / "site_health.db"


class AuditLog(Protocol):
    def record(self, checks: list[HealthCheck], remediations: list[Remediation]) -> None: ...

    def close(self) -> None: ...


def persist_report(audit: AuditLog | None, report: HealthReport) -> bool:
    """Write the final batch and its remediations; never raises."""
    if audit is None:
        return False
    try:
        audit.record(report.checks, report.remediations)
        return True
    except Exception as e:
        err = e if isinstance(e, PersistenceFailure) else PersistenceFailure(f"{type(e).__name__}: {e}")
        logger.warning("Failed to store health checks: %s", err)
        return False


# ── SQLite ───────────────────────────────────────────────────────────────────


class SQLiteAuditLog:
    """SQLite-backed audit log for check batches + remediation records."""

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or DB_PATH
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS health_checks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                check_type TEXT NOT NULL,
                check_name TEXT NOT NULL,
                status TEXT NOT NULL,
                response_time_ms REAL,
                details TEXT,
                checked_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_checks_batch
                ON health_checks (checked_at DESC);

            CREATE INDEX IF NOT EXISTS idx_checks_target
                ON health_checks (check_type, check_name, checked_at DESC);

            CREATE TABLE IF NOT EXISTS remediations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                issue TEXT NOT NULL,
                action TEXT NOT NULL,
                status TEXT NOT NULL,
                details TEXT,
                triggered_at TEXT NOT NULL,
                batch_checked_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_remediations_time
                ON remediations (triggered_at DESC);
        """)
        conn.commit()

    def record(self, checks: list[HealthCheck], remediations: list[Remediation]) -> None:
        """Append one batch and its remediations in a single transaction."""
        batch_ts = checks[0].checked_at if checks else None
        try:
            with self._lock:
                conn = self._get_conn()
                with conn:
                    conn.executemany(
                        "INSERT INTO health_checks "
                        "(check_type, check_name, status, response_time_ms, details, checked_at) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        [
                            (
                                c.check_type.value, c.check_name, c.status.value,
                                c.response_time_ms, json.dumps(c.details, default=str), c.checked_at,
                            )
                            for c in checks
                        ],
                    )
                    conn.executemany(
                        "INSERT INTO remediations "
                        "(issue, action, status, details, triggered_at, batch_checked_at) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        [
                            (
                                r.issue, r.action, r.status.value,
                                json.dumps(r.details, default=str), r.triggered_at, batch_ts,
                            )
                            for r in remediations
                        ],
                    )
        except sqlite3.Error as e:
            raise PersistenceFailure(f"SQLite write failed: {e}") from e

    # ── Queries (dashboard feed) ─────────────────────────────────────────

    @staticmethod
    def _row(row: sqlite3.Row) -> dict[str, Any]:
        d = dict(row)
        if d.get("details"):
            d["details"] = json.loads(d["details"])
        return d

    def get_latest_batch(self) -> list[dict[str, Any]]:
        """All checks sharing the most recent batch timestamp."""
        rows = self._get_conn().execute(
            "SELECT * FROM health_checks "
            "WHERE checked_at = (SELECT MAX(checked_at) FROM health_checks) "
            "ORDER BY id",
        ).fetchall()
        return [self._row(r) for r in rows]

    def get_history(
        self, check_type: str, check_name: str, limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Time series of results for one check, newest first."""
        rows = self._get_conn().execute(
            "SELECT * FROM health_checks "
            "WHERE check_type = ? AND check_name = ? "
            "ORDER BY checked_at DESC, id DESC LIMIT ?",
            (check_type, check_name, limit),
        ).fetchall()
        return [self._row(r) for r in rows]

    def get_remediations(self, limit: int = 50) -> list[dict[str, Any]]:
        rows = self._get_conn().execute(
            "SELECT * FROM remediations ORDER BY triggered_at DESC, id DESC LIMIT ?", (limit,),
        ).fetchall()
        return [self._row(r) for r in rows]

    def get_uptime_24h(self, check_type: str, check_name: str) -> float:
        """Share of passing results over the last 24 hours."""
        cutoff = (datetime.now(timezone.utc) - timedelta(hours=24)).isoformat()
        rows = self._get_conn().execute(
            "SELECT status FROM health_checks "
            "WHERE check_type = ? AND check_name = ? AND checked_at >= ?",
            (check_type, check_name, cutoff),
        ).fetchall()

        if not rows:
            return 100.0  # No data = assume up

        passed = sum(1 for r in rows if r["status"] == CheckStatus.PASS.value)
        return round(passed / len(rows) * 100, 1)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None


# ── REST ─────────────────────────────────────────────────────────────────────


class RestAuditLog:
    """Appends to the platform tables through the filtered-read REST interface."""

    def __init__(
        self,
        client: RestTableClient,
        checks_table: str = "site_health_checks",
        remediations_table: str = "self_healing_log",
    ) -> None:
        self.client = client
        self.checks_table = checks_table
        self.remediations_table = remediations_table

    def record(self, checks: list[HealthCheck], remediations: list[Remediation]) -> None:
        try:
            self.client.insert(self.checks_table, [c.to_dict() for c in checks])
            self.client.insert(self.remediations_table, [r.to_dict() for r in remediations])
        except Exception as e:
            raise PersistenceFailure(f"REST write failed: {e}") from e

    def close(self) -> None:
        pass
