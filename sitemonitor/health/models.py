"""Data model for one monitor invocation — checks, remediations, summary."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Enums ────────────────────────────────────────────────────────────────────


class CheckType(str, Enum):
    PAGE = "page"
    FUNCTION = "function"
    DATABASE = "database"
    TRANSPORT = "transport"


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class RemediationStatus(str, Enum):
    TRIGGERED = "triggered"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class Issue(str, Enum):
    """Issue signatures the classifier can raise; keys of the remediation policy."""

    STALE_DATA = "stale_data"
    PAGE_FAILURE = "page_failure"
    FUNCTION_UNHEALTHY = "function_unhealthy"
    DATABASE_UNREACHABLE = "database_unreachable"


class OverallStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    DEGRADED = "degraded"


# ── Records ──────────────────────────────────────────────────────────────────


@dataclass
class HealthCheck:
    """Result of a single probe.

    ``checked_at`` is left empty by the probes and stamped by the
    orchestrator once every probe in the batch has finished.
    """

    check_type: CheckType
    check_name: str
    status: CheckStatus
    response_time_ms: float
    details: dict[str, Any] = field(default_factory=dict)
    checked_at: str = ""

    @property
    def healed(self) -> bool:
        return bool(self.details.get("healed"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "check_type": self.check_type.value,
            "check_name": self.check_name,
            "status": self.status.value,
            "response_time_ms": self.response_time_ms,
            "details": dict(self.details),
            "checked_at": self.checked_at,
        }


@dataclass
class Remediation:
    """Audit record of one remediation attempt."""

    issue: str
    action: str
    status: RemediationStatus
    details: dict[str, Any] = field(default_factory=dict)
    triggered_at: str = ""

    def __post_init__(self) -> None:
        if not self.triggered_at:
            self.triggered_at = utc_now_iso()

    @property
    def succeeded(self) -> bool:
        return self.status in (RemediationStatus.SUCCESS, RemediationStatus.TRIGGERED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue": self.issue,
            "action": self.action,
            "status": self.status.value,
            "details": dict(self.details),
            "triggered_at": self.triggered_at,
        }


@dataclass
class Summary:
    status: OverallStatus
    score: int
    total_checks: int
    passed: int
    warnings: int
    failures: int
    healed: int
    self_healing_enabled: bool
    remediations_taken: int
    remediations_succeeded: int
    execution_time_ms: int
    checked_at: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class HealthReport:
    """Final, post-healing outcome of one invocation."""

    summary: Summary
    checks: list[HealthCheck] = field(default_factory=list)
    remediations: list[Remediation] = field(default_factory=list)

    @property
    def status(self) -> OverallStatus:
        return self.summary.status

    def to_dict(self) -> dict[str, Any]:
        data = self.summary.to_dict()
        data["checks"] = [c.to_dict() for c in self.checks]
        data["remediations"] = [r.to_dict() for r in self.remediations]
        return data
