"""Summary builder — score and overall status of the final batch."""

from __future__ import annotations

import math

from sitemonitor.health.models import (
    CheckStatus,
    HealthCheck,
    OverallStatus,
    Remediation,
    Summary,
    utc_now_iso,
)


def overall_status(checks: list[HealthCheck]) -> OverallStatus:
    statuses = {c.status for c in checks}
    if CheckStatus.FAIL in statuses:
        return OverallStatus.DEGRADED
    if CheckStatus.WARN in statuses:
        return OverallStatus.WARNING
    return OverallStatus.HEALTHY


def health_score(passed: int, total: int) -> int:
    """Percentage of passing checks, rounded half up (0 for an empty batch)."""
    if total == 0:
        return 0
    return int(math.floor(100 * passed / total + 0.5))


def build_summary(
    checks: list[HealthCheck],
    remediations: list[Remediation],
    self_healing_enabled: bool,
    execution_time_ms: int,
    checked_at: str | None = None,
) -> Summary:
    """Recompute every count from the final (post-healing) batch."""
    total = len(checks)
    passed = sum(1 for c in checks if c.status is CheckStatus.PASS)
    return Summary(
        status=overall_status(checks),
        score=health_score(passed, total),
        total_checks=total,
        passed=passed,
        warnings=sum(1 for c in checks if c.status is CheckStatus.WARN),
        failures=sum(1 for c in checks if c.status is CheckStatus.FAIL),
        healed=sum(1 for c in checks if c.healed),
        self_healing_enabled=self_healing_enabled,
        remediations_taken=len(remediations),
        remediations_succeeded=sum(1 for r in remediations if r.succeeded),
        execution_time_ms=execution_time_ms,
        checked_at=checked_at or (checks[0].checked_at if checks else utc_now_iso()),
    )
