"""Health subsystem — probes, orchestrator, self-healing, summary, audit log."""

from .models import (
    CheckStatus,
    CheckType,
    HealthCheck,
    HealthReport,
    Issue,
    OverallStatus,
    Remediation,
    RemediationStatus,
    Summary,
)
