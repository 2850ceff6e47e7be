"""Error taxonomy for the monitor.

Probe errors never leave the probe executors: they are folded into a
``fail`` (or ``warn``) HealthCheck whose ``details.error_kind`` carries the
class name. Remediation errors become ``failed`` Remediation records and
persistence errors are logged and dropped.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for all monitor errors."""

    @property
    def kind(self) -> str:
        return type(self).__name__


# ── Probe ────────────────────────────────────────────────────────────────────


class ProbeError(MonitorError):
    """A probe could not produce a passing result."""


class ProbeTimeout(ProbeError):
    """The probe did not complete within its timeout."""


class ProbeTransportError(ProbeError):
    """Connection, DNS or protocol failure while probing."""


class ProbeLogicalFailure(ProbeError):
    """The target answered, but not the way a healthy target should."""


# ── Persistence ──────────────────────────────────────────────────────────────


class PersistenceFailure(MonitorError):
    """The audit log could not be written."""


# ── Remediation ──────────────────────────────────────────────────────────────


class RemediationError(MonitorError):
    """A remediation action could not be carried out."""


class RemediationPrerequisiteMissing(RemediationError):
    """The action needs configuration that is not present."""


class RemediationTransportError(RemediationError):
    """The remediation target was unreachable or rejected the call."""
