"""Remediation engine — executes remediation intents and heals checks.

Categories run one after another in classifier order; actions inside a
category run strictly sequentially. Every attempt yields exactly one
Remediation record. A failing action never stops the ones after it.

Healing is a separate, explicit step: the engine reports which batch
positions passed their single retry, and ``apply_heals`` derives the final
batch from a copy of the raw one.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from sitemonitor.connectors.client import UpstreamError, UpstreamUnavailableError
from sitemonitor.health.classifier import RemediationIntent
from sitemonitor.health.errors import (
    MonitorError,
    RemediationPrerequisiteMissing,
    RemediationTransportError,
)
from sitemonitor.health.models import (
    CheckStatus,
    HealthCheck,
    Issue,
    Remediation,
    RemediationStatus,
)
from sitemonitor.health.orchestrator import ProbeOrchestrator
from sitemonitor.health.probes import Probe

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class Triggers(Protocol):
    """Remediation side effects. ``TriggerClient`` is the real implementation."""

    def trigger_function(self, name: str, timeout: float) -> int: ...

    def trigger_redeploy(self, hook_url: str, timeout: float) -> int: ...


class Deadline:
    """Wall-clock budget for one invocation."""

    def __init__(self, seconds: float | None, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires = clock() + seconds if seconds is not None else math.inf

    def remaining(self) -> float:
        return max(self._expires - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


@dataclass
class RemediationOutcome:
    remediations: list[Remediation] = field(default_factory=list)
    heals: dict[int, HealthCheck] = field(default_factory=dict)  # batch index → passing retry


def apply_heals(batch: list[HealthCheck], heals: dict[int, HealthCheck]) -> list[HealthCheck]:
    """Return the final batch: ``batch`` copied, healed entries upgraded to pass."""
    final: list[HealthCheck] = []
    for i, check in enumerate(batch):
        retry = heals.get(i)
        if retry is None or check.status is CheckStatus.PASS:
            final.append(replace(check, details=dict(check.details)))
            continue
        final.append(replace(
            check,
            status=CheckStatus.PASS,
            details={
                **check.details,
                "healed": True,
                "original_status": check.status.value,
                "retry_response_time_ms": retry.response_time_ms,
            },
        ))
    return final


def _error_details(exc: Exception) -> tuple[str, dict[str, Any]]:
    """Map a trigger failure onto the remediation taxonomy."""
    if isinstance(exc, UpstreamError):
        err: MonitorError = RemediationTransportError(str(exc))
        return err.kind, {"error": str(err), "http_status": exc.status_code}
    if isinstance(exc, UpstreamUnavailableError):
        err = RemediationTransportError(str(exc))
        return err.kind, {"error": str(err)}
    return type(exc).__name__, {"error": f"{type(exc).__name__}: {exc}"}


class RemediationEngine:
    """Executes intents against the triggers and the bound probe set."""

    def __init__(
        self,
        triggers: Triggers,
        orchestrator: ProbeOrchestrator,
        probes: list[Probe],
        sleep: Sleeper = asyncio.sleep,
        deadline: Deadline | None = None,
    ) -> None:
        self.triggers = triggers
        self.orchestrator = orchestrator
        self._probes = {p.key: p for p in probes}
        self._sleep = sleep
        self.deadline = deadline or Deadline(None)

    async def execute(
        self, intents: list[RemediationIntent], batch: list[HealthCheck],
    ) -> RemediationOutcome:
        outcome = RemediationOutcome()
        handlers = {
            Issue.STALE_DATA: self._refresh_stale_data,
            Issue.PAGE_FAILURE: self._redeploy,
            Issue.FUNCTION_UNHEALTHY: self._retry_functions,
            Issue.DATABASE_UNREACHABLE: self._retry_database,
        }
        for intent in intents:
            try:
                await handlers[intent.issue](intent, batch, outcome)
            except Exception:
                # Handlers record their own failures; this only guards bugs
                logger.exception("Remediation handler for %s crashed", intent.issue.value)
                outcome.remediations.append(Remediation(
                    issue=intent.issue.value, action=f"remediate:{intent.issue.value}",
                    status=RemediationStatus.FAILED,
                    details={"error": "internal error while remediating"},
                ))

        logger.info(
            "Remediation complete: %d actions, %d healed",
            len(outcome.remediations), len(outcome.heals),
        )
        return outcome

    # ── Helpers ──────────────────────────────────────────────────────────

    def _deadline_skip(self, issue: Issue, action: str) -> Remediation | None:
        if not self.deadline.expired:
            return None
        logger.warning("Skipping %s: invocation deadline exceeded", action)
        return Remediation(
            issue=issue.value, action=action, status=RemediationStatus.SKIPPED,
            details={"reason": "deadline exceeded"},
        )

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    # ── Category handlers ────────────────────────────────────────────────

    async def _refresh_stale_data(
        self, intent: RemediationIntent, batch: list[HealthCheck], outcome: RemediationOutcome,
    ) -> None:
        """Trigger each upstream refresh in order, pausing between them."""
        rule = intent.rule
        if not rule.targets:
            err = RemediationPrerequisiteMissing("no refresh targets configured")
            outcome.remediations.append(Remediation(
                issue=intent.issue.value, action="trigger_refresh",
                status=RemediationStatus.SKIPPED,
                details={"reason": str(err), "error_kind": err.kind},
            ))
            return

        for n, target in enumerate(rule.targets):
            if n > 0 and rule.delay_seconds > 0 and not self.deadline.expired:
                await self._sleep(rule.delay_seconds)

            action = f"trigger_refresh:{target}"
            skipped = self._deadline_skip(intent.issue, action)
            if skipped:
                outcome.remediations.append(skipped)
                continue

            try:
                code = await self._call(self.triggers.trigger_function, target, rule.timeout_seconds)
                outcome.remediations.append(Remediation(
                    issue=intent.issue.value, action=action,
                    status=RemediationStatus.SUCCESS,
                    details={"http_status": code, "sequence": n + 1},
                ))
            except Exception as e:
                kind, details = _error_details(e)
                logger.warning("Refresh trigger %s failed: %s", target, details["error"])
                outcome.remediations.append(Remediation(
                    issue=intent.issue.value, action=action,
                    status=RemediationStatus.FAILED,
                    details={**details, "error_kind": kind, "sequence": n + 1},
                ))

    async def _redeploy(
        self, intent: RemediationIntent, batch: list[HealthCheck], outcome: RemediationOutcome,
    ) -> None:
        """One redeploy for the whole batch, however many pages are down."""
        rule = intent.rule
        action = "trigger_redeploy"
        pages = [batch[i].check_name for i in intent.check_indices]

        if not rule.targets:
            err = RemediationPrerequisiteMissing("no redeploy hook configured")
            outcome.remediations.append(Remediation(
                issue=intent.issue.value, action=action, status=RemediationStatus.SKIPPED,
                details={"reason": str(err), "error_kind": err.kind, "pages": pages},
            ))
            return

        skipped = self._deadline_skip(intent.issue, action)
        if skipped:
            skipped.details["pages"] = pages
            outcome.remediations.append(skipped)
            return

        try:
            code = await self._call(self.triggers.trigger_redeploy, rule.targets[0], rule.timeout_seconds)
            outcome.remediations.append(Remediation(
                issue=intent.issue.value, action=action, status=RemediationStatus.TRIGGERED,
                details={"http_status": code, "pages": pages},
            ))
        except Exception as e:
            kind, details = _error_details(e)
            logger.warning("Redeploy trigger failed: %s", details["error"])
            outcome.remediations.append(Remediation(
                issue=intent.issue.value, action=action, status=RemediationStatus.FAILED,
                details={**details, "error_kind": kind, "pages": pages},
            ))

    async def _retry_functions(
        self, intent: RemediationIntent, batch: list[HealthCheck], outcome: RemediationOutcome,
    ) -> None:
        """Re-run each unhealthy function's liveness probe once, immediately."""
        for i in intent.check_indices:
            await self._retry_check(intent, batch, i, f"retry_edge_function:{batch[i].check_name}", outcome)

    async def _retry_database(
        self, intent: RemediationIntent, batch: list[HealthCheck], outcome: RemediationOutcome,
    ) -> None:
        """Back off, then retry the connectivity probe once."""
        rule = intent.rule
        for i in intent.check_indices:
            if rule.max_retries and rule.backoff_seconds > 0 and not self.deadline.expired:
                await self._sleep(rule.backoff_seconds)
            await self._retry_check(
                intent, batch, i, "retry_database_connectivity", outcome,
                backoff_seconds=rule.backoff_seconds,
            )

    async def _retry_check(
        self,
        intent: RemediationIntent,
        batch: list[HealthCheck],
        index: int,
        action: str,
        outcome: RemediationOutcome,
        **extra: Any,
    ) -> None:
        original = batch[index]
        base = {"check_name": original.check_name, "original_status": original.status.value, **extra}

        if intent.rule.max_retries < 1:
            outcome.remediations.append(Remediation(
                issue=intent.issue.value, action=action, status=RemediationStatus.SKIPPED,
                details={**base, "reason": "retries disabled by policy"},
            ))
            return

        probe = self._probes.get((original.check_type, original.check_name))
        if probe is None:
            err = RemediationPrerequisiteMissing(f"no probe bound for {original.check_name}")
            outcome.remediations.append(Remediation(
                issue=intent.issue.value, action=action, status=RemediationStatus.SKIPPED,
                details={**base, "reason": str(err), "error_kind": err.kind},
            ))
            return

        skipped = self._deadline_skip(intent.issue, action)
        if skipped:
            skipped.details.update(base)
            outcome.remediations.append(skipped)
            return

        retry = await self.orchestrator.run_single(probe)
        healed = retry.status is CheckStatus.PASS
        if healed:
            outcome.heals[index] = retry
            logger.info("Healed %s/%s on retry", original.check_type.value, original.check_name)
        else:
            logger.info(
                "Retry of %s/%s still %s", original.check_type.value, original.check_name,
                retry.status.value,
            )

        details = {
            **base,
            "retry_status": retry.status.value,
            "retry_response_time_ms": retry.response_time_ms,
            "healed": healed,
        }
        if "error" in retry.details:
            details["error"] = retry.details["error"]
        outcome.remediations.append(Remediation(
            issue=intent.issue.value, action=action,
            status=RemediationStatus.SUCCESS if healed else RemediationStatus.FAILED,
            details=details,
        ))


