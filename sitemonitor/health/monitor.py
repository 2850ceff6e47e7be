"""Site monitor — one self-contained invocation of the health pipeline.

probes → raw batch → classifier → remediation → healed copy → summary.

Persisting the report is left to the caller (``persist_report``) so the
API can do it after the response has been sent.
"""

from __future__ import annotations

import asyncio
import logging
import time

from sitemonitor.connectors.client import RestTableClient, TriggerClient
from sitemonitor.health.classifier import classify
from sitemonitor.health.models import HealthReport, Remediation
from sitemonitor.health.orchestrator import ProbeOrchestrator
from sitemonitor.health.probes import Probe, build_probes
from sitemonitor.health.remediation import (
    Deadline,
    RemediationEngine,
    Sleeper,
    Triggers,
    apply_heals,
)
from sitemonitor.health.summary import build_summary
from sitemonitor.targets.registry import MonitorConfig

logger = logging.getLogger(__name__)


class SiteMonitor:
    """Runs the probe → heal → summarize pipeline for a MonitorConfig.

    ``probes``, ``triggers`` and ``sleep`` are injectable so the pipeline can
    run against fake targets without network access or real waits.
    """

    def __init__(
        self,
        config: MonitorConfig,
        probes: list[Probe] | None = None,
        triggers: Triggers | None = None,
        sleep: Sleeper = asyncio.sleep,
        db: RestTableClient | None = None,
    ) -> None:
        self.config = config
        self.probes = probes if probes is not None else build_probes(config, db)
        self.triggers = triggers or TriggerClient(config.functions_url, config.service_key)
        self._sleep = sleep
        self.orchestrator = ProbeOrchestrator(timeout_seconds=config.probe_timeout_seconds)

    async def run(self, self_healing: bool = True) -> HealthReport:
        """Execute one invocation and return the final report."""
        t0 = time.perf_counter()
        deadline = Deadline(self.config.deadline_seconds())

        batch = await self.orchestrator.run(self.probes)
        checked_at = batch[0].checked_at if batch else None

        remediations: list[Remediation] = []
        final = batch
        if self_healing:
            intents = classify(batch, self.config.policy)
            if intents:
                logger.info("Issues detected: %s", ", ".join(i.issue.value for i in intents))
                engine = RemediationEngine(
                    self.triggers, self.orchestrator, self.probes,
                    sleep=self._sleep, deadline=deadline,
                )
                outcome = await engine.execute(intents, batch)
                remediations = outcome.remediations
                final = apply_heals(batch, outcome.heals)
        else:
            logger.info("Self-healing disabled for this invocation")

        summary = build_summary(
            final, remediations,
            self_healing_enabled=self_healing,
            execution_time_ms=int((time.perf_counter() - t0) * 1000),
            checked_at=checked_at,
        )
        logger.info(
            "Site monitor: %s (score %d, %d/%d passed, %d healed, %d remediations)",
            summary.status.value, summary.score, summary.passed, summary.total_checks,
            summary.healed, summary.remediations_taken,
        )
        return HealthReport(summary=summary, checks=final, remediations=remediations)

    def run_sync(self, self_healing: bool = True) -> HealthReport:
        """Blocking wrapper for the CLI."""
        return asyncio.run(self.run(self_healing=self_healing))
