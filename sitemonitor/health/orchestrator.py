"""Probe orchestrator — fans probes out to a thread pool, fans results in.

Each probe runs in its own worker thread so slow targets never block each
other. A probe that raises or overruns its budget is degraded to a ``fail``
check here, so one broken probe cannot abort the batch. After every probe
has finished, a single batch timestamp is stamped on all checks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from sitemonitor.health.errors import ProbeTimeout
from sitemonitor.health.models import CheckStatus, HealthCheck, utc_now_iso
from sitemonitor.health.probes import Probe, failed_check
from sitemonitor.targets.registry import PROBE_GRACE_SECONDS

logger = logging.getLogger(__name__)


class ProbeOrchestrator:
    """Runs a probe set concurrently and returns one timestamped batch."""

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    async def run(self, probes: list[Probe]) -> list[HealthCheck]:
        """Run all probes; results keep the order of ``probes``."""
        if not probes:
            return []

        loop = asyncio.get_running_loop()
        # One thread per probe: each budget starts as soon as it is submitted
        executor = ThreadPoolExecutor(max_workers=len(probes), thread_name_prefix="probe")
        try:
            batch = await asyncio.gather(
                *(self._run_one(loop, executor, p) for p in probes)
            )
        finally:
            # Overrunning threads are abandoned, not joined
            executor.shutdown(wait=False)

        checked_at = self._clock()
        for check in batch:
            check.checked_at = checked_at

        logger.info(
            "Probe batch complete: %d checks, %d not passing",
            len(batch), sum(1 for c in batch if c.status is not CheckStatus.PASS),
        )
        return list(batch)

    async def run_single(self, probe: Probe) -> HealthCheck:
        """Run one probe with the same guarantees as a batch member."""
        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="probe-retry")
        try:
            return await self._run_one(loop, executor, probe)
        finally:
            executor.shutdown(wait=False)

    async def _run_one(
        self,
        loop: asyncio.AbstractEventLoop,
        executor: ThreadPoolExecutor,
        probe: Probe,
    ) -> HealthCheck:
        budget = self.timeout_seconds + PROBE_GRACE_SECONDS
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(executor, probe.run), timeout=budget,
            )
        except asyncio.TimeoutError:
            logger.warning("Probe %s/%s exceeded %.1fs", probe.check_type.value, probe.check_name, budget)
            return failed_check(
                probe.check_type, probe.check_name,
                ProbeTimeout(f"Probe did not finish within {budget:.1f}s"),
                round(budget * 1000, 1),
            )
        except Exception as e:
            logger.exception("Probe %s/%s raised", probe.check_type.value, probe.check_name)
            return failed_check(probe.check_type, probe.check_name, e)
