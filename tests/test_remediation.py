"""Tests for the remediation engine and the healing step."""

from __future__ import annotations

import asyncio

from conftest import FakeTriggers, RecordingSleep, scripted_probe

from sitemonitor.connectors.client import UpstreamError
from sitemonitor.health.classifier import RemediationIntent
from sitemonitor.health.models import (
    CheckStatus,
    CheckType,
    HealthCheck,
    Issue,
    RemediationStatus,
)
from sitemonitor.health.orchestrator import ProbeOrchestrator
from sitemonitor.health.probes import Probe
from sitemonitor.health.remediation import Deadline, RemediationEngine, apply_heals
from sitemonitor.targets.registry import RemediationRule


def _engine(
    triggers: FakeTriggers,
    probes: list[Probe] | None = None,
    sleep: RecordingSleep | None = None,
    deadline: Deadline | None = None,
) -> RemediationEngine:
    return RemediationEngine(
        triggers, ProbeOrchestrator(timeout_seconds=2), probes or [],
        sleep=sleep or RecordingSleep(), deadline=deadline,
    )


def _check(check_type: CheckType, name: str, status: CheckStatus) -> HealthCheck:
    return HealthCheck(check_type, name, status, 40.0, details={"probe": "raw"}, checked_at="T0")


# ── Stale data ───────────────────────────────────────────────────────────────


class TestRefresh:
    def test_targets_run_in_order_with_delay_between(self) -> None:
        triggers, sleep = FakeTriggers(), RecordingSleep()
        rule = RemediationRule(targets=["a", "b", "c"], delay_seconds=2)
        intent = RemediationIntent(Issue.STALE_DATA, rule, [0])
        batch = [_check(CheckType.DATABASE, "data_freshness_24h", CheckStatus.WARN)]

        outcome = asyncio.run(_engine(triggers, sleep=sleep).execute([intent], batch))

        assert triggers.calls == [("function", "a"), ("function", "b"), ("function", "c")]
        assert sleep.delays == [2, 2]
        assert [r.action for r in outcome.remediations] == [
            "trigger_refresh:a", "trigger_refresh:b", "trigger_refresh:c",
        ]
        assert all(r.status is RemediationStatus.SUCCESS for r in outcome.remediations)
        assert [r.details["sequence"] for r in outcome.remediations] == [1, 2, 3]
        assert outcome.heals == {}

    def test_failed_target_does_not_stop_the_rest(self) -> None:
        triggers = FakeTriggers(failing={"b"})
        rule = RemediationRule(targets=["a", "b", "c"], delay_seconds=0)
        intent = RemediationIntent(Issue.STALE_DATA, rule, [0])
        batch = [_check(CheckType.DATABASE, "data_freshness_24h", CheckStatus.WARN)]

        outcome = asyncio.run(_engine(triggers).execute([intent], batch))

        assert [r.status for r in outcome.remediations] == [
            RemediationStatus.SUCCESS, RemediationStatus.FAILED, RemediationStatus.SUCCESS,
        ]
        failed = outcome.remediations[1]
        assert "b unreachable" in failed.details["error"]
        assert failed.details["error_kind"] == "RemediationTransportError"

    def test_upstream_error_status_is_recorded(self) -> None:
        triggers = FakeTriggers(failing={"a"}, error=UpstreamError(500, "boom"))
        intent = RemediationIntent(Issue.STALE_DATA, RemediationRule(targets=["a"]), [0])
        batch = [_check(CheckType.DATABASE, "data_freshness_24h", CheckStatus.FAIL)]

        outcome = asyncio.run(_engine(triggers).execute([intent], batch))
        assert outcome.remediations[0].status is RemediationStatus.FAILED
        assert outcome.remediations[0].details["http_status"] == 500

    def test_no_targets_is_skipped(self) -> None:
        triggers = FakeTriggers()
        intent = RemediationIntent(Issue.STALE_DATA, RemediationRule(), [0])
        batch = [_check(CheckType.DATABASE, "data_freshness_24h", CheckStatus.WARN)]

        outcome = asyncio.run(_engine(triggers).execute([intent], batch))
        assert triggers.calls == []
        assert len(outcome.remediations) == 1
        assert outcome.remediations[0].status is RemediationStatus.SKIPPED
        assert outcome.remediations[0].details["error_kind"] == "RemediationPrerequisiteMissing"


# ── Page failure ─────────────────────────────────────────────────────────────


class TestRedeploy:
    def _batch(self) -> list[HealthCheck]:
        return [
            _check(CheckType.PAGE, "Homepage", CheckStatus.FAIL),
            _check(CheckType.PAGE, "Login", CheckStatus.FAIL),
        ]

    def test_one_redeploy_for_all_pages(self) -> None:
        triggers = FakeTriggers()
        intent = RemediationIntent(Issue.PAGE_FAILURE, RemediationRule(targets=["https://hook.test"]), [0, 1])

        outcome = asyncio.run(_engine(triggers).execute([intent], self._batch()))

        assert triggers.calls == [("redeploy", "https://hook.test")]
        assert len(outcome.remediations) == 1
        r = outcome.remediations[0]
        assert r.action == "trigger_redeploy"
        assert r.status is RemediationStatus.TRIGGERED
        assert r.details["pages"] == ["Homepage", "Login"]
        # a redeploy does not heal within the invocation
        assert outcome.heals == {}

    def test_missing_hook_is_skipped(self) -> None:
        triggers = FakeTriggers()
        intent = RemediationIntent(Issue.PAGE_FAILURE, RemediationRule(), [0, 1])

        outcome = asyncio.run(_engine(triggers).execute([intent], self._batch()))
        assert triggers.calls == []
        assert outcome.remediations[0].status is RemediationStatus.SKIPPED
        assert "redeploy hook" in outcome.remediations[0].details["reason"]

    def test_hook_error_is_failed(self) -> None:
        triggers = FakeTriggers(failing={"https://hook.test"}, error=UpstreamError(403, "forbidden"))
        intent = RemediationIntent(Issue.PAGE_FAILURE, RemediationRule(targets=["https://hook.test"]), [0])

        outcome = asyncio.run(_engine(triggers).execute([intent], self._batch()))
        assert outcome.remediations[0].status is RemediationStatus.FAILED
        assert outcome.remediations[0].details["http_status"] == 403


# ── Retries ──────────────────────────────────────────────────────────────────


class TestRetries:
    def test_function_retry_heals(self) -> None:
        probe = scripted_probe(CheckType.FUNCTION, "kava-poller", [CheckStatus.PASS])
        batch = [_check(CheckType.FUNCTION, "kava-poller", CheckStatus.FAIL)]
        intent = RemediationIntent(Issue.FUNCTION_UNHEALTHY, RemediationRule(), [0])

        outcome = asyncio.run(_engine(FakeTriggers(), probes=[probe]).execute([intent], batch))

        r = outcome.remediations[0]
        assert r.action == "retry_edge_function:kava-poller"
        assert r.status is RemediationStatus.SUCCESS
        assert r.details["original_status"] == "fail"
        assert r.details["retry_status"] == "pass"
        assert r.details["healed"] is True
        assert list(outcome.heals) == [0]
        assert probe.calls["n"] == 1

    def test_each_unhealthy_function_retried_once(self) -> None:
        probes = [
            scripted_probe(CheckType.FUNCTION, "a", [CheckStatus.PASS]),
            scripted_probe(CheckType.FUNCTION, "b", [CheckStatus.WARN]),
        ]
        batch = [
            _check(CheckType.FUNCTION, "a", CheckStatus.WARN),
            _check(CheckType.FUNCTION, "b", CheckStatus.FAIL),
        ]
        intent = RemediationIntent(Issue.FUNCTION_UNHEALTHY, RemediationRule(), [0, 1])

        outcome = asyncio.run(_engine(FakeTriggers(), probes=probes).execute([intent], batch))

        assert [r.status for r in outcome.remediations] == [
            RemediationStatus.SUCCESS, RemediationStatus.FAILED,
        ]
        assert list(outcome.heals) == [0]
        assert [p.calls["n"] for p in probes] == [1, 1]

    def test_database_retry_backs_off_first(self) -> None:
        sleep = RecordingSleep()
        probe = scripted_probe(CheckType.DATABASE, "connectivity", [CheckStatus.PASS])
        batch = [_check(CheckType.DATABASE, "connectivity", CheckStatus.FAIL)]
        intent = RemediationIntent(
            Issue.DATABASE_UNREACHABLE, RemediationRule(backoff_seconds=3), [0],
        )

        outcome = asyncio.run(_engine(FakeTriggers(), probes=[probe], sleep=sleep).execute([intent], batch))

        assert sleep.delays == [3]
        r = outcome.remediations[0]
        assert r.action == "retry_database_connectivity"
        assert r.status is RemediationStatus.SUCCESS
        assert r.details["backoff_seconds"] == 3
        assert 0 in outcome.heals

    def test_failed_retry_carries_error(self) -> None:
        probe = scripted_probe(
            CheckType.DATABASE, "connectivity", [CheckStatus.FAIL], details={"error": "still down"},
        )
        batch = [_check(CheckType.DATABASE, "connectivity", CheckStatus.FAIL)]
        intent = RemediationIntent(Issue.DATABASE_UNREACHABLE, RemediationRule(), [0])

        outcome = asyncio.run(_engine(FakeTriggers(), probes=[probe]).execute([intent], batch))
        r = outcome.remediations[0]
        assert r.status is RemediationStatus.FAILED
        assert r.details["error"] == "still down"
        assert r.details["healed"] is False
        assert outcome.heals == {}

    def test_retries_disabled_by_policy(self) -> None:
        probe = scripted_probe(CheckType.FUNCTION, "kava-poller", [CheckStatus.PASS])
        batch = [_check(CheckType.FUNCTION, "kava-poller", CheckStatus.FAIL)]
        intent = RemediationIntent(Issue.FUNCTION_UNHEALTHY, RemediationRule(max_retries=0), [0])

        outcome = asyncio.run(_engine(FakeTriggers(), probes=[probe]).execute([intent], batch))
        assert outcome.remediations[0].status is RemediationStatus.SKIPPED
        assert probe.calls["n"] == 0

    def test_unbound_probe_is_skipped(self) -> None:
        batch = [_check(CheckType.FUNCTION, "ghost", CheckStatus.FAIL)]
        intent = RemediationIntent(Issue.FUNCTION_UNHEALTHY, RemediationRule(), [0])

        outcome = asyncio.run(_engine(FakeTriggers()).execute([intent], batch))
        assert outcome.remediations[0].status is RemediationStatus.SKIPPED
        assert outcome.remediations[0].details["error_kind"] == "RemediationPrerequisiteMissing"


# ── Deadline ─────────────────────────────────────────────────────────────────


class TestDeadline:
    def test_expired_deadline_skips_everything(self) -> None:
        triggers, sleep = FakeTriggers(), RecordingSleep()
        probe = scripted_probe(CheckType.DATABASE, "connectivity", [CheckStatus.PASS])
        batch = [
            _check(CheckType.DATABASE, "data_freshness_24h", CheckStatus.WARN),
            _check(CheckType.PAGE, "Homepage", CheckStatus.FAIL),
            _check(CheckType.DATABASE, "connectivity", CheckStatus.FAIL),
        ]
        intents = [
            RemediationIntent(Issue.STALE_DATA, RemediationRule(targets=["a", "b"], delay_seconds=2), [0]),
            RemediationIntent(Issue.PAGE_FAILURE, RemediationRule(targets=["https://hook.test"]), [1]),
            RemediationIntent(Issue.DATABASE_UNREACHABLE, RemediationRule(backoff_seconds=3), [2]),
        ]

        engine = _engine(triggers, probes=[probe], sleep=sleep, deadline=Deadline(0))
        outcome = asyncio.run(engine.execute(intents, batch))

        assert triggers.calls == []
        assert sleep.delays == []
        assert probe.calls["n"] == 0
        assert len(outcome.remediations) == 4
        assert all(r.status is RemediationStatus.SKIPPED for r in outcome.remediations)
        assert all(r.details["reason"] == "deadline exceeded" for r in outcome.remediations)

    def test_remaining_counts_down(self) -> None:
        now = [100.0]
        deadline = Deadline(10, clock=lambda: now[0])
        assert deadline.remaining() == 10
        now[0] = 107.5
        assert deadline.remaining() == 2.5
        assert not deadline.expired
        now[0] = 111.0
        assert deadline.remaining() == 0.0
        assert deadline.expired

    def test_no_deadline_never_expires(self) -> None:
        assert not Deadline(None).expired


# ── apply_heals ──────────────────────────────────────────────────────────────


class TestApplyHeals:
    def test_healed_entry_is_upgraded_on_a_copy(self) -> None:
        raw = [
            _check(CheckType.PAGE, "Homepage", CheckStatus.PASS),
            _check(CheckType.FUNCTION, "kava-poller", CheckStatus.WARN),
        ]
        retry = HealthCheck(CheckType.FUNCTION, "kava-poller", CheckStatus.PASS, 85.5)

        final = apply_heals(raw, {1: retry})

        assert final[1].status is CheckStatus.PASS
        assert final[1].details == {
            "probe": "raw",
            "healed": True,
            "original_status": "warn",
            "retry_response_time_ms": 85.5,
        }
        assert final[1].checked_at == "T0"
        assert final[1].response_time_ms == 40.0
        # raw batch untouched
        assert raw[1].status is CheckStatus.WARN
        assert "healed" not in raw[1].details
        assert final[0] is not raw[0]
        assert final[0].details is not raw[0].details

    def test_no_heals_is_identical_copy(self) -> None:
        raw = [_check(CheckType.DATABASE, "connectivity", CheckStatus.FAIL)]
        final = apply_heals(raw, {})
        assert [c.to_dict() for c in final] == [c.to_dict() for c in raw]
        assert not final[0].healed
