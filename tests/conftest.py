"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from sitemonitor.connectors.client import UpstreamUnavailableError
from sitemonitor.health.models import CheckStatus, CheckType, HealthCheck, Issue
from sitemonitor.health.probes import Probe
from sitemonitor.targets.registry import MonitorConfig, RemediationPolicy, RemediationRule

_RealClient = httpx.Client


class MockHTTP:
    """Routes every ``httpx.Client`` built by the code under test to a handler."""

    def __init__(self) -> None:
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda req: httpx.Response(200)
        self.requests: list[httpx.Request] = []

    def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self, *args: Any, **kwargs: Any) -> httpx.Client:
        kwargs.pop("transport", None)
        return _RealClient(*args, transport=httpx.MockTransport(self._dispatch), **kwargs)


@pytest.fixture
def mock_http():
    """Patch httpx.Client so no test touches the network."""
    mock = MockHTTP()
    with patch("httpx.Client", mock.client):
        yield mock


class FakeTriggers:
    """Records remediation triggers; names in ``failing`` raise."""

    def __init__(self, failing: set[str] | None = None, error: Exception | None = None) -> None:
        self.failing = failing or set()
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def _maybe_fail(self, target: str) -> None:
        if target in self.failing:
            raise self.error or UpstreamUnavailableError(f"{target} unreachable")

    def trigger_function(self, name: str, timeout: float) -> int:
        self.calls.append(("function", name))
        self._maybe_fail(name)
        return 202

    def trigger_redeploy(self, hook_url: str, timeout: float) -> int:
        self.calls.append(("redeploy", hook_url))
        self._maybe_fail(hook_url)
        return 201


class RecordingSleep:
    """Async sleep stand-in that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def scripted_probe(
    check_type: CheckType,
    name: str,
    statuses: list[CheckStatus],
    details: dict[str, Any] | None = None,
) -> Probe:
    """A probe that returns ``statuses`` in order, repeating the last one."""
    calls = {"n": 0}

    def run() -> HealthCheck:
        status = statuses[min(calls["n"], len(statuses) - 1)]
        calls["n"] += 1
        return HealthCheck(
            check_type=check_type, check_name=name, status=status,
            response_time_ms=12.0, details=dict(details or {}),
        )

    probe = Probe(check_type, name, run)
    probe.calls = calls  # type: ignore[attr-defined]
    return probe


@pytest.fixture
def fake_triggers() -> FakeTriggers:
    return FakeTriggers()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_config() -> Callable[..., MonitorConfig]:
    """Factory for a MonitorConfig with a fully specified remediation policy."""

    def _make(
        refresh_targets: list[str] | None = None,
        redeploy_hook: str = "",
        delay_seconds: float = 2.0,
        backoff_seconds: float = 3.0,
        max_retries: int = 1,
        **overrides: Any,
    ) -> MonitorConfig:
        policy = RemediationPolicy(rules={
            Issue.STALE_DATA: RemediationRule(
                targets=list(refresh_targets or []), delay_seconds=delay_seconds, timeout_seconds=5,
            ),
            Issue.PAGE_FAILURE: RemediationRule(
                targets=[redeploy_hook] if redeploy_hook else [], timeout_seconds=5,
            ),
            Issue.FUNCTION_UNHEALTHY: RemediationRule(max_retries=max_retries),
            Issue.DATABASE_UNREACHABLE: RemediationRule(
                backoff_seconds=backoff_seconds, max_retries=max_retries,
            ),
        })
        fields: dict[str, Any] = {
            "site_url": "https://site.test",
            "expected_origin": "https://site.test",
            "functions_url": "https://api.test/functions/v1",
            "rest_url": "https://api.test/rest/v1",
            "policy": policy,
            "probe_timeout_seconds": 2.0,
        }
        fields.update(overrides)
        return MonitorConfig(**fields)

    return _make


@pytest.fixture
def six_probes() -> Callable[..., list[Probe]]:
    """Factory for the canonical six-check probe set; override any status script."""

    def _make(**scripts: list[CheckStatus]) -> list[Probe]:
        ok = [CheckStatus.PASS]
        return [
            scripted_probe(CheckType.PAGE, "Homepage", scripts.get("page", ok)),
            scripted_probe(CheckType.FUNCTION, "kava-poller", scripts.get("function", ok)),
            scripted_probe(CheckType.DATABASE, "connectivity", scripts.get("connectivity", ok)),
            scripted_probe(CheckType.DATABASE, "data_freshness_24h", scripts.get("freshness", ok)),
            scripted_probe(CheckType.DATABASE, "instrument_count", scripts.get("volume", ok)),
            scripted_probe(CheckType.TRANSPORT, "strict_transport", scripts.get("transport", ok)),
        ]

    return _make
