"""Issue classifier — maps a completed batch to remediation intents.

Stateless. Rules are evaluated independently against the raw batch, so one
batch can raise several issues. Intents come back in a fixed order
(stale data, page failure, unhealthy functions, database connectivity),
which is also the order the remediation engine executes them in.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sitemonitor.health.models import CheckStatus, CheckType, HealthCheck, Issue
from sitemonitor.targets.registry import RemediationPolicy, RemediationRule

CONNECTIVITY_CHECK = "connectivity"
FRESHNESS_PREFIX = "data_freshness"


@dataclass
class RemediationIntent:
    """One issue to remediate, with the batch positions that raised it."""

    issue: Issue
    rule: RemediationRule
    check_indices: list[int] = field(default_factory=list)

    @property
    def priority(self) -> int:
        return _PRIORITY[self.issue]


_PRIORITY = {
    Issue.STALE_DATA: 1,
    Issue.PAGE_FAILURE: 2,
    Issue.FUNCTION_UNHEALTHY: 3,
    Issue.DATABASE_UNREACHABLE: 4,
}


def is_freshness_check(check: HealthCheck) -> bool:
    return check.check_type is CheckType.DATABASE and check.check_name.startswith(FRESHNESS_PREFIX)


def is_connectivity_check(check: HealthCheck) -> bool:
    return check.check_type is CheckType.DATABASE and check.check_name == CONNECTIVITY_CHECK


def classify(batch: list[HealthCheck], policy: RemediationPolicy) -> list[RemediationIntent]:
    """Return the prioritized remediation intents for ``batch``."""
    intents: list[RemediationIntent] = []

    stale = [i for i, c in enumerate(batch) if is_freshness_check(c) and c.status is not CheckStatus.PASS]
    if stale:
        intents.append(RemediationIntent(Issue.STALE_DATA, policy.rule(Issue.STALE_DATA), stale))

    pages_down = [
        i for i, c in enumerate(batch)
        if c.check_type is CheckType.PAGE and c.status is CheckStatus.FAIL
    ]
    if pages_down:
        # One redeploy covers every page
        intents.append(RemediationIntent(Issue.PAGE_FAILURE, policy.rule(Issue.PAGE_FAILURE), pages_down))

    functions = [
        i for i, c in enumerate(batch)
        if c.check_type is CheckType.FUNCTION and c.status in (CheckStatus.WARN, CheckStatus.FAIL)
    ]
    if functions:
        intents.append(RemediationIntent(
            Issue.FUNCTION_UNHEALTHY, policy.rule(Issue.FUNCTION_UNHEALTHY), functions,
        ))

    unreachable = [
        i for i, c in enumerate(batch)
        if is_connectivity_check(c) and c.status is CheckStatus.FAIL
    ]
    if unreachable:
        intents.append(RemediationIntent(
            Issue.DATABASE_UNREACHABLE, policy.rule(Issue.DATABASE_UNREACHABLE), unreachable,
        ))

    return sorted(intents, key=lambda it: it.priority)
