"""Target registry — loads monitor.yaml into the monitor's configuration object.

Single source of truth for what gets probed and how failures are remediated.
The API, the CLI and the tests all build a ``MonitorConfig`` and hand it to
``SiteMonitor``; nothing in the engine reads module-level target lists.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from sitemonitor.config import Settings, settings as default_settings
from sitemonitor.health.models import Issue

logger = logging.getLogger(__name__)

# Extra time a probe thread gets beyond its own network timeout
PROBE_GRACE_SECONDS = 1.0


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass
class PageTarget:
    name: str
    url: str


@dataclass
class DatabaseTarget:
    """Tables used by the connectivity, freshness and volume probes."""

    connectivity_table: str = "jurisdiction"
    freshness_table: str = "instrument"
    freshness_column: str = "created_at"
    freshness_window_hours: int = 24
    volume_table: str = "instrument"


@dataclass
class RemediationRule:
    """Execution parameters for one issue signature."""

    targets: list[str] = field(default_factory=list)
    timeout_seconds: float = 10.0
    delay_seconds: float = 0.0  # between actions of the same rule
    backoff_seconds: float = 0.0  # before a retry
    max_retries: int = 1  # 0 or 1

    def __post_init__(self) -> None:
        self.max_retries = min(max(int(self.max_retries), 0), 1)


@dataclass
class RemediationPolicy:
    rules: dict[Issue, RemediationRule] = field(default_factory=dict)

    def rule(self, issue: Issue) -> RemediationRule:
        return self.rules.get(issue) or RemediationRule()


@dataclass
class MonitorConfig:
    """Everything one invocation needs to know about its targets."""

    site_url: str
    expected_origin: str
    functions_url: str
    rest_url: str
    service_key: str = ""
    pages: list[PageTarget] = field(default_factory=list)
    functions: list[str] = field(default_factory=list)
    database: DatabaseTarget = field(default_factory=DatabaseTarget)
    policy: RemediationPolicy = field(default_factory=RemediationPolicy)
    probe_timeout_seconds: float = 10.0

    def remediation_budget_seconds(self) -> float:
        """Worst-case wall time of the remediation stage."""
        stale = self.policy.rule(Issue.STALE_DATA)
        redeploy = self.policy.rule(Issue.PAGE_FAILURE)
        fn = self.policy.rule(Issue.FUNCTION_UNHEALTHY)
        db = self.policy.rule(Issue.DATABASE_UNREACHABLE)
        n_refresh = len(stale.targets)
        retry = self.probe_timeout_seconds + PROBE_GRACE_SECONDS
        return (
            n_refresh * stale.timeout_seconds
            + max(n_refresh - 1, 0) * stale.delay_seconds
            + redeploy.timeout_seconds
            + len(self.functions) * retry * fn.max_retries
            + (db.backoff_seconds + retry) * db.max_retries
        )

    def deadline_seconds(self) -> float:
        """Top-level bound for a whole invocation."""
        return self.probe_timeout_seconds + PROBE_GRACE_SECONDS + self.remediation_budget_seconds()


_DEFAULT_RULES: dict[Issue, dict[str, Any]] = {
    Issue.STALE_DATA: {"delay_seconds": 2.0, "timeout_seconds": 15.0},
    Issue.PAGE_FAILURE: {"timeout_seconds": 10.0},
    Issue.FUNCTION_UNHEALTHY: {},
    Issue.DATABASE_UNREACHABLE: {"backoff_seconds": 3.0},
}


# ── Registry ─────────────────────────────────────────────────────────────────


class TargetRegistry:
    """Loads and caches the monitor configuration from a YAML file."""

    def __init__(self, path: Path | None = None, settings: Settings | None = None) -> None:
        self._settings = settings or default_settings
        self._path = path or Path(self._settings.targets_file)
        self._config: MonitorConfig | None = None

    def load(self, force: bool = False) -> MonitorConfig:
        """Parse the targets file and return a MonitorConfig."""
        if self._config is not None and not force:
            return self._config

        raw: dict[str, Any] = {}
        if not self._path.exists():
            logger.warning("Targets file not found: %s — no targets configured", self._path)
        else:
            try:
                raw = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
            except Exception as e:
                logger.error("Failed to parse %s: %s", self._path, e)
                raw = {}

        self._config = parse_config(raw, self._settings)
        logger.info(
            "Loaded targets: %d pages, %d functions",
            len(self._config.pages), len(self._config.functions),
        )
        return self._config

    @property
    def config(self) -> MonitorConfig:
        return self.load()

    def reload(self) -> MonitorConfig:
        """Force reload from disk."""
        return self.load(force=True)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the loaded configuration for the API."""
        return _config_to_dict(self.config)


# ── Parsers ──────────────────────────────────────────────────────────────────


def parse_config(raw: dict[str, Any], settings: Settings | None = None) -> MonitorConfig:
    s = settings or default_settings
    site_url = (raw.get("site_url") or s.site_url).rstrip("/")
    supabase_url = (raw.get("supabase_url") or s.supabase_url).rstrip("/")

    pages = []
    for p in raw.get("pages") or []:
        try:
            pages.append(_parse_page(p, site_url))
        except Exception as e:
            logger.warning("Skipping malformed page entry: %s", e)

    raw_db = raw.get("database") or {}
    database = DatabaseTarget(
        connectivity_table=raw_db.get("connectivity_table", "jurisdiction"),
        freshness_table=raw_db.get("freshness_table", "instrument"),
        freshness_column=raw_db.get("freshness_column", "created_at"),
        freshness_window_hours=raw_db.get("freshness_window_hours", 24),
        volume_table=raw_db.get("volume_table", "instrument"),
    )

    return MonitorConfig(
        site_url=site_url,
        expected_origin=raw.get("expected_origin") or s.expected_origin,
        functions_url=f"{supabase_url}/functions/v1",
        rest_url=f"{supabase_url}/rest/v1",
        service_key=s.supabase_service_key,
        pages=pages,
        functions=[str(f) for f in raw.get("functions") or []],
        database=database,
        policy=_parse_policy(raw.get("remediation") or {}, s),
        probe_timeout_seconds=float(raw.get("probe_timeout_seconds", s.probe_timeout_seconds)),
    )


def _parse_page(raw: dict[str, Any], site_url: str) -> PageTarget:
    name = raw["name"]
    url = raw.get("url") or ""
    if not url:
        path = raw.get("path", "/")
        url = f"{site_url}/{path.lstrip('/')}"
    return PageTarget(name=name, url=url)


def _parse_policy(raw: dict[str, Any], s: Settings) -> RemediationPolicy:
    rules: dict[Issue, RemediationRule] = {}
    for issue, defaults in _DEFAULT_RULES.items():
        entry = {**defaults, **(raw.get(issue.value) or {})}
        rules[issue] = RemediationRule(
            targets=[str(t) for t in entry.get("targets") or []],
            timeout_seconds=float(entry.get("timeout_seconds", 10.0)),
            delay_seconds=float(entry.get("delay_seconds", 0.0)),
            backoff_seconds=float(entry.get("backoff_seconds", 0.0)),
            max_retries=entry.get("max_retries", 1),
        )

    redeploy = rules[Issue.PAGE_FAILURE]
    if not redeploy.targets and s.redeploy_hook_url:
        redeploy.targets = [s.redeploy_hook_url]

    unknown = set(raw) - {i.value for i in Issue}
    if unknown:
        logger.warning("Ignoring unknown remediation rules: %s", ", ".join(sorted(unknown)))
    return RemediationPolicy(rules=rules)


def _config_to_dict(c: MonitorConfig) -> dict[str, Any]:
    return {
        "site_url": c.site_url,
        "expected_origin": c.expected_origin,
        "pages": [{"name": p.name, "url": p.url} for p in c.pages],
        "functions": list(c.functions),
        "database": {
            "connectivity_table": c.database.connectivity_table,
            "freshness_table": c.database.freshness_table,
            "freshness_window_hours": c.database.freshness_window_hours,
            "volume_table": c.database.volume_table,
        },
        "remediation": {
            issue.value: {
                # hook URLs may carry secrets
                "targets": len(rule.targets) if issue is Issue.PAGE_FAILURE else list(rule.targets),
                "timeout_seconds": rule.timeout_seconds,
                "delay_seconds": rule.delay_seconds,
                "backoff_seconds": rule.backoff_seconds,
                "max_retries": rule.max_retries,
            }
            for issue, rule in c.policy.rules.items()
        },
        "probe_timeout_seconds": c.probe_timeout_seconds,
    }
