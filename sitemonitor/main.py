"""Entry point for the site monitor."""

from __future__ import annotations

import argparse
import json
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sitemonitor.api.server import make_audit_log
from sitemonitor.config import settings
from sitemonitor.health.audit import persist_report
from sitemonitor.health.models import HealthReport, OverallStatus
from sitemonitor.health.monitor import SiteMonitor
from sitemonitor.targets.registry import TargetRegistry

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

_STATUS_STYLE = {"pass": "green", "warn": "yellow", "fail": "red"}
_OVERALL_STYLE = {
    OverallStatus.HEALTHY: "bold green",
    OverallStatus.WARNING: "bold yellow",
    OverallStatus.DEGRADED: "bold red",
}


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting Site Monitor API Server", style="bold green"))
    uvicorn.run(
        "sitemonitor.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def render_report(report: HealthReport) -> None:
    s = report.summary
    console.print(Panel(
        f"Status: {s.status.value}  |  Score: {s.score}  |  "
        f"{s.passed} pass / {s.warnings} warn / {s.failures} fail  |  "
        f"{s.healed} healed  |  {s.execution_time_ms}ms",
        title=f"Site Health @ {s.checked_at}",
        style=_OVERALL_STYLE[s.status],
    ))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Type")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("ms", justify="right")
    table.add_column("Detail")
    for c in report.checks:
        style = _STATUS_STYLE[c.status.value]
        detail = c.details.get("error") or ""
        if c.healed:
            detail = f"healed (was {c.details.get('original_status')})"
        table.add_row(
            c.check_type.value, c.check_name, f"[{style}]{c.status.value}[/{style}]",
            f"{c.response_time_ms:.0f}", str(detail)[:80],
        )
    console.print(table)

    if report.remediations:
        console.print("\n[bold]Remediations:[/bold]")
        for r in report.remediations:
            console.print(f"  - {r.action}: {r.status.value}")


def run_check(self_healing: bool, as_json: bool) -> int:
    """Run a single invocation from the command line."""
    config = TargetRegistry().load()
    monitor = SiteMonitor(config)

    with console.status("[bold green]Probing..."):
        report = monitor.run_sync(self_healing=self_healing)

    audit = make_audit_log(settings.audit_backend, config)
    persist_report(audit, report)
    if audit is not None:
        audit.close()

    if as_json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        render_report(report)
    return 1 if report.status is OverallStatus.DEGRADED else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Site Monitor — health checks & self-healing")
    sub = parser.add_subparsers(dest="command")

    # Server mode
    sub.add_parser("serve", help="Start the API server")

    # One-shot mode
    check_parser = sub.add_parser("check", help="Run all checks once")
    check_parser.add_argument("--no-heal", action="store_true", help="Disable self-healing")
    check_parser.add_argument("--json", action="store_true", help="Print the raw JSON report")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "check":
        sys.exit(run_check(self_healing=not args.no_heal, as_json=args.json))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
