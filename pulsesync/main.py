"""Entry point for the Pulse Sync status monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pulsesync.api.server import build_kv
from pulsesync.config import settings
from pulsesync.endpoints import load_endpoints
from pulsesync.health.engine import HealthState, Prober
from pulsesync.health.scheduler import CycleReport, run_cycle
from pulsesync.health.store import HistoryStore

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

_STATE_STYLE = {
    HealthState.OPERATIONAL: "green",
    HealthState.SLOW: "yellow",
    HealthState.DOWN: "red",
}


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting Pulse Sync API Server", style="bold green"))
    uvicorn.run(
        "pulsesync.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


async def _run_cycle_once() -> CycleReport:
    registry = load_endpoints(settings.endpoints_path)
    kv = build_kv(settings)
    try:
        store = HistoryStore(kv, registry.ids)
        async with Prober(timeout=settings.probe_deadline_seconds, user_agent=settings.user_agent) as prober:
            return await run_cycle(
                registry.endpoints, store, prober, retention_ms=settings.retention_ms,
            )
    finally:
        kv.close()


def print_report(report: CycleReport) -> None:
    table = Table(title="Probe cycle")
    table.add_column("Endpoint")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    table.add_column("Stored")
    table.add_column("Purged", justify="right")
    table.add_column("Error", style="dim")

    for o in report.outcomes:
        status = o.status.value if o.status else "-"
        style = _STATE_STYLE.get(o.status, "white")
        table.add_row(
            o.endpoint_id,
            f"[{style}]{status}[/{style}]",
            f"{o.response_time_ms}ms",
            "yes" if o.appended else "no",
            str(o.purged),
            o.error or "",
        )
    console.print(table)


def run_once() -> int:
    """Run a single probe pass and print the report. Exit code 1 if any endpoint failed to store."""
    with console.status("[bold green]Probing endpoints..."):
        report = asyncio.run(_run_cycle_once())
    print_report(report)
    return 1 if report.failed else 0


def probe_one(endpoint_id: str) -> int:
    """Debug-probe one endpoint without storing anything."""
    registry = load_endpoints(settings.endpoints_path)
    endpoint = registry.get(endpoint_id)
    if endpoint is None:
        console.print(f"[red]Unknown endpoint:[/red] {endpoint_id} (known: {', '.join(registry.ids)})")
        return 2

    async def _inspect() -> dict:
        async with Prober(timeout=settings.probe_deadline_seconds, user_agent=settings.user_agent) as prober:
            details = await prober.inspect(endpoint)
            details["classified"] = (await prober.probe(endpoint)).status.value
            return details

    console.print_json(data=asyncio.run(_inspect()))
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Pulse Sync status monitor")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Start the API server (with the hourly scheduler)")
    sub.add_parser("run-cycle", help="Run one probe+store+purge pass now")

    probe_parser = sub.add_parser("probe", help="Probe one endpoint without storing")
    probe_parser.add_argument("endpoint_id", help="Registered endpoint id")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "run-cycle":
        sys.exit(run_once())
    elif args.command == "probe":
        sys.exit(probe_one(args.endpoint_id))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
