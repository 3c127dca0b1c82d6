"""Probe cycle + scheduler.

``run_cycle`` is one pass over every endpoint: probe → classify → set latest →
append (hour-deduplicated) → purge. Endpoints run concurrently and a
storage failure on one endpoint is recorded in the report without stopping
the others. ``HealthScheduler`` just calls it on an asyncio timer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from ..endpoints import Endpoint
from .engine import HealthState, HistoryEntry, Prober, now_ms
from .store import DEFAULT_RETENTION_MS, HistoryStore, StorageUnavailable

logger = logging.getLogger(__name__)


@dataclass
class EndpointOutcome:
    """What one endpoint's probe-and-store chain did during a cycle."""

    endpoint_id: str
    status: HealthState | None = None
    response_time_ms: int = 0
    appended: bool = False
    purged: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.endpoint_id,
            "status": self.status.value if self.status else None,
            "responseTime": self.response_time_ms,
            "appended": self.appended,
            "purged": self.purged,
            "error": self.error,
        }


@dataclass
class CycleReport:
    started_at_ms: int
    outcomes: list[EndpointOutcome] = field(default_factory=list)

    @property
    def failed(self) -> list[EndpointOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def get(self, endpoint_id: str) -> EndpointOutcome | None:
        return next((o for o in self.outcomes if o.endpoint_id == endpoint_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "startedAt": self.started_at_ms,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "failed": len(self.failed),
        }


async def run_endpoint(
    endpoint: Endpoint,
    store: HistoryStore,
    prober: Prober,
    now: int,
    retention_ms: int = DEFAULT_RETENTION_MS,
) -> EndpointOutcome:
    """Probe one endpoint and persist the result. Storage errors are captured, not raised."""
    outcome = EndpointOutcome(endpoint_id=endpoint.id)

    result = await prober.probe(endpoint)
    outcome.status = result.status
    outcome.response_time_ms = result.response_time_ms
    entry = HistoryEntry.from_probe(result, now)

    errors = []
    # latest:{id} is its own key, so a bad history value must not hold it back
    try:
        await store.set_latest(endpoint.id, entry)
    except StorageUnavailable as e:
        logger.warning("Storage unavailable for %s: %s", endpoint.id, e)
        errors.append(str(e))

    try:
        outcome.appended = await store.append_if_absent(endpoint.id, entry)
        outcome.purged = await store.purge(endpoint.id, retention_ms, now)
    except StorageUnavailable as e:
        logger.warning("Storage unavailable for %s: %s", endpoint.id, e)
        errors.append(str(e))

    if errors:
        outcome.error = "; ".join(errors)
    return outcome


async def run_cycle(
    endpoints: Iterable[Endpoint],
    store: HistoryStore,
    prober: Prober,
    now: int | None = None,
    retention_ms: int = DEFAULT_RETENTION_MS,
) -> CycleReport:
    """Run one probe+store+purge pass over all endpoints."""
    now = now_ms() if now is None else now
    report = CycleReport(started_at_ms=now)

    endpoints = list(endpoints)
    results = await asyncio.gather(
        *(run_endpoint(e, store, prober, now, retention_ms) for e in endpoints),
        return_exceptions=True,
    )
    for endpoint, res in zip(endpoints, results):
        if isinstance(res, BaseException):
            # Unexpected errors stay scoped to their endpoint
            logger.error(
                "Cycle error for %s", endpoint.id, exc_info=(type(res), res, res.__traceback__),
            )
            res = EndpointOutcome(endpoint_id=endpoint.id, error=f"{type(res).__name__}: {res}")
        report.outcomes.append(res)

    logger.info(
        "Cycle done: %d endpoints, %d appended, %d failed",
        len(report.outcomes),
        sum(1 for o in report.outcomes if o.appended),
        len(report.failed),
    )
    return report


class HealthScheduler:
    """Runs ``run_cycle`` immediately on start and then every ``interval`` seconds."""

    def __init__(
        self,
        endpoints: Iterable[Endpoint],
        store: HistoryStore,
        prober: Prober,
        interval: float = 3600,
        retention_ms: int = DEFAULT_RETENTION_MS,
        on_report: Callable[[CycleReport], Any] | None = None,
    ) -> None:
        self.endpoints = tuple(endpoints)
        self.store = store
        self.prober = prober
        self.interval = interval
        self.retention_ms = retention_ms
        self.on_report = on_report
        self.last_report: CycleReport | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True

        if not self.endpoints:
            logger.info("No endpoints configured, scheduler idle")
            return

        self._task = asyncio.create_task(self._loop(), name="pulse-scheduler")
        logger.info(
            "Scheduler started: %d endpoints every %ss", len(self.endpoints), self.interval,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Scheduler stopped")

    async def run_now(self, now: int | None = None) -> CycleReport:
        """Run one pass immediately (manual trigger)."""
        report = await run_cycle(
            self.endpoints, self.store, self.prober, now=now, retention_ms=self.retention_ms,
        )
        self.last_report = report
        if self.on_report:
            try:
                self.on_report(report)
            except Exception:
                logger.exception("Report callback error")
        return report

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_now()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Scheduled cycle failed")
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
