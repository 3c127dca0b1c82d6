"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from pulsesync.endpoints import Endpoint, EndpointRegistry
from pulsesync.health.engine import HealthState, ProbeResult, Prober
from pulsesync.health.store import HistoryStore, MemoryKVStore, StorageUnavailable

HOUR = 60 * 60 * 1000
DAY = 24 * HOUR

# 2025-03-10T14:00:00Z
T0 = 1741615200000


class FakeProber:
    """Stands in for Prober: returns queued results per endpoint id."""

    def __init__(self, results: dict[str, list[ProbeResult]] | None = None) -> None:
        self.results = {k: list(v) for k, v in (results or {}).items()}
        self.calls: list[str] = []

    def queue(self, endpoint_id: str, status: HealthState, response_time_ms: int) -> None:
        self.results.setdefault(endpoint_id, []).append(ProbeResult(status, response_time_ms))

    async def probe(self, endpoint: Endpoint) -> ProbeResult:
        self.calls.append(endpoint.id)
        queued = self.results.get(endpoint.id)
        if queued:
            return queued.pop(0)
        return ProbeResult(HealthState.OPERATIONAL, 50)


class FailingKVStore(MemoryKVStore):
    """MemoryKVStore that raises StorageUnavailable for keys of the given endpoints."""

    def __init__(self, failing_ids: set[str]) -> None:
        super().__init__()
        self.failing_ids = failing_ids

    def _check(self, key: str) -> None:
        if key.split(":", 1)[1] in self.failing_ids:
            raise StorageUnavailable(f"unreachable: {key}")

    async def get(self, key: str) -> str | None:
        self._check(key)
        return await super().get(key)

    async def put(self, key: str, value: str) -> None:
        self._check(key)
        await super().put(key, value)


class FakeClock:
    """perf_counter replacement that advances by fixed steps on each call."""

    def __init__(self, step_seconds: float) -> None:
        self.step = step_seconds
        self.now = 100.0
        self._first = True

    def __call__(self) -> float:
        if self._first:
            self._first = False
            return self.now
        self.now += self.step
        self._first = True
        return self.now


@pytest.fixture
def endpoints() -> tuple[Endpoint, ...]:
    return (
        Endpoint(id="alpha", display_name="Alpha API", probe_url="https://alpha.test/health"),
        Endpoint(id="beta", display_name="Beta API", probe_url="https://beta.test/health"),
    )


@pytest.fixture
def registry(endpoints) -> EndpointRegistry:
    return EndpointRegistry(endpoints)


@pytest.fixture
def kv() -> MemoryKVStore:
    return MemoryKVStore()


@pytest.fixture
def store(kv, registry) -> HistoryStore:
    return HistoryStore(kv, registry.ids)


@pytest.fixture
def fake_prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def make_prober() -> Callable[..., Prober]:
    """Build a real Prober over an httpx.MockTransport handler."""

    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        elapsed_seconds: float = 0.05,
    ) -> Prober:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return Prober(client=client, timeout=1.0, clock=FakeClock(elapsed_seconds))

    return _make
