"""Read-only query layer consumed by the status API."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from ..endpoints import EndpointRegistry
from .engine import HistoryEntry, now_ms
from .stats import summarize
from .store import DEFAULT_RETENTION_MS, HistoryStore


class InvalidQuery(Exception):
    """Raised for a missing or unregistered endpoint id."""


class StatusQuery:
    """Latest-status and history lookups, filtered to the retention window."""

    def __init__(
        self,
        registry: EndpointRegistry,
        store: HistoryStore,
        retention_ms: int = DEFAULT_RETENTION_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.registry = registry
        self.store = store
        self.retention_ms = retention_ms
        self.clock = clock

    def _require(self, endpoint_id: str | None) -> str:
        if not endpoint_id:
            raise InvalidQuery("Missing endpoint id")
        if endpoint_id not in self.registry:
            raise InvalidQuery(f"Unknown endpoint id: {endpoint_id}")
        return endpoint_id

    async def latest_all(self) -> dict[str, dict[str, Any] | None]:
        latest = await self.store.get_latest_all()
        return {k: (v.to_dict() if v else None) for k, v in latest.items()}

    async def history_entries(self, endpoint_id: str | None) -> list[HistoryEntry]:
        endpoint_id = self._require(endpoint_id)
        cutoff = self.clock() - self.retention_ms
        return await self.store.get_history(endpoint_id, since_ms=cutoff)

    async def history(self, endpoint_id: str | None) -> list[dict[str, Any]]:
        return [e.to_dict() for e in await self.history_entries(endpoint_id)]

    async def stats(self, endpoint_id: str | None) -> dict[str, Any]:
        entries = await self.history_entries(endpoint_id)
        return {"id": endpoint_id, **summarize(entries)}
