"""Endpoint registry: loads endpoints.yaml into an immutable list of probe targets.

The engine never mutates the registry; it is built once at startup and passed
to the store, scheduler and API as a tuple.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


# ── Data model ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Endpoint:
    """A monitored service and the URL it is probed at."""

    id: str
    display_name: str
    probe_url: str


DEFAULT_ENDPOINTS: tuple[Endpoint, ...] = (
    Endpoint(
        id="moecounter",
        display_name="MoeCounter API",
        probe_url="https://cloudflare-worker-monitor-proxy.vercel.app/api/proxy?target=moecounter",
    ),
    Endpoint(
        id="chatpulse",
        display_name="ChatPulse",
        probe_url="https://cloudflare-worker-monitor-proxy.vercel.app/api/proxy?target=chatpulse",
    ),
)


# ── Registry ─────────────────────────────────────────────────────────────────


class EndpointRegistry:
    """Read-only lookup over a fixed tuple of endpoints."""

    def __init__(self, endpoints: tuple[Endpoint, ...] | list[Endpoint]) -> None:
        seen: set[str] = set()
        for e in endpoints:
            if e.id in seen:
                raise ValueError(f"Duplicate endpoint id: {e.id}")
            seen.add(e.id)
        self._endpoints = tuple(endpoints)
        self._by_id = {e.id: e for e in self._endpoints}

    @property
    def endpoints(self) -> tuple[Endpoint, ...]:
        return self._endpoints

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(e.id for e in self._endpoints)

    def get(self, endpoint_id: str | None) -> Endpoint | None:
        if not endpoint_id:
            return None
        return self._by_id.get(endpoint_id)

    def __contains__(self, endpoint_id: object) -> bool:
        return endpoint_id in self._by_id

    def __iter__(self):
        return iter(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    def to_dict(self) -> list[dict[str, Any]]:
        """Serialize all endpoints for the API."""
        return [
            {"id": e.id, "name": e.display_name, "url": e.probe_url}
            for e in self._endpoints
        ]


# ── Loader ───────────────────────────────────────────────────────────────────


def load_endpoints(path: Path | None = None) -> EndpointRegistry:
    """Parse endpoints.yaml, falling back to the built-in defaults.

    Accepts either a list under ``endpoints:`` or a mapping of id → {name, url}.
    Malformed entries are skipped with a warning; duplicate ids raise ValueError.
    """
    if path is None or not path.exists():
        if path is not None:
            logger.warning("Endpoints file not found: %s, using defaults", path)
        return EndpointRegistry(DEFAULT_ENDPOINTS)

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        logger.error("Failed to parse %s: %s, using defaults", path, e)
        return EndpointRegistry(DEFAULT_ENDPOINTS)

    raw_endpoints = raw.get("endpoints") if isinstance(raw, dict) else raw
    if isinstance(raw_endpoints, dict):
        # Mapping format: { moecounter: {name: ..., url: ...} }
        items = [{"id": k, **(v or {})} for k, v in raw_endpoints.items()]
    else:
        items = raw_endpoints or []

    endpoints = []
    for entry in items:
        try:
            endpoints.append(_parse_endpoint(entry))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Skipping malformed endpoint entry: %s", e)

    registry = EndpointRegistry(endpoints)
    logger.info("Loaded %d endpoints from %s", len(registry), path)
    return registry


def _parse_endpoint(raw: dict[str, Any]) -> Endpoint:
    endpoint_id = str(raw["id"]).strip()
    url = str(raw["url"]).strip()
    if not endpoint_id:
        raise ValueError("endpoint 'id' is required")
    if not url.startswith(("http://", "https://")):
        raise ValueError(f"endpoint '{endpoint_id}' has a non-HTTP url: {url!r}")
    return Endpoint(
        id=endpoint_id,
        display_name=raw.get("name") or endpoint_id,
        probe_url=url,
    )
