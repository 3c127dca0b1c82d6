"""Probe engine: issues HTTP probes and classifies the outcome.

A probe never raises: network errors, timeouts, non-2xx responses and
unhealthy JSON bodies all fold into HealthState.DOWN.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from ..endpoints import Endpoint

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 800
HEALTHY_TOKENS = frozenset({"ok", "operational"})
HOUR_MS = 60 * 60 * 1000
DEFAULT_USER_AGENT = "Pulse-Sync-Monitor"


# ── Models ───────────────────────────────────────────────────────────────────


class HealthState(str, Enum):
    OPERATIONAL = "OPERATIONAL"
    SLOW = "SLOW"
    DOWN = "DOWN"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single probe, before it is stamped into the history."""

    status: HealthState
    response_time_ms: int


@dataclass(frozen=True)
class HistoryEntry:
    """One hour-bucketed sample, as persisted under ``history:{id}`` / ``latest:{id}``."""

    timestamp_ms: int
    status: HealthState
    response_time_ms: int

    def __post_init__(self) -> None:
        if self.response_time_ms < 0:
            raise ValueError(f"response_time_ms must be >= 0, got {self.response_time_ms}")
        if self.status == HealthState.UNKNOWN:
            raise ValueError("UNKNOWN is not a storable health state")

    @property
    def hour_bucket(self) -> int:
        return floor_to_hour(self.timestamp_ms)

    @classmethod
    def from_probe(cls, result: ProbeResult, at_ms: int) -> "HistoryEntry":
        return cls(
            timestamp_ms=floor_to_hour(at_ms),
            status=result.status,
            response_time_ms=result.response_time_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp_ms,
            "status": self.status.value,
            "responseTime": self.response_time_ms,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "HistoryEntry":
        return cls(
            timestamp_ms=int(raw["timestamp"]),
            status=normalize_status(raw["status"]),
            response_time_ms=int(raw.get("responseTime", 0)),
        )


@dataclass(frozen=True)
class ProbeBody:
    """The only part of a probe response body the classifier looks at."""

    status: str | None = None


class MalformedBody(ValueError):
    """Raised when a JSON-typed probe body does not parse."""


# ── Time helpers ─────────────────────────────────────────────────────────────


def now_ms() -> int:
    return int(time.time() * 1000)


def floor_to_hour(timestamp_ms: int) -> int:
    """Truncate a UTC epoch-millisecond timestamp to the start of its hour."""
    return timestamp_ms - timestamp_ms % HOUR_MS


# ── Classification ───────────────────────────────────────────────────────────


def parse_probe_body(body: bytes | str) -> ProbeBody:
    """Extract the optional ``status`` field from a JSON body.

    Non-object JSON and null/empty/zero ``status`` values count as "no status".
    """
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedBody(str(e)) from e

    if not isinstance(data, dict):
        return ProbeBody()
    status = data.get("status")
    if status is None or status is False or status in ("", 0):
        return ProbeBody()
    return ProbeBody(status=str(status))


def is_semantically_healthy(body: ProbeBody) -> bool:
    return body.status is None or body.status.lower() in HEALTHY_TOKENS


def latency_state(elapsed_ms: float) -> HealthState:
    """Healthy probes split on the slow threshold; shared by read-side code too."""
    return HealthState.SLOW if elapsed_ms > SLOW_THRESHOLD_MS else HealthState.OPERATIONAL


def classify(
    status_code: int | None,
    content_type: str | None,
    body: bytes | str | None,
    elapsed_ms: float,
) -> HealthState:
    """Map an HTTP outcome to a HealthState. ``status_code=None`` means no response."""
    if status_code is None or not 200 <= status_code < 300:
        return HealthState.DOWN

    if content_type and "application/json" in content_type.lower():
        try:
            parsed = parse_probe_body(body or b"")
        except MalformedBody:
            return HealthState.DOWN
        if not is_semantically_healthy(parsed):
            return HealthState.DOWN

    return latency_state(elapsed_ms)


def normalize_status(value: Any) -> HealthState:
    """Lenient read-side mapping of a stored/remote status string."""
    s = str(value).lower()
    if s in HEALTHY_TOKENS:
        return HealthState.OPERATIONAL
    if s == "slow":
        return HealthState.SLOW
    if s == "down":
        return HealthState.DOWN
    return HealthState.UNKNOWN


# ── Prober ───────────────────────────────────────────────────────────────────


class Prober:
    """Issues one GET per endpoint over a shared httpx.AsyncClient.

    Pass ``client`` to reuse an existing client (tests use a MockTransport);
    otherwise one is created lazily and closed by ``aclose()``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._client = client
        self._clock = clock
        self._owns_client = client is None
        self.timeout = timeout
        self.user_agent = user_agent

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": self.user_agent,
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def _get(self, url: str) -> httpx.Response:
        # httpx timeouts are per phase; the deadline bounds the whole request
        return await asyncio.wait_for(
            self._get_client().get(url, headers=self.headers, timeout=self.timeout),
            self.timeout,
        )

    async def probe(self, endpoint: Endpoint) -> ProbeResult:
        """Probe one endpoint. Never raises; failures come back as DOWN."""
        t0 = self._clock()
        try:
            resp = await self._get(endpoint.probe_url)
        except (httpx.TimeoutException, asyncio.TimeoutError):
            elapsed = self._elapsed_ms(t0)
            logger.info("Probe %s timed out after %dms", endpoint.id, elapsed)
            return ProbeResult(HealthState.DOWN, elapsed)
        except httpx.HTTPError as e:
            elapsed = self._elapsed_ms(t0)
            logger.info("Probe %s failed: %s: %s", endpoint.id, type(e).__name__, e)
            return ProbeResult(HealthState.DOWN, elapsed)
        except Exception:
            logger.exception("Unexpected probe error for %s", endpoint.id)
            return ProbeResult(HealthState.DOWN, self._elapsed_ms(t0))

        elapsed = self._elapsed_ms(t0)
        status = classify(resp.status_code, resp.headers.get("content-type"), resp.content, elapsed)
        logger.debug(
            "Probe %s: HTTP %d → %s (%dms)", endpoint.id, resp.status_code, status.value, elapsed,
        )
        return ProbeResult(status, elapsed)

    async def inspect(self, endpoint: Endpoint) -> dict[str, Any]:
        """Raw probe for debugging; returns what the classifier would see."""
        try:
            resp = await self._get(endpoint.probe_url)
        except asyncio.TimeoutError:
            return {"error": f"Timed out after {self.timeout}s"}
        except httpx.HTTPError as e:
            return {"error": str(e) or type(e).__name__}

        body_text = resp.text
        try:
            body_parsed = json.loads(body_text)
        except ValueError:
            body_parsed = None

        return {
            "url": endpoint.probe_url,
            "statusCode": resp.status_code,
            "contentType": resp.headers.get("content-type"),
            "bodyPreview": body_text[:300],
            "bodyParsed": body_parsed,
        }

    def _elapsed_ms(self, t0: float) -> int:
        return max(0, int(round((self._clock() - t0) * 1000)))

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Prober":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()
