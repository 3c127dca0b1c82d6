"""Status API routes.

Endpoints:
  GET  /status            latest snapshot per endpoint (null if never probed)
  GET  /history?id=       retained history for one endpoint, oldest first
  GET  /stats?id=         uptime / latency summary + per-day rollup
  GET  /endpoints         the registered probe targets
  GET  /test?id=          raw debug probe, nothing stored
  POST /__seed_now__      run one probe+store+purge pass now
  POST /__reset_today__   drop today's (UTC) history entries
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from pulsesync.health.engine import now_ms
from pulsesync.health.query import InvalidQuery

logger = logging.getLogger(__name__)

status_router = APIRouter()


# ── Read endpoints ───────────────────────────────────────────────────────────


@status_router.get("/status")
async def get_status(request: Request) -> dict[str, Any]:
    """Latest snapshot for every registered endpoint."""
    return await request.app.state.query.latest_all()


@status_router.get("/history")
async def get_history(request: Request, id: str | None = None) -> list[dict[str, Any]]:
    """History for one endpoint, filtered to the retention window."""
    try:
        return await request.app.state.query.history(id)
    except InvalidQuery as e:
        raise HTTPException(status_code=400, detail=str(e))


@status_router.get("/stats")
async def get_stats(request: Request, id: str | None = None) -> dict[str, Any]:
    try:
        return await request.app.state.query.stats(id)
    except InvalidQuery as e:
        raise HTTPException(status_code=400, detail=str(e))


@status_router.get("/endpoints")
def list_endpoints(request: Request) -> dict[str, Any]:
    return {"endpoints": request.app.state.registry.to_dict()}


# ── Debug ────────────────────────────────────────────────────────────────────


@status_router.get("/test")
async def debug_probe(request: Request, id: str | None = None) -> dict[str, Any]:
    """Probe one endpoint and return the raw response details."""
    registry = request.app.state.registry
    if not id:
        if not registry.endpoints:
            raise HTTPException(status_code=400, detail="No endpoints registered")
        endpoint = registry.endpoints[0]
    else:
        endpoint = registry.get(id)
        if endpoint is None:
            raise HTTPException(status_code=400, detail=f"Unknown endpoint id: {id}")
    return await request.app.state.prober.inspect(endpoint)


# ── Admin ────────────────────────────────────────────────────────────────────


@status_router.post("/__seed_now__")
async def seed_now(request: Request) -> dict[str, Any]:
    """Run the scheduled pass on demand. Safe to repeat within an hour."""
    report = await request.app.state.scheduler.run_now()
    logger.info("Manual cycle triggered: %d failed", len(report.failed))
    return report.to_dict()


@status_router.post("/__reset_today__")
async def reset_today(request: Request) -> dict[str, Any]:
    """Remove every history entry recorded on the current UTC day."""
    store = request.app.state.store
    now = now_ms()
    removed = {}
    for endpoint_id in request.app.state.registry.ids:
        removed[endpoint_id] = await store.reset_day(endpoint_id, now)
    logger.info("Reset today's history: %s", removed)
    return {"removed": removed}
