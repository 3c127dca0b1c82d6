"""FastAPI server for the status monitor."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pulsesync.api.status_routes import status_router
from pulsesync.config import Settings, settings as default_settings
from pulsesync.endpoints import EndpointRegistry, load_endpoints
from pulsesync.health.engine import Prober
from pulsesync.health.query import StatusQuery
from pulsesync.health.scheduler import HealthScheduler
from pulsesync.health.store import (
    HistoryStore,
    KVStore,
    MemoryKVStore,
    SQLiteKVStore,
    StorageUnavailable,
)

logger = logging.getLogger(__name__)


def build_kv(cfg: Settings) -> KVStore:
    if cfg.store_backend == "memory":
        return MemoryKVStore()
    if cfg.store_backend == "sqlite":
        return SQLiteKVStore(cfg.sqlite_path)
    raise ValueError(f"Unknown store backend: {cfg.store_backend!r}")


def wire_state(
    app: FastAPI,
    registry: EndpointRegistry,
    kv: KVStore,
    prober: Prober,
    cfg: Settings,
) -> None:
    """Attach the engine components to ``app.state``."""
    store = HistoryStore(kv, registry.ids)
    app.state.registry = registry
    app.state.kv = kv
    app.state.store = store
    app.state.prober = prober
    app.state.query = StatusQuery(registry, store, retention_ms=cfg.retention_ms)
    app.state.scheduler = HealthScheduler(
        registry.endpoints,
        store,
        prober,
        interval=cfg.check_interval_seconds,
        retention_ms=cfg.retention_ms,
    )


def create_app(cfg: Settings | None = None) -> FastAPI:
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize shared resources on startup."""
        registry = load_endpoints(cfg.endpoints_path)
        kv = build_kv(cfg)
        prober = Prober(timeout=cfg.probe_deadline_seconds, user_agent=cfg.user_agent)
        wire_state(app, registry, kv, prober, cfg)
        logger.info("Monitoring %d endpoints (store=%s)", len(registry), cfg.store_backend)

        scheduler = app.state.scheduler
        if cfg.scheduler_enabled:
            try:
                await scheduler.start()
            except Exception:
                logger.exception("Scheduler failed to start")

        yield

        # Shutdown
        await scheduler.stop()
        await prober.aclose()
        kv.close()

    app = FastAPI(
        title="Pulse Sync - Status Monitor",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def no_store(request: Request, call_next):
        response = await call_next(request)
        response.headers["Cache-Control"] = "no-store"
        return response

    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable(request: Request, exc: StorageUnavailable) -> JSONResponse:
        logger.error("Storage unavailable on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})

    app.include_router(status_router)

    return app


app = create_app()
