from __future__ import annotations

"""FastAPI entrypoint: timer API, live streams and the expiration sweeper."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

import click
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ctrlsys import config
from ctrlsys.events.broadcast_hub import BroadcastHub
from ctrlsys.interfaces.api.errors import register_error_handlers
from ctrlsys.interfaces.api.schemas import HealthResponse
from ctrlsys.observability.tracing import init_tracer
from ctrlsys.observability.prometheus_metrics import router as metrics_router
from ctrlsys.persistence.store_factory import StoreProvider

# ──────────────────────── routers ─────────────────────────
from ctrlsys.interfaces.api.control_plane_endpoints import router as control_plane_router
from ctrlsys.interfaces.api.timer_endpoints import router as timer_router
from ctrlsys.interfaces.websocket.connection_manager import ConnectionManager
from ctrlsys.interfaces.websocket.routes import router as websocket_router

# worker
from ctrlsys.worker.timer_worker import run_sweeper_loop

logger = logging.getLogger(__name__)


def create_app(
    *,
    store_backend: str = config.STORE_BACKEND,
    database_url: Optional[str] = None,
    store_provider: Optional[StoreProvider] = None,
    sweep_interval: float = config.SWEEP_INTERVAL_SECONDS,
    ws_push_interval: float = config.WS_PUSH_INTERVAL_SECONDS,
    hub_buffer_size: int = config.HUB_BUFFER_SIZE,
    list_retention_hours: int = config.LIST_RETENTION_HOURS,
    api_tokens: Optional[List[str]] = None,
    start_sweeper: bool = True,
    enable_prometheus: bool = config.ENABLE_PROMETHEUS,
) -> FastAPI:
    """Build the control plane app; everything shared lives on ``app.state``."""

    provider = store_provider or StoreProvider(store_backend, database_url=database_url)
    hub = BroadcastHub(hub_buffer_size)

    # ─────────────────── lifespan context manager ──────────────
    @asynccontextmanager
    async def lifespan(app: FastAPI):  # type: ignore[valid-type]
        """Init schema, start the sweeper on startup; stop it on shutdown."""
        await provider.init_schema()

        workers: list[asyncio.Task] = []
        if start_sweeper:
            workers.append(
                asyncio.create_task(run_sweeper_loop(provider.scope, hub, interval_seconds=sweep_interval))
            )
            logger.info("Sweeper started: interval=%ss backend=%s", sweep_interval, provider.backend)

        app.state.workers = workers  # type: ignore[attr-defined]
        try:
            yield
        finally:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            hub.clear()
            await provider.dispose()
            logger.info("Sweeper and store shut down.")

    app = FastAPI(
        title="ctrlsys",
        description="Homelab control plane: countdown timers",
        lifespan=lifespan,
    )
    app.state.store_provider = provider
    app.state.hub = hub
    app.state.ws_manager = ConnectionManager()
    app.state.ws_push_interval = ws_push_interval
    app.state.list_retention = timedelta(hours=list_retention_hours)
    app.state.api_tokens = list(config.API_TOKENS if api_tokens is None else api_tokens)

    if enable_prometheus:
        app.include_router(metrics_router)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(timer_router)
    app.include_router(websocket_router)
    app.include_router(control_plane_router)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="healthy",
            subscribers=hub.subscriber_count,
            streams=app.state.ws_manager.active_count,
        )

    return app


# OTEL (no-op unless ENABLE_OTEL)
init_tracer("ctrlsys")

app = create_app()


# ─────────────────────────── run uvicorn ────────────────────
@click.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--log-level", default=config.LOG_LEVEL, show_default=True)
def serve(host, port, log_level):
    """Run the control plane API with uvicorn."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    uvicorn.run(app, host=host, port=port, log_level=log_level.lower(), reload=False)


if __name__ == "__main__":
    serve()
