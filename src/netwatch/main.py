"""NetWatch application entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware

import netwatch.database as db_module
from netwatch.config import settings
from netwatch.flags.store import ensure_defaults, get_simulation_flag
from netwatch.notifier.broadcaster import ChangeNotifier
from netwatch.prober.icmp import IcmpProbe
from netwatch.prober.scheduler import HealthProber
from netwatch.registry.store import DeviceStore, seed_demo_devices
from netwatch.reports.reconciler import ReportReconciler

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


def _read_simulation_flag() -> bool:
    with Session(db_module.engine) as session:
        return get_simulation_flag(session)


def _build_engine_components(app: FastAPI) -> None:
    """Wire the notifier, store, reconciler and prober onto app.state."""
    notifier = ChangeNotifier(queue_size=settings.subscriber_queue_size)
    store = DeviceStore(
        db_module.engine,
        notifier=notifier,
        latency_threshold=settings.latency_threshold,
    )
    app.state.notifier = notifier
    app.state.store = store
    app.state.reconciler = ReportReconciler(store)
    app.state.prober = HealthProber(
        store,
        IcmpProbe(timeout=settings.probe_timeout),
        simulation_flag=_read_simulation_flag,
        interval=settings.probe_interval,
        freshness_window=settings.freshness_window,
        max_concurrent=settings.max_concurrent_probes,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    # Import models to register them with SQLModel before init_db()
    import netwatch.flags.models  # noqa: F401
    import netwatch.registry.models  # noqa: F401

    db_module.init_db()
    with Session(db_module.engine) as session:
        ensure_defaults(session, simulation_mode=settings.simulation_mode)
        if settings.seed_demo_devices:
            added = seed_demo_devices(session)
            if added:
                logger.info("Seeded %d demo devices", added)
    logger.info("Database initialized")

    _build_engine_components(app)
    if settings.prober_enabled:
        await app.state.prober.start()
    else:
        logger.info("Health prober disabled; relying on agent reports")

    yield

    await app.state.prober.stop()


app = FastAPI(
    title="NetWatch",
    description="Network device liveness and latency monitoring",
    version="0.1.0",
    lifespan=lifespan,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


app.add_middleware(SecurityHeadersMiddleware)


# Register routers
from netwatch.api.routes import router as api_router  # noqa: E402
from netwatch.api.stream import router as stream_router  # noqa: E402

app.include_router(api_router)
app.include_router(stream_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    logger.info("Starting NetWatch on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
