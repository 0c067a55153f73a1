"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The connection registry is created with the app (so the WebSocket
route works even without a lifespan, e.g. in tests); the lifespan starts and
stops the event relays. Publishing is the CLI's job, not the server's.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adsync import __version__
from adsync.api import api_router
from adsync.config import settings
from adsync.logging_config import configure_logging
from adsync.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Relays reconnect on their own, so a broker that is down at
    startup only degrades /health — it doesn't stop the API from serving.
    """
    logger.info(
        "adsync.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from adsync.realtime.relay import RelayManager, default_relay_configs

    relays = None
    if settings.relay_enabled:
        relays = RelayManager(app.state.registry, default_relay_configs(settings))
        relays.start()
    app.state.relays = relays

    yield

    # Shutdown
    logger.info("adsync.shutdown", connections=len(app.state.registry))

    if relays is not None:
        await relays.stop()
    app.state.relays = None


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging(settings.log_level, settings.log_json)

    app = FastAPI(
        title="adsync",
        description="Marketplace listing sync backend — real-time event relay",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.registry = ConnectionRegistry()
    app.state.relays = None

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → CORS → handler

    from adsync.middleware.request_id import RequestIdMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route (real-time events)
    from adsync.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: adsync.main:app)
app = create_app()
