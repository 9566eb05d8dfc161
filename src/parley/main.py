"""FastAPI application factory.

Learn: create_app() builds the process-wide realtime objects (live feed
registry, presence tracker, broker gateway, relay) and stores them on
app.state, then wires middleware and routers. The lifespan only starts
and stops them:

startup:  connect gateway -> start presence cleanup -> start relay listener
shutdown: stop listener -> stop presence -> close subscriptions
          -> close gateway -> dispose DB engine

A broker that is down at startup does not stop the app. Reads and live
subscriptions keep working; mutations answer 502 until it is back. The
gateway reconnects on the next publish and the listener keeps retrying
with back-off, so no restart is needed once Redis returns.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from parley import __version__
from parley.api import api_router
from parley.api.messages import broker_error_handler
from parley.broker.gateway import BrokerError, BrokerGateway, BrokerUnavailable
from parley.broker.listener import BrokerListener
from parley.config import settings
from parley.log import configure_logging
from parley.middleware.request_id import RequestIdMiddleware
from parley.middleware.security import SecurityHeadersMiddleware
from parley.realtime.presence import PresenceTracker
from parley.realtime.registry import LiveFeedRegistry
from parley.realtime.websocket import router as ws_router
from parley.relay.consumer import EventRelay

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: anything before `yield` runs at startup, after `yield` at
    shutdown.
    """
    state = app.state
    logger.info(
        "parley.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    try:
        await state.gateway.connect()
    except BrokerUnavailable as e:
        logger.warning("parley.broker_unavailable", error=str(e))

    state.presence.start()

    listener_task = None
    if settings.relay_enabled:
        state.listener = BrokerListener(
            state.gateway,
            state.relay.handle,
            consumer=settings.broker_consumer,
            block_ms=settings.broker_block_ms,
            batch_size=settings.broker_batch_size,
        )
        listener_task = asyncio.create_task(state.listener.run())

    yield

    logger.info("parley.shutdown")

    if listener_task is not None:
        state.listener.stop()
        listener_task.cancel()
        try:
            await listener_task
        except asyncio.CancelledError:
            pass

    await state.presence.stop()
    state.feed.teardown()
    await state.gateway.close()

    from parley.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="Parley",
        description="Real-time chat backend with durable fan-out notifications",
        version=__version__,
        lifespan=lifespan,
    )

    feed = LiveFeedRegistry(max_pending=settings.feed_max_pending)
    app.state.feed = feed
    app.state.presence = PresenceTracker(
        feed,
        cleanup_interval=settings.presence_cleanup_interval_seconds,
        max_age_minutes=settings.presence_max_age_minutes,
    )
    app.state.gateway = BrokerGateway.from_settings()
    app.state.relay = EventRelay(feed)
    app.state.listener = None

    # ── Middleware stack ──────────────────────────────────────
    # Starlette runs middleware in reverse order of registration:
    # RequestId -> Security -> CORS -> handler
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(BrokerError, broker_error_handler)

    app.include_router(api_router)
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: parley.main:app)
app = create_app()
