"""FastAPI application wiring for the support relay.

This module bootstraps the HTTP API:

- Configures logging, CORS for the widget origins, Prometheus metrics and
  rate limiting.
- Owns the lifecycle of the state store, the realtime hub and the bot
  adapter, and hands all three to a single :class:`RelayCoordinator`.
- Starts the Telegram poller (or registers the webhook) on startup and stops
  it on shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.orm import Session, sessionmaker

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .channels import BotAdapter, RealtimeHub, build_bot_adapter
from .config import Settings, get_settings
from .models.session import get_sessionmaker
from .rate_limit import limiter
from .routers import admin, agents, chat, realtime, webhook
from .routing.coordinator import RelayCoordinator
from .store import InMemoryStateStore, PostgresStateStore, StateStore

logger = logging.getLogger("supportrelay.main")


async def _open_store(settings: Settings) -> StateStore:
    if settings.database_url:
        return await PostgresStateStore.connect(settings.database_url)
    logger.warning("DATABASE_URL is not set; using a non-persistent in-memory store")
    return InMemoryStateStore()


def create_app(
    settings: Settings | None = None,
    *,
    store: StateStore | None = None,
    bot: BotAdapter | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> FastAPI:
    """Build the application; the keyword overrides exist for tests."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        relay_store = store or await _open_store(settings)
        bot_adapter = bot or build_bot_adapter(settings)
        hub = RealtimeHub()
        coordinator = RelayCoordinator(relay_store, hub, bot_adapter, settings=settings)
        app.state.store = relay_store
        app.state.bot = bot_adapter
        app.state.hub = hub
        app.state.coordinator = coordinator
        await bot_adapter.start(coordinator.handle_bot_event)
        logger.info(
            "Relay started (bot channel: %s, mode: %s)",
            bot_adapter.channel_name,
            settings.telegram_mode,
        )
        try:
            yield
        finally:
            await bot_adapter.stop()
            await relay_store.close()
            logger.info("Relay stopped")

    app = FastAPI(title="SupportRelay", version=__version__, lifespan=lifespan)
    init_logging(app)
    app.state.settings = settings
    app.state.session_factory = session_factory or (
        get_sessionmaker(settings.database_url) if settings.database_url else None
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.include_router(chat.router)
    app.include_router(webhook.router)
    app.include_router(agents.router)
    app.include_router(admin.router)
    app.include_router(realtime.router)

    @app.get("/api/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok", "relay": hasattr(app.state, "coordinator")}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )
    return app


app = create_app()
