"""FastAPI application factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from thumbs.arenas.router import router as arenas_router
from thumbs.charts.router import router as charts_router
from thumbs.config import get_settings
from thumbs.database import close_db, init_db
from thumbs.health.router import router as health_router
from thumbs.ledger.router import router as ledger_router
from thumbs.middleware import setup_middleware
from thumbs.notifications.router import router as notifications_router
from thumbs.redis_client import close_redis, init_redis
from thumbs.support.router import router as support_router
from thumbs.users.router import router as users_router
from thumbs.ws.broadcaster import Broadcaster
from thumbs.ws.heartbeat import run_heartbeat
from thumbs.ws.registry import ConnectionRegistry
from thumbs.ws.router import router as ws_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    registry: ConnectionRegistry = app.state.registry
    heartbeat_task = asyncio.create_task(
        run_heartbeat(registry, settings.ws_heartbeat_interval_seconds),
        name="ws-heartbeat",
    )

    yield

    heartbeat_task.cancel()
    try:
        await heartbeat_task
    except asyncio.CancelledError:
        pass

    await registry.close_all()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Thumbs API",
        description="Backend API for Thumbs, live skill challenges with stakes and spectators",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    registry = ConnectionRegistry()
    app.state.registry = registry
    app.state.broadcaster = Broadcaster(registry)

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)
    app.include_router(ledger_router)
    app.include_router(notifications_router)
    app.include_router(charts_router)
    app.include_router(arenas_router)
    app.include_router(support_router)
    app.include_router(ws_router)

    return app


app = create_app()
