"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.exceptions import RedisError

from xpl.config import get_settings
from xpl.database import close_db, create_all, init_db
from xpl.health.router import router as health_router
from xpl.middleware import setup_middleware
from xpl.progress.router import router as progress_router
from xpl.redis_client import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.database_url.startswith("sqlite"):
        # No migrations for local SQLite runs
        await create_all()

    await init_redis(settings.redis_url)
    try:
        await get_redis().ping()
    except RedisError:
        # Notifications and rate limiting degrade; completions still work.
        logger.warning("Redis unreachable at startup", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="XP Ledger API",
        description="Challenge completion, XP ledger, streaks and ranks",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(progress_router)

    return app


app = create_app()
