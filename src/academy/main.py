"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from academy.cart.router import router as cart_router
from academy.categories.router import router as categories_router
from academy.config import get_settings
from academy.database import close_db, init_db
from academy.entitlements.router import router as entitlements_router
from academy.health.router import router as health_router
from academy.middleware import setup_middleware
from academy.payments.router import router as webhooks_router
from academy.redis_client import close_redis, init_redis
from academy.videos.router import router as videos_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)
    else:
        logger.warning("No Redis URL configured; rate limiting is disabled")

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Academy API",
        description="Course sales, Mercado Pago payments and gated video streaming",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(webhooks_router)
    app.include_router(categories_router)
    app.include_router(videos_router)
    app.include_router(cart_router)
    app.include_router(entitlements_router)

    return app


app = create_app()
