"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
store lifecycle) to keep main.py trivial and tests able to build fresh apps.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api.routes import health_router, rate_limit_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import close_window_store, get_window_store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create store indexes on startup and release the store on shutdown."""
    await get_window_store().ensure_indexes()
    try:
        yield
    finally:
        await close_window_store()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Rate Limiter API",
        description=(
            "Distributed fixed-window rate limiter. Each call consumes one request "
            "from the identity key's current window and answers allow, or deny "
            "with a Retry-After hint. Windows live in a shared TTL-indexed store."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limit_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (tags, Retry-After header docs)
    apply_openapi_customizations(app)

    return app
