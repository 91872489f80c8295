"""Application factory for the FastAPI app.

Centralizes app construction (middleware, handlers, routers, lifespan) so
tests can build isolated instances.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ratekeeper.adapters.rate_limit.redis_store import close_shared_redis_store, get_shared_redis_store
from ratekeeper.api.routes import health_router, limits_router
from ratekeeper.core.config import settings
from ratekeeper.core.exception_handlers import setup_exception_handlers
from ratekeeper.core.logging import configure_logging
from ratekeeper.core.middleware import admission_middleware, request_id_middleware
from ratekeeper.core.openapi import apply_openapi_customizations
from ratekeeper.core.rate_limit import get_rate_limit_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("app.startup", extra={"app_env": settings.app_env})
    yield
    # The shared store connection belongs to the process, not to a request
    await close_shared_redis_store()
    logger.info("app.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.

    Raises:
        ConfigurationAppError: If the rate limit or Redis settings are invalid.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    if settings.rate_limit.enabled:
        # Fail fast on a bad limit/interval or Redis URL instead of on the first request
        get_rate_limit_manager()
        if settings.rate_limit.state_backend == "redis":
            get_shared_redis_store()

    app = FastAPI(
        title="Ratekeeper",
        description=(
            "Token-bucket admission control. Each caller (API key, forwarded "
            "client address, or anonymous) gets a bucket whose remaining count "
            "is persisted to a shared store so limits survive restarts."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    # Middleware: the last one added runs first, so request ids wrap admission
    app.middleware("http")(admission_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
