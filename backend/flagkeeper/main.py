"""
Flagkeeper - Application Entry Point

Builds the FastAPI application that hosts the flag service:
- Structured logging setup
- Correlation ID middleware
- Flag service exception handlers
- Prometheus metrics endpoint
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from flagkeeper.core.error_handler import register_exception_handlers
from flagkeeper.core.logging import get_logger, setup_logging
from flagkeeper.core.middleware import CorrelationIDMiddleware
from flagkeeper.core.settings import settings
from flagkeeper.db.session import engine

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Dispose of the database engine on shutdown."""
    logger.info(
        "Starting flag service",
        extra={"policy": settings.flags.EVALUATION_POLICY.value}
    )
    try:
        yield
    finally:
        logger.info("Shutting down flag service...")
        await engine.dispose()


def create_application() -> FastAPI:
    """
    Create the FastAPI application.

    Routes are mounted by the embedding service; this app carries the
    shared middleware, error handlers and the metrics endpoint.
    """
    setup_logging()

    app = FastAPI(
        title=settings.app.TITLE,
        version=settings.app.VERSION,
        description=settings.app.DESCRIPTION,
        debug=settings.app.DEBUG,
        lifespan=lifespan,
    )

    app.add_middleware(CorrelationIDMiddleware)
    register_exception_handlers(app)
    app.mount("/metrics", make_asgi_app())

    return app
