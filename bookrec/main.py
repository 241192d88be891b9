"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application.

Key Concepts:
=============

1. Application Factory Pattern
   - create_app() returns a configured app
   - Tests pass a pre-built service container made of in-memory fakes

2. Lifespan Events
   - startup: build the service container, open the cache tiers
   - shutdown: drain the worker pool, close HTTP and Redis connections

3. Exception Handlers
   - Database errors become 500 responses with a generic message
   - Everything else is logged with its traceback
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from bookrec.config import get_settings
from bookrec.dependencies import ServiceContainer, Services, build_services
from bookrec.routers import books_router, search_router

# =============================================================================
# Logging Configuration
# =============================================================================
# Configure logging before creating the app
settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Application Factory
# =============================================================================
def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services: Pre-built service container; built from settings at
            startup when omitted

    Returns:
        Configured FastAPI application instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # ----- STARTUP -----
        logger.info(f"Starting {settings.app_name}...")
        container = services or build_services(settings)
        container.open()
        if container.redis_cache is None or container.redis_cache.client is None:
            logger.warning("Redis unavailable - distributed cache tier disabled")
        app.state.services = container

        yield  # Application runs here

        # ----- SHUTDOWN -----
        logger.info(f"Shutting down {settings.app_name}...")
        container.close()

    app = FastAPI(
        title=settings.app_name,
        description="""
## Book Recommendation Engine

Book metadata aggregation, cover resolution and recommendations.

### Features
- **Books**: Lookup by canonical id, Google Books id, Open Library id or ISBN
- **Covers**: Multi-source cover resolution with provenance
- **Search**: Store-first search with provider fallback
- **Similar books**: Content-based recommendations
        """,
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # -------------------------------------------------------------------------
    # Exception Handlers
    # -------------------------------------------------------------------------
    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(
        request: Request,
        exc: SQLAlchemyError,
    ) -> JSONResponse:
        logger.error(f"Database error: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "detail": "A database error occurred. Please try again later."
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """
        Catch-all exception handler.

        In debug mode the error message is returned to the caller.
        """
        logger.error(f"Unhandled error: {exc}", exc_info=True)

        if settings.debug:
            return JSONResponse(
                status_code=500,
                content={"detail": str(exc)},
            )

        return JSONResponse(
            status_code=500,
            content={"detail": "An internal error occurred."},
        )

    # -------------------------------------------------------------------------
    # Register Routers
    # -------------------------------------------------------------------------
    # prefix="/api/v1" creates versioned URLs: /api/v1/books, /api/v1/search
    api_prefix = f"/api/{settings.api_version}"

    app.include_router(books_router, prefix=api_prefix)
    app.include_router(search_router, prefix=api_prefix)

    # -------------------------------------------------------------------------
    # Health Check Endpoint
    # -------------------------------------------------------------------------
    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check",
        description="Check if the engine is running and report cache tier status.",
    )
    def health_check(services: Services) -> dict:
        """
        Health check endpoint.

        Used by load balancers and monitoring; reports the local cache
        counters and Redis connectivity.
        """
        metrics = services.local_cache.metrics
        redis_stats = (
            services.redis_cache.stats()
            if services.redis_cache is not None
            else {"status": "disabled"}
        )
        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": settings.api_version,
            "local_cache": {
                "entries": services.local_cache.size(),
                "hits": metrics.hits,
                "misses": metrics.misses,
                "evictions": metrics.evictions,
                "hit_rate": round(metrics.hit_rate(), 2),
            },
            "redis": redis_stats,
            "s3_enabled": services.covers.object_storage is not None,
        }

    return app


# =============================================================================
# Application Instance
# =============================================================================
# This is what uvicorn imports: uvicorn bookrec.main:app

app = create_app()


# =============================================================================
# Development Server
# =============================================================================
# python -m bookrec.main

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "bookrec.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
