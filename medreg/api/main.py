"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures lifespan events and wires adapters into app state.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from psycopg_pool import ConnectionPool

from medreg.adapters.repository.postgres import run_migrations
from medreg.api.dependencies import build_components
from medreg.api.v1 import router as v1_router
from medreg.config.settings import get_settings

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "Medical participant registry API v1 - Email-proof registration "
        "of patients, hospitals and insurers, with admin review",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Creates database connection pool on startup (postgres backend)
    - Runs migrations on startup
    - Builds domain services and grants bootstrap admins
    - Closes connection pool on shutdown
    """
    settings = get_settings()

    logger.info("Starting application...")

    pool = None
    if settings.registry_backend == "postgres":
        logger.info("Connecting to database...")
        pool = ConnectionPool(
            conninfo=settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
        )

        logger.info("Running database migrations...")
        run_migrations(pool)
    else:
        logger.warning("Using in-memory registry; records are lost on shutdown")

    components = build_components(settings, pool)
    granted = components.queue.bootstrap_super_admins(settings.bootstrap_super_admins)
    if granted:
        logger.info(f"Bootstrapped {len(granted)} super admin(s)")

    # Store pool and services in app state for dependency injection
    app.state.pool = pool
    app.state.components = components

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    components.registry.close()
    if pool is not None:
        pool.close()
        logger.info("Database connection pool closed")


app = FastAPI(
    title="medreg",
    description="Medical participant registry - Proves control of an email address or "
    "organization domain and records the wallet's role",
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

# Include v1 API routes
app.include_router(v1_router, prefix="/v1")


@app.get("/health")
async def health_check(request: Request) -> dict[str, str]:
    """
    Health check endpoint with database validation.

    Returns 200 OK if application and database are healthy.
    Raises exception if database connection fails.
    """
    pool = request.app.state.pool
    if pool is not None:
        with pool.connection() as conn:
            conn.execute("SELECT 1")

    return {"status": "healthy"}
