"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException

from bulkflow.api.availability import router as availability_router
from bulkflow.api.operations import router as operations_router
from bulkflow.api.scheduling import router as scheduling_router
from bulkflow.core.database import db
from bulkflow.core.logging import logger, setup_logging
from bulkflow.middleware import (
    LoggingMiddleware,
    RequestIDMiddleware,
    setup_cors,
    setup_exception_handlers,
    setup_rate_limiting,
)
from bulkflow.services.executor import executor
from bulkflow.services.scheduler import (
    scheduler,
    setup_scheduler,
    shutdown_scheduler,
    start_scheduler,
)

# Configure logging
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    # Startup
    logger.info("application_starting")
    await db.connect()

    # Recovery job runs once immediately, then on its interval
    setup_scheduler()
    start_scheduler()

    logger.info("application_ready")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    shutdown_scheduler()
    await executor.shutdown()
    await db.disconnect()
    logger.info("application_stopped")


# Create FastAPI app
app = FastAPI(
    title="Bulkflow",
    description="Bulk operation processing and interview scheduling engine",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware: last added runs first, so request IDs are bound before logging
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
setup_cors(app)
setup_exception_handlers(app)
setup_rate_limiting(app)

# Include routers
app.include_router(operations_router)
app.include_router(scheduling_router)
app.include_router(availability_router)


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """
    Health check endpoint.

    Verifies database connectivity and reports pool, scheduler and executor state.

    Raises:
        HTTPException: 503 if database is unavailable
    """
    try:
        await db.fetchval("SELECT 1")

        # Get connection pool stats
        if not db.pool:
            raise RuntimeError("Database pool not initialized")

        pool_size = db.pool.get_size()
        pool_free = db.pool.get_idle_size()

        active = await db.fetchrow(
            """
            SELECT
                COUNT(*) FILTER (WHERE status = 'pending') AS pending,
                COUNT(*) FILTER (WHERE status = 'processing') AS processing
            FROM bulk_operations
            """
        )

        return {
            "status": "healthy",
            "database": "connected",
            "scheduler": "running" if scheduler.running else "stopped",
            "pool": {
                "size": pool_size,
                "free": pool_free,
                "in_use": pool_size - pool_free,
            },
            "operations": {
                "pending": active["pending"] if active else 0,
                "processing": active["processing"] if active else 0,
                "running_here": executor.active_count,
            },
        }
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Database unavailable") from e


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Bulkflow bulk operations and interview scheduling"}
