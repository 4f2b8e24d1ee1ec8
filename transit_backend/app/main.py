"""
FastAPI Application Entry Point.

This is the main application file for the Transit Tracking Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from transit_backend.app.core.config import settings
from transit_backend.app.api.v1.router import router as api_v1_router
from transit_backend.app.db.session import engine, Base
from transit_backend.app.core.redis_client import ping_redis
from transit_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from transit_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from transit_backend.app.services.broadcaster import broadcaster
from transit_backend.app.services.gps_simulator import simulator

# Import models to ensure they are registered with Base
from transit_backend.app.models.user import User
from transit_backend.app.models.audit_log import AuditLog
from transit_backend.app.models.fleet import Fleet
from transit_backend.app.models.route import Route
from transit_backend.app.models.device import Device
from transit_backend.app.models.route_assignment import RouteAssignment
from transit_backend.app.models.booking import Booking
from transit_backend.app.models.position_record import PositionRecord
from transit_backend.app.models.archived_position_record import ArchivedPositionRecord

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Starts the tracking broadcaster.
    3. Stops the simulator and broadcaster on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await broadcaster.start()
    logger.info("%s started", settings.app_name)
    yield
    await simulator.stop()
    await broadcaster.stop()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Real-time vehicle tracking backend for public transit",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and dependency state
    """
    redis_ok = await ping_redis()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "connected" if redis_ok else "unavailable",
        "broadcaster": "running" if broadcaster.running else "stopped",
        "simulation": "running" if simulator.running else "stopped",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Transit Tracking Backend API",
        "docs": "/docs",
        "health": "/health",
        "websocket": f"/{settings.api_version}/tracking/ws",
    }
