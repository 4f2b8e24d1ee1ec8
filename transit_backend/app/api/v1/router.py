"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from transit_backend.app.api.v1.endpoints import (
    auth, tracking, admin_registry, simulation, admin_ops
)

router = APIRouter()

# Authentication
router.include_router(auth.router)

# Real-time tracking (ingest, live view, ETA, WebSocket)
router.include_router(tracking.router)

# Admin: registry provisioning
router.include_router(admin_registry.router)

# Admin: GPS simulation
router.include_router(simulation.router)

# Admin: ops
router.include_router(admin_ops.router)
