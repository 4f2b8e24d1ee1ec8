"""
Real-time tracking API endpoints.

Devices post position reports; passengers and dashboards read the live
view, per-route vehicles and booking ETAs, or subscribe over WebSocket.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from transit_backend.app.core.clock import utcnow, to_naive_utc
from transit_backend.app.core.config import settings
from transit_backend.app.core.dependencies import get_current_user
from transit_backend.app.core.exceptions import InvalidPayloadError
from transit_backend.app.core.guards import require_role, OwnershipGuard
from transit_backend.app.db.session import get_db
from transit_backend.app.models.booking import Booking
from transit_backend.app.models.enums import UserRole
from transit_backend.app.models.route import Route
from transit_backend.app.schemas.tracking import (
    PositionReport, PositionUpdateResponse, LiveLocationsResponse, RouteVehiclesResponse,
    RouteSummary, EtaResponse, VehicleHistoryResponse, TrackingAnalyticsResponse
)
from transit_backend.app.services.broadcaster import broadcaster, route_channel, ALL_CHANNEL
from transit_backend.app.services.live_positions import (
    get_latest_positions, parse_bounds, parse_operational_status, parse_vehicle_type,
    route_statistics, estimate_booking_eta
)
from transit_backend.app.services.tracking import TrackingService, progress_view
from transit_backend.app.services.tracking_analytics import TrackingAnalyticsService, DEFAULT_PERIOD

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tracking", tags=["Tracking"])
ownership_guard = OwnershipGuard()


@router.post("/update", response_model=PositionUpdateResponse)
async def update_location(
    payload: dict = Body(...),
    db: AsyncSession = Depends(get_db)
):
    """
    Ingest one position report from a tracking device.

    Validates:
    - Required fields (deviceId, vehicleId, location, operationalInfo.tripInfo.routeId)
    - Device, route and active assignment exist

    Actions:
    - Stores the record with server-derived route progress
    - Broadcasts the update to subscribers
    """
    try:
        report = PositionReport.model_validate(payload)
    except ValidationError as e:
        raise InvalidPayloadError(
            errors=e.errors(include_url=False, include_context=False, include_input=False)
        )

    record = await TrackingService.record_position(db, report)

    return PositionUpdateResponse(
        message="Location updated successfully",
        tracking_id=record.id,
        timestamp=record.timestamp,
        status=record.status,
        route_progress=progress_view(record),
    )


@router.get("/live", response_model=LiveLocationsResponse)
async def get_live_locations(
    route_id: Optional[int] = Query(None, description="Only vehicles on this route"),
    vehicle_type: Optional[str] = Query(None, description="bus or train"),
    status_filter: Optional[str] = Query(None, alias="status", description="Operational status"),
    bounds: Optional[str] = Query(None, description='JSON {"northEast":{"lat","lng"},"southWest":{"lat","lng"}}'),
    limit: int = Query(50, ge=1, le=500),
    include_stale: bool = Query(False, description="Ignore the live window (debugging)"),
    db: AsyncSession = Depends(get_db)
):
    """
    Latest position of every vehicle currently reporting.

    Returns one entry per vehicle with its connection status.
    """
    now = utcnow()
    vehicles = await get_latest_positions(
        db,
        route_id=route_id,
        vehicle_type=parse_vehicle_type(vehicle_type),
        status=parse_operational_status(status_filter),
        bounds=parse_bounds(bounds),
        limit=limit,
        include_stale=include_stale,
        now=now,
    )

    return LiveLocationsResponse(
        vehicles=vehicles,
        total_vehicles=len(vehicles),
        last_update=now,
        source="live" if vehicles else "no_live_data",
    )


@router.get("/route/{route_id}", response_model=RouteVehiclesResponse)
async def get_route_vehicles(
    route_id: int = Path(..., description="Route ID"),
    db: AsyncSession = Depends(get_db)
):
    """Vehicles reporting on one route in the last few minutes, with on-time statistics."""
    route = (await db.execute(select(Route).where(Route.id == route_id))).scalar_one_or_none()
    if not route:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Route not found"
        )

    now = utcnow()
    vehicles = await get_latest_positions(
        db,
        route_id=route_id,
        limit=500,
        window_minutes=settings.route_vehicle_window_minutes,
        now=now,
    )

    return RouteVehiclesResponse(
        route=RouteSummary(
            id=route.id,
            route_code=route.route_code,
            name=route.name,
            start_location=route.start_name,
            end_location=route.end_name,
        ),
        vehicles=vehicles,
        statistics=route_statistics(vehicles),
        last_update=now,
    )


@router.get("/eta/{booking_id}", response_model=EtaResponse)
async def get_booking_eta(
    booking_id: int = Path(..., description="Booking ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Estimated departure for a booking from the vehicle serving it.

    A booking without any vehicle reporting on its route returns 200 with
    status "no_tracking".
    """
    booking = (await db.execute(select(Booking).where(Booking.id == booking_id))).scalar_one_or_none()
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Booking not found"
        )

    ownership_guard.enforce(booking.user_id, current_user, "booking")

    return await estimate_booking_eta(db, booking)


@router.get("/history/{vehicle_id}", response_model=VehicleHistoryResponse)
async def get_vehicle_history(
    vehicle_id: str = Path(..., description="Vehicle ID"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Position history of one vehicle, newest first (admin only)."""
    return await TrackingAnalyticsService.get_vehicle_history(
        db, vehicle_id, to_naive_utc(start_date), to_naive_utc(end_date), limit
    )


@router.get("/analytics", response_model=TrackingAnalyticsResponse)
async def get_tracking_analytics(
    period: str = Query(DEFAULT_PERIOD, description="1h, 6h, 24h or 7d"),
    route_id: Optional[int] = Query(None),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Tracking volume, delays and status mix over a period (admin only)."""
    return await TrackingAnalyticsService.get_analytics(db, period, route_id)


async def _wait_for_disconnect(websocket: WebSocket):
    # Client frames of any kind are ignored
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws")
async def tracking_websocket(
    websocket: WebSocket,
    route_id: Optional[int] = Query(None)
):
    """
    Stream tracking updates for one route (or all routes).

    The first message confirms the subscription channel.
    """
    await websocket.accept()
    queue = broadcaster.subscribe(route_id)
    channel = route_channel(route_id) if route_id is not None else ALL_CHANNEL
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))

    try:
        await websocket.send_json({"type": "subscribed", "channel": channel})
        while True:
            next_update = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({next_update, disconnected}, return_when=asyncio.FIRST_COMPLETED)
            if disconnected in done:
                next_update.cancel()
                break
            await websocket.send_json(next_update.result())
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.unsubscribe(queue)
        disconnected.cancel()
        logger.debug("WebSocket subscriber left %s", channel)
