"""
Latest-position index.

Computed at read time from the tracking log: the newest active record per
vehicle (ties broken by id), joined to the registries so vehicles whose
device, route, assignment or fleet no longer resolves (or is not
approved) drop out.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, date, time
from typing import List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from transit_backend.app.core.clock import utcnow
from transit_backend.app.core.config import settings
from transit_backend.app.core.exceptions import InvalidPayloadError
from transit_backend.app.models.booking import Booking
from transit_backend.app.models.device import Device
from transit_backend.app.models.fleet import Fleet
from transit_backend.app.models.position_record import PositionRecord
from transit_backend.app.models.route import Route
from transit_backend.app.models.route_assignment import RouteAssignment
from transit_backend.app.models.route_enums import ApprovalStatus, AssignmentStatus, VehicleType
from transit_backend.app.models.tracking_enums import OperationalStatus
from transit_backend.app.schemas.tracking import (
    LatestPositionView, RouteVehicleStatistics, EtaResponse, EtaDetail, EtaVehicle, BookingSummary
)
from transit_backend.app.services.tracking import latest_position_view

ON_TIME_DELAY_MINUTES = 5
SEVERE_DELAY_MINUTES = 15


@dataclass
class Bounds:
    north: float
    east: float
    south: float
    west: float


def parse_bounds(raw: Optional[str]) -> Optional[Bounds]:
    """
    Parse `{"northEast": {"lat", "lng"}, "southWest": {"lat", "lng"}}`.

    Raises:
        InvalidPayloadError: malformed JSON or missing corners
    """
    if not raw:
        return None
    try:
        data = json.loads(raw)
        bounds = Bounds(
            north=float(data["northEast"]["lat"]),
            east=float(data["northEast"]["lng"]),
            south=float(data["southWest"]["lat"]),
            west=float(data["southWest"]["lng"]),
        )
    except (ValueError, TypeError, KeyError):
        raise InvalidPayloadError(
            "Invalid bounds parameter",
            errors=[{"loc": ["query", "bounds"], "msg": "expected {northEast:{lat,lng}, southWest:{lat,lng}}"}]
        )
    return bounds


def parse_operational_status(raw: Optional[str]) -> Optional[OperationalStatus]:
    if not raw:
        return None
    try:
        return OperationalStatus(raw)
    except ValueError:
        raise InvalidPayloadError(
            f"Unknown status '{raw}'",
            errors=[{"loc": ["query", "status"], "msg": f"one of {[s.value for s in OperationalStatus]}"}]
        )


def parse_vehicle_type(raw: Optional[str]) -> Optional[VehicleType]:
    if not raw:
        return None
    try:
        return VehicleType(raw)
    except ValueError:
        raise InvalidPayloadError(
            f"Unknown vehicle type '{raw}'",
            errors=[{"loc": ["query", "vehicle_type"], "msg": f"one of {[t.value for t in VehicleType]}"}]
        )


async def get_latest_positions(
    db: AsyncSession,
    route_id: Optional[int] = None,
    vehicle_type: Optional[VehicleType] = None,
    status: Optional[OperationalStatus] = None,
    bounds: Optional[Bounds] = None,
    limit: int = 50,
    include_stale: bool = False,
    window_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[LatestPositionView]:
    """
    Newest record per vehicle, most recent first.

    Record filters (route, status, bounds, time window) apply before the
    per-vehicle pick, so a vehicle's latest *matching* record is returned.
    """
    now = now or utcnow()
    if window_minutes is None:
        window_minutes = settings.live_window_minutes

    filters = [PositionRecord.is_active == True]
    if route_id is not None:
        filters.append(PositionRecord.route_id == route_id)
    if status is not None:
        filters.append(PositionRecord.status == status)
    if bounds is not None:
        filters.extend([
            PositionRecord.latitude <= bounds.north,
            PositionRecord.latitude >= bounds.south,
            PositionRecord.longitude <= bounds.east,
            PositionRecord.longitude >= bounds.west,
        ])
    if not include_stale:
        filters.append(PositionRecord.timestamp >= now - timedelta(minutes=window_minutes))

    ranked = (
        select(
            PositionRecord.id.label("record_id"),
            func.row_number().over(
                partition_by=PositionRecord.vehicle_id,
                order_by=(PositionRecord.timestamp.desc(), PositionRecord.id.desc()),
            ).label("rn"),
        )
        .where(*filters)
        .subquery()
    )

    stmt = (
        select(PositionRecord, Device, Route)
        .join(ranked, and_(ranked.c.record_id == PositionRecord.id, ranked.c.rn == 1))
        .join(Device, and_(Device.id == PositionRecord.device_id, Device.is_active == True))
        .join(Route, and_(
            Route.id == PositionRecord.route_id,
            Route.is_active == True,
            Route.approval_status == ApprovalStatus.APPROVED,
        ))
        .join(RouteAssignment, and_(
            RouteAssignment.device_id == Device.id,
            RouteAssignment.route_id == Route.id,
            RouteAssignment.status == AssignmentStatus.ACTIVE,
        ))
        .join(Fleet, and_(
            Fleet.id == RouteAssignment.fleet_id,
            Fleet.approval_status == ApprovalStatus.APPROVED,
            Fleet.is_active == True,
        ))
        .order_by(PositionRecord.timestamp.desc(), PositionRecord.id.desc())
        .limit(limit)
    )
    if vehicle_type is not None:
        stmt = stmt.where(Device.vehicle_type == vehicle_type)

    result = await db.execute(stmt)
    return [latest_position_view(record, device, route, now) for record, device, route in result.all()]


def route_statistics(vehicles: List[LatestPositionView]) -> RouteVehicleStatistics:
    total = len(vehicles)
    delays = [v.operational_info.current_delay_minutes for v in vehicles]
    loads = [v.passenger_load.load_percentage for v in vehicles]
    on_time = sum(1 for d in delays if d <= ON_TIME_DELAY_MINUTES)
    return RouteVehicleStatistics(
        total_vehicles=total,
        on_time=on_time,
        delayed=total - on_time,
        avg_delay=round(sum(delays) / total, 1) if total else 0,
        avg_load=round(sum(loads) / total, 1) if total else 0,
    )


def delay_status(delay_minutes: float) -> str:
    if delay_minutes > SEVERE_DELAY_MINUTES:
        return "delayed"
    if delay_minutes > ON_TIME_DELAY_MINUTES:
        return "slightly_delayed"
    return "on_time"


def select_eta_vehicle(candidates: List[LatestPositionView], trip_id: Optional[str]):
    """
    Pick the vehicle serving a booking.

    A candidate reporting the booking's trip id wins; otherwise the least
    delayed one, most recent report first on ties.

    Returns:
        (vehicle, "trip_id" | "least_delay"), or (None, None) when empty
    """
    if not candidates:
        return None, None
    if trip_id:
        for vehicle in candidates:
            if vehicle.operational_info.trip_id == trip_id:
                return vehicle, "trip_id"
    best = min(
        candidates,
        key=lambda v: (v.operational_info.current_delay_minutes, -v.timestamp.timestamp(), -v.tracking_id)
    )
    return best, "least_delay"


def scheduled_departure(travel_date: date, departure_time: str) -> datetime:
    hours, minutes = departure_time.split(":")[:2]
    return datetime.combine(travel_date, time(int(hours), int(minutes)))


async def estimate_booking_eta(db: AsyncSession, booking: Booking, now: Optional[datetime] = None) -> EtaResponse:
    """Departure estimate for a booking from the vehicles currently on its route."""
    candidates = await get_latest_positions(
        db,
        route_id=booking.route_id,
        limit=500,
        window_minutes=settings.route_vehicle_window_minutes,
        now=now,
    )

    vehicle, matched_by = select_eta_vehicle(candidates, booking.trip_id)
    if vehicle is None:
        return EtaResponse(
            status="no_tracking",
            message="No live tracking data available for this route",
            eta=None,
        )

    route = (await db.execute(select(Route).where(Route.id == booking.route_id))).scalar_one_or_none()
    scheduled = scheduled_departure(booking.travel_date, booking.departure_time)
    delay = vehicle.operational_info.current_delay_minutes

    return EtaResponse(
        status="tracking",
        booking=BookingSummary(
            id=booking.id,
            booking_ref=booking.booking_ref,
            route=f"{route.start_name} → {route.end_name}" if route else vehicle.route_name,
            travel_date=booking.travel_date.isoformat(),
            departure_time=booking.departure_time,
        ),
        eta=EtaDetail(
            scheduled_departure=scheduled,
            estimated_departure=scheduled + timedelta(minutes=delay),
            current_delay=delay,
            status=delay_status(delay),
        ),
        vehicle=EtaVehicle(
            vehicle_id=vehicle.vehicle_id,
            vehicle_number=vehicle.vehicle_number,
            location=vehicle.location,
            progress=vehicle.route_progress,
            last_update=vehicle.timestamp,
            connection_status=vehicle.connection_status,
        ),
        matched_by=matched_by,
    )
