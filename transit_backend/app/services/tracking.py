"""
Tracking ingest service.

Validates a position report against the registries, derives route progress,
appends the record and hands a normalised update to the broadcaster.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from transit_backend.app.core.clock import utcnow, to_naive_utc
from transit_backend.app.core.config import settings
from transit_backend.app.core.exceptions import InvalidPayloadError, ResourceNotFoundError
from transit_backend.app.models.device import Device
from transit_backend.app.models.fleet import Fleet
from transit_backend.app.models.position_record import PositionRecord
from transit_backend.app.models.route import Route
from transit_backend.app.models.route_assignment import RouteAssignment
from transit_backend.app.models.route_enums import ApprovalStatus, AssignmentStatus
from transit_backend.app.models.tracking_enums import OperationalStatus, DeviceStatus, TrafficCondition
from transit_backend.app.schemas.tracking import (
    PositionReport, PositionView, LatestPositionView, LocationView, RouteProgressView,
    PassengerLoadView, OperationalInfoView, EnvironmentalDataView
)
from transit_backend.app.services.broadcaster import broadcaster
from transit_backend.app.services.liveness import liveness
from transit_backend.app.services.route_progress import build_route_geometry, estimate_progress, ProgressEstimate

logger = logging.getLogger(__name__)


def load_percentage(current: int, maximum: int) -> float:
    if not maximum or maximum <= 0:
        return 0.0
    return float(max(0, min(100, round(current / maximum * 100))))


def position_view(record: PositionRecord) -> PositionView:
    return PositionView(**_view_fields(record))


def latest_position_view(record: PositionRecord, device: Device, route: Route,
                         now: Optional[datetime] = None) -> LatestPositionView:
    connection_status, minutes_ago = liveness(record.timestamp, now)
    return LatestPositionView(
        **_view_fields(record),
        device_code=device.device_code,
        vehicle_type=device.vehicle_type.value,
        route_code=route.route_code,
        route_name=route.name,
        connection_status=connection_status,
        last_seen_minutes_ago=minutes_ago,
    )


def _view_fields(record: PositionRecord) -> dict:
    return dict(
        tracking_id=record.id,
        vehicle_id=record.vehicle_id,
        vehicle_number=record.vehicle_number,
        device_id=record.device_id,
        route_id=record.route_id,
        location=LocationView(
            latitude=record.latitude,
            longitude=record.longitude,
            accuracy=record.accuracy,
            heading=record.heading,
            speed=record.speed,
            altitude=record.altitude,
        ),
        route_progress=progress_view(record),
        passenger_load=PassengerLoadView(
            current=record.current_capacity,
            max=record.max_capacity,
            boarding_count=record.boarding_count,
            alighting_count=record.alighting_count,
            load_percentage=record.load_percentage,
        ),
        operational_info=OperationalInfoView(
            status=record.status,
            current_delay_minutes=record.current_delay_minutes,
            delay_reason=record.delay_reason,
            trip_id=record.trip_id,
            schedule_id=record.schedule_id,
            driver_id=record.driver_id,
            driver_name=record.driver_name,
        ),
        environmental_data=EnvironmentalDataView(
            weather=record.weather,
            temperature=record.temperature,
            traffic_condition=record.traffic_condition,
        ),
        timestamp=record.timestamp,
    )


def progress_view(record: PositionRecord) -> RouteProgressView:
    return RouteProgressView(
        current_waypoint_index=record.current_waypoint_index,
        distance_covered_meters=record.distance_covered_m,
        progress_percentage=record.progress_percentage,
        eta_next_stop_seconds=record.eta_next_stop_seconds,
        next_stop_eta=record.next_stop_eta,
        minutes_to_destination=record.minutes_to_destination,
    )


def broadcast_payload(record: PositionRecord) -> dict:
    """JSON-ready update pushed to subscribers and the Redis channels."""
    payload = {"type": "location_update"}
    payload.update(position_view(record).model_dump(by_alias=True, mode="json"))
    return payload


class TrackingService:

    @staticmethod
    async def resolve_linkage(db: AsyncSession, device_code: str, route_id: int):
        """
        Resolve the device, route and active assignment a report refers to.

        Raises:
            ResourceNotFoundError: unknown/inactive device or route, or no
                active assignment under an approved fleet and route
        """
        device = (await db.execute(
            select(Device).where(Device.device_code == device_code, Device.is_active == True)
        )).scalar_one_or_none()
        if not device:
            raise ResourceNotFoundError("Device", device_code)

        route = (await db.execute(
            select(Route).where(Route.id == route_id, Route.is_active == True)
        )).scalar_one_or_none()
        if not route:
            raise ResourceNotFoundError("Route", route_id)

        assignment = (await db.execute(
            select(RouteAssignment)
            .join(Fleet, Fleet.id == RouteAssignment.fleet_id)
            .where(
                RouteAssignment.device_id == device.id,
                RouteAssignment.route_id == route.id,
                RouteAssignment.status == AssignmentStatus.ACTIVE,
                Fleet.approval_status == ApprovalStatus.APPROVED,
                Fleet.is_active == True,
            )
        )).scalar_one_or_none()
        if not assignment or route.approval_status != ApprovalStatus.APPROVED:
            raise ResourceNotFoundError("RouteAssignment")

        return device, route, assignment

    @staticmethod
    def derive_progress(route: Route, report: PositionReport) -> ProgressEstimate:
        geometry = build_route_geometry(route)
        if geometry is not None:
            return estimate_progress(
                geometry, report.location.latitude, report.location.longitude, report.location.speed
            )

        # No geometry: trust what the device computed, or report nothing
        client = report.route_progress
        if client is None:
            return ProgressEstimate(0, 0.0, 0.0, 0.0, 0.0, 0.0, False)
        return ProgressEstimate(
            current_waypoint_index=client.current_waypoint,
            distance_covered_m=client.distance_covered * 1000.0,
            progress_percentage=max(0.0, min(100.0, client.progress_percentage)),
            eta_next_stop_seconds=0.0,
            minutes_to_destination=client.estimated_time_to_destination,
            distance_from_route_m=0.0,
            off_route=False,
        )

    @staticmethod
    async def record_position(db: AsyncSession, report: PositionReport) -> PositionRecord:
        """
        Persist one position report.

        Validates:
        - timestamp is not beyond the allowed clock skew
        - device, route and active assignment exist

        Actions:
        - Derives route progress and off-route status
        - Appends the PositionRecord
        - Updates the device's last-known location (best effort)
        - Enqueues the update for broadcast (best effort)
        """
        now = utcnow()
        timestamp = to_naive_utc(report.timestamp) or now
        if timestamp - now > timedelta(seconds=settings.max_clock_skew_seconds):
            raise InvalidPayloadError(
                "Timestamp is too far in the future",
                errors=[{"loc": ["timestamp"], "msg": "timestamp exceeds allowed clock skew"}]
            )

        trip_info = report.operational_info.trip_info
        device, route, _ = await TrackingService.resolve_linkage(db, report.device_id, trip_info.route_id)

        progress = TrackingService.derive_progress(route, report)
        status = OperationalStatus.OFF_ROUTE if progress.off_route else report.operational_info.status
        if progress.off_route:
            logger.info(
                "Vehicle %s is %.0f m off route %s",
                report.vehicle_id, progress.distance_from_route_m, route.route_code
            )

        load = report.passenger_load
        current = load.current_capacity if load else 0
        maximum = (load.max_capacity if load and load.max_capacity else None) or route.vehicle_capacity
        delays = report.operational_info.delays
        driver = report.operational_info.driver_info
        env = report.environmental_data

        record = PositionRecord(
            device_id=device.id,
            route_id=route.id,
            vehicle_id=report.vehicle_id,
            vehicle_number=device.vehicle_number,
            latitude=report.location.latitude,
            longitude=report.location.longitude,
            accuracy=report.location.accuracy,
            heading=report.location.heading,
            speed=report.location.speed or 0,
            altitude=report.location.altitude,
            current_waypoint_index=progress.current_waypoint_index,
            distance_covered_m=progress.distance_covered_m,
            progress_percentage=progress.progress_percentage,
            eta_next_stop_seconds=progress.eta_next_stop_seconds,
            next_stop_eta=(
                timestamp + timedelta(seconds=progress.eta_next_stop_seconds)
                if progress.eta_next_stop_seconds > 0 else None
            ),
            minutes_to_destination=progress.minutes_to_destination,
            current_capacity=current,
            max_capacity=maximum,
            boarding_count=load.boarding_count if load else 0,
            alighting_count=load.alighting_count if load else 0,
            load_percentage=load_percentage(current, maximum),
            status=status,
            current_delay_minutes=delays.current_delay if delays else 0,
            delay_reason=delays.reason if delays else None,
            trip_id=trip_info.trip_id or f"TRIP_{int(now.timestamp() * 1000)}",
            schedule_id=trip_info.schedule_id or "default",
            driver_id=(driver.driver_id if driver else None) or "unknown",
            driver_name=(driver.driver_name if driver else None) or "Unknown Driver",
            weather=env.weather if env else None,
            temperature=env.temperature if env else None,
            traffic_condition=env.traffic_condition if env else TrafficCondition.LIGHT,
            timestamp=timestamp,
            is_active=True,
        )

        db.add(record)
        await db.commit()
        await db.refresh(record)
        # Detach so a failed pointer update's rollback cannot expire it
        db.expunge(record)
        payload = broadcast_payload(record)

        try:
            await TrackingService.update_device_pointer(db, record.device_id, record)
        except Exception:
            await db.rollback()
            logger.exception("Failed to update last location for device %s", report.device_id)

        broadcaster.publish(payload)
        return record

    @staticmethod
    async def update_device_pointer(db: AsyncSession, device_id: int, record: PositionRecord):
        """
        Copy the newest fix onto the device row (denormalised, best effort).

        A report older than the stored fix still marks the device as seen
        but leaves the location untouched.
        """
        await db.execute(
            update(Device)
            .where(Device.id == device_id)
            .values(last_seen=utcnow(), status=DeviceStatus.ONLINE)
        )
        await db.execute(
            update(Device)
            .where(
                Device.id == device_id,
                or_(Device.last_location_at.is_(None), Device.last_location_at <= record.timestamp),
            )
            .values(
                last_latitude=record.latitude,
                last_longitude=record.longitude,
                last_location_at=record.timestamp,
            )
        )
        await db.commit()
