"""
GPS simulator.

Drives one virtual vehicle per active route assignment along its route
polyline and submits every fix through TrackingService.record_position, so
simulated traffic is validated, stored and broadcast exactly like real
device traffic.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from transit_backend.app.core.clock import utcnow
from transit_backend.app.core.config import settings
from transit_backend.app.core.exceptions import AppException, InvalidPayloadError, ResourceNotFoundError
from transit_backend.app.models.device import Device
from transit_backend.app.models.fleet import Fleet
from transit_backend.app.models.position_record import PositionRecord
from transit_backend.app.models.route import Route
from transit_backend.app.models.route_assignment import RouteAssignment
from transit_backend.app.models.route_enums import ApprovalStatus, AssignmentStatus
from transit_backend.app.models.tracking_enums import OperationalStatus
from transit_backend.app.schemas.simulation import SimulationOverview, RoutePerformance
from transit_backend.app.schemas.tracking import PositionReport
from transit_backend.app.services.live_positions import ON_TIME_DELAY_MINUTES
from transit_backend.app.services.route_progress import RouteGeometry, build_route_geometry
from transit_backend.app.services.tracking import TrackingService

logger = logging.getLogger(__name__)

VEHICLE_ACTIONS = ("pause", "resume", "speed", "passengers", "delay", "breakdown")
STOP_RADIUS_M = 50.0


def _new_trip_id() -> str:
    return f"SIM_TRIP_{int(utcnow().timestamp() * 1000)}"


@dataclass
class SimulatedVehicle:
    vehicle_id: str
    device_code: str
    route_id: int
    route_code: str
    geometry: RouteGeometry
    capacity: int
    speed_kmh: float
    distance_m: float = 0.0
    passengers: int = 0
    delay_minutes: float = 0.0
    status: OperationalStatus = OperationalStatus.ON_ROUTE
    paused: bool = False
    trip_id: str = field(default_factory=_new_trip_id)
    last_boarding: int = 0
    last_alighting: int = 0

    def to_dict(self) -> dict:
        lat, lng, _ = self.geometry.point_at(self.distance_m)
        total = self.geometry.total_m
        return {
            "vehicleId": self.vehicle_id,
            "deviceId": self.device_code,
            "routeId": self.route_id,
            "routeCode": self.route_code,
            "tripId": self.trip_id,
            "latitude": lat,
            "longitude": lng,
            "speed": self.speed_kmh,
            "progress": round(self.distance_m / total * 100, 2) if total else 0,
            "passengers": self.passengers,
            "capacity": self.capacity,
            "delay": self.delay_minutes,
            "status": self.status.value,
            "paused": self.paused,
        }


class GpsSimulator:
    """
    Background simulation loop.

    `session_factory` defaults to the application's session maker and can
    be replaced (tests use the in-memory database).
    """

    def __init__(self, session_factory=None, interval: Optional[float] = None):
        self.session_factory = session_factory
        self.interval = interval or settings.simulation_interval_seconds
        self.speed_multiplier = 1.0
        self.vehicles: Dict[str, SimulatedVehicle] = {}
        self.ticks = 0
        self.started_at: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _session(self) -> AsyncSession:
        if self.session_factory is None:
            from transit_backend.app.db.session import AsyncSessionLocal
            self.session_factory = AsyncSessionLocal
        return self.session_factory()

    async def load_vehicles(self, db: AsyncSession) -> int:
        """(Re)build the vehicle set from active assignments on approved routes."""
        result = await db.execute(
            select(Device, Route)
            .join(RouteAssignment, RouteAssignment.device_id == Device.id)
            .join(Route, Route.id == RouteAssignment.route_id)
            .join(Fleet, Fleet.id == RouteAssignment.fleet_id)
            .where(
                RouteAssignment.status == AssignmentStatus.ACTIVE,
                Device.is_active == True,
                Route.is_active == True,
                Route.approval_status == ApprovalStatus.APPROVED,
                Fleet.approval_status == ApprovalStatus.APPROVED,
                Fleet.is_active == True,
            )
            .order_by(Device.id)
        )

        vehicles: Dict[str, SimulatedVehicle] = {}
        for device, route in result.all():
            geometry = build_route_geometry(route)
            if geometry is None:
                logger.warning("Route %s has no geometry, not simulating %s", route.route_code, device.vehicle_number)
                continue
            # A device on several routes is simulated on the first one only
            if device.vehicle_number in vehicles:
                continue
            vehicles[device.vehicle_number] = SimulatedVehicle(
                vehicle_id=device.vehicle_number,
                device_code=device.device_code,
                route_id=route.id,
                route_code=route.route_code,
                geometry=geometry,
                capacity=route.vehicle_capacity,
                speed_kmh=settings.simulation_default_speed_kmh,
                passengers=random.randint(0, max(route.vehicle_capacity // 2, 0)),
            )

        self.vehicles = vehicles
        return len(vehicles)

    async def start(self) -> int:
        if self.running:
            return len(self.vehicles)
        async with self._session() as db:
            count = await self.load_vehicles(db)
        self.started_at = utcnow()
        self._task = asyncio.create_task(self._run(), name="gps-simulator")
        logger.info("GPS simulation started with %d vehicles", count)
        return count

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.started_at = None
        logger.info("GPS simulation stopped after %d ticks", self.ticks)

    async def reset(self) -> int:
        """Stop, forget all vehicles and deactivate every tracking record."""
        await self.stop()
        self.vehicles = {}
        self.ticks = 0
        self.speed_multiplier = 1.0
        async with self._session() as db:
            result = await db.execute(
                update(PositionRecord)
                .where(PositionRecord.is_active == True)
                .values(is_active=False)
            )
            await db.commit()
        logger.info("Simulation reset, %d tracking records deactivated", result.rowcount)
        return result.rowcount

    def set_speed(self, multiplier: float):
        self.speed_multiplier = multiplier

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Simulation tick failed")

    def advance(self, vehicle: SimulatedVehicle, seconds: float):
        """Move a vehicle along its route, looping back to the start at the end."""
        if vehicle.paused or vehicle.status == OperationalStatus.BREAKDOWN:
            vehicle.last_boarding = vehicle.last_alighting = 0
            return

        step = vehicle.speed_kmh * 1000.0 / 3600.0 * seconds * self.speed_multiplier
        vehicle.distance_m += step
        if vehicle.distance_m >= vehicle.geometry.total_m:
            vehicle.distance_m = 0.0
            vehicle.trip_id = _new_trip_id()
            vehicle.passengers = 0

        vehicle.last_boarding = vehicle.last_alighting = 0
        at_stop = any(abs(vehicle.distance_m - c) <= max(step, STOP_RADIUS_M) for c in vehicle.geometry.cumulative_m)
        if at_stop:
            vehicle.last_alighting = random.randint(0, vehicle.passengers)
            vehicle.passengers -= vehicle.last_alighting
            vehicle.last_boarding = random.randint(0, vehicle.capacity - vehicle.passengers)
            vehicle.passengers += vehicle.last_boarding

    def build_report(self, vehicle: SimulatedVehicle) -> PositionReport:
        lat, lng, heading = vehicle.geometry.point_at(vehicle.distance_m)
        moving = not vehicle.paused and vehicle.status != OperationalStatus.BREAKDOWN
        status = vehicle.status
        if status == OperationalStatus.ON_ROUTE and vehicle.delay_minutes > 5:
            status = OperationalStatus.DELAYED

        return PositionReport.model_validate({
            "deviceId": vehicle.device_code,
            "vehicleId": vehicle.vehicle_id,
            "location": {
                "latitude": lat,
                "longitude": lng,
                "accuracy": 5,
                "heading": heading,
                "speed": vehicle.speed_kmh * self.speed_multiplier if moving else 0,
            },
            "passengerLoad": {
                "currentCapacity": vehicle.passengers,
                "maxCapacity": vehicle.capacity,
                "boardingCount": vehicle.last_boarding,
                "alightingCount": vehicle.last_alighting,
            },
            "operationalInfo": {
                "status": status.value,
                "tripInfo": {"routeId": vehicle.route_id, "tripId": vehicle.trip_id, "scheduleId": "simulation"},
                "delays": {
                    "currentDelay": vehicle.delay_minutes,
                    "reason": "Simulated delay" if vehicle.delay_minutes else None,
                },
                "driverInfo": {"driverId": f"SIM_{vehicle.vehicle_id}", "driverName": "Simulated Driver"},
            },
            "timestamp": utcnow().isoformat(),
        })

    async def tick(self) -> int:
        """Advance every vehicle once and ingest its fix. Returns the number of records written."""
        written = 0
        async with self._session() as db:
            for vehicle in list(self.vehicles.values()):
                self.advance(vehicle, self.interval)
                try:
                    await TrackingService.record_position(db, self.build_report(vehicle))
                    written += 1
                except AppException as e:
                    logger.warning("Simulated fix for %s rejected: %s", vehicle.vehicle_id, e.message)
                except Exception:
                    await db.rollback()
                    logger.exception("Simulated fix for %s failed", vehicle.vehicle_id)
        self.ticks += 1
        return written

    def control_vehicle(self, vehicle_id: str, action: str, value: Optional[float] = None) -> SimulatedVehicle:
        """
        Apply a manual control action to one simulated vehicle.

        Raises:
            ResourceNotFoundError: unknown vehicle
            InvalidPayloadError: unknown action or out-of-range value
        """
        vehicle = self.vehicles.get(vehicle_id)
        if vehicle is None:
            raise ResourceNotFoundError("Simulated vehicle", vehicle_id)

        def require_value(low: float, high: Optional[float] = None) -> float:
            if value is None or value < low or (high is not None and value > high):
                bound = f"between {low} and {high}" if high is not None else f">= {low}"
                raise InvalidPayloadError(
                    f"Value for '{action}' must be {bound}",
                    errors=[{"loc": ["body", "value"], "msg": f"must be {bound}"}]
                )
            return value

        if action == "pause":
            vehicle.paused = True
        elif action == "resume":
            vehicle.paused = False
            if vehicle.status == OperationalStatus.BREAKDOWN:
                vehicle.status = OperationalStatus.ON_ROUTE
        elif action == "speed":
            vehicle.speed_kmh = require_value(1, 120)
        elif action == "passengers":
            vehicle.passengers = int(require_value(0, vehicle.capacity))
        elif action == "delay":
            vehicle.delay_minutes = require_value(0)
        elif action == "breakdown":
            vehicle.status = OperationalStatus.BREAKDOWN
        else:
            raise InvalidPayloadError(
                f"Unknown action '{action}'",
                errors=[{"loc": ["body", "action"], "msg": f"one of {list(VEHICLE_ACTIONS)}"}]
            )

        logger.info("Simulated vehicle %s: %s %s", vehicle_id, action, value if value is not None else "")
        return vehicle

    def status(self) -> dict:
        return {
            "running": self.running,
            "vehicleCount": len(self.vehicles),
            "speedMultiplier": self.speed_multiplier,
            "intervalSeconds": self.interval,
            "ticks": self.ticks,
        }

    def uptime_seconds(self, now: Optional[datetime] = None) -> float:
        if not self.running or self.started_at is None:
            return 0.0
        return round(((now or utcnow()) - self.started_at).total_seconds(), 1)

    def overview(self) -> SimulationOverview:
        """Fleet-wide snapshot of the simulated vehicles."""
        vehicles = list(self.vehicles.values())
        total = len(vehicles)
        passengers = sum(v.passengers for v in vehicles)
        capacity = sum(v.capacity for v in vehicles)
        delayed = [v.delay_minutes for v in vehicles if v.delay_minutes > 0]

        return SimulationOverview(
            total_vehicles=total,
            total_distance_km=round(sum(v.distance_m for v in vehicles) / 1000.0, 2),
            total_passengers=passengers,
            total_capacity=capacity,
            occupancy_rate=round(passengers / capacity * 100, 1) if capacity else 0.0,
            avg_speed=round(sum(v.speed_kmh for v in vehicles) / total, 1) if total else 0.0,
            delayed_vehicles=len(delayed),
            avg_delay=round(sum(delayed) / len(delayed), 1) if delayed else 0.0,
        )

    def route_performance(self) -> List[RoutePerformance]:
        by_route: Dict[int, List[SimulatedVehicle]] = {}
        for vehicle in self.vehicles.values():
            by_route.setdefault(vehicle.route_id, []).append(vehicle)

        performance = []
        for route_id, vehicles in sorted(by_route.items()):
            count = len(vehicles)
            on_time = sum(1 for v in vehicles if v.delay_minutes <= ON_TIME_DELAY_MINUTES)
            loads = [v.passengers / v.capacity * 100 if v.capacity else 0.0 for v in vehicles]
            performance.append(RoutePerformance(
                route_id=route_id,
                route_code=vehicles[0].route_code,
                vehicle_count=count,
                avg_load=round(sum(loads) / count, 1),
                on_time_percentage=round(on_time / count * 100, 1),
                avg_speed=round(sum(v.speed_kmh for v in vehicles) / count, 1),
            ))
        return performance


simulator = GpsSimulator()
