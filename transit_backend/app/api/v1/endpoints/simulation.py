"""
GPS simulation control endpoints (admin only).

Demo traffic generator: every simulated fix goes through the regular
tracking ingest path.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from transit_backend.app.core.clock import utcnow
from transit_backend.app.core.guards import require_role
from transit_backend.app.db.session import get_db
from transit_backend.app.models.enums import UserRole
from transit_backend.app.schemas.simulation import (
    SimulationSpeed, VehicleControl, SimulationAnalyticsResponse, SimulationRuntime
)
from transit_backend.app.services.audit import log_admin_action, AuditAction
from transit_backend.app.services.gps_simulator import simulator
from transit_backend.app.services.tracking_analytics import TrackingAnalyticsService

router = APIRouter(prefix="/admin/simulation", tags=["Admin - Simulation"])
require_admin = require_role([UserRole.ADMIN])


@router.get("/status")
async def get_simulation_status(current_user: dict = Depends(require_admin)):
    return simulator.status()


@router.post("/start")
async def start_simulation(
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Start moving one virtual vehicle per active assignment."""
    count = await simulator.start()
    await log_admin_action(db, current_user, AuditAction.SIMULATION_STARTED, "simulation", None,
                           {"vehicles": count})
    return {"message": "Simulation started", "vehicles": count, "status": simulator.status()}


@router.post("/stop")
async def stop_simulation(
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    await simulator.stop()
    await log_admin_action(db, current_user, AuditAction.SIMULATION_STOPPED, "simulation", None)
    return {"message": "Simulation stopped", "status": simulator.status()}


@router.post("/speed")
async def set_simulation_speed(
    body: SimulationSpeed,
    current_user: dict = Depends(require_admin)
):
    simulator.set_speed(body.speed)
    return {"message": f"Simulation speed set to {body.speed}x", "status": simulator.status()}


@router.post("/reset")
async def reset_simulation(
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Stop the simulation and deactivate all tracking records."""
    deactivated = await simulator.reset()
    await log_admin_action(db, current_user, AuditAction.SIMULATION_RESET, "simulation", None,
                           {"records_deactivated": deactivated})
    return {"message": "Simulation reset", "recordsDeactivated": deactivated}


@router.get("/vehicles")
async def list_simulated_vehicles(current_user: dict = Depends(require_admin)):
    vehicles = [v.to_dict() for v in simulator.vehicles.values()]
    return {"vehicles": vehicles, "total": len(vehicles)}


@router.post("/vehicle/{vehicle_id}")
async def control_simulated_vehicle(
    body: VehicleControl,
    vehicle_id: str = Path(..., description="Simulated vehicle ID"),
    current_user: dict = Depends(require_admin)
):
    """Pause, resume, break down, or change speed/passengers/delay of one vehicle."""
    vehicle = simulator.control_vehicle(vehicle_id, body.action, body.value)
    return {"message": f"Action '{body.action}' applied", "vehicle": vehicle.to_dict()}


@router.get("/analytics", response_model=SimulationAnalyticsResponse)
async def get_simulation_analytics(
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Snapshot of the simulated fleet plus 24h hourly history from the tracking log."""
    now = utcnow()
    history = await TrackingAnalyticsService.get_hourly_performance(db, hours=24, now=now)
    return SimulationAnalyticsResponse(
        overview=simulator.overview(),
        route_performance=simulator.route_performance(),
        historical_data=history,
        runtime=SimulationRuntime(
            running=simulator.running,
            started_at=simulator.started_at,
            uptime_seconds=simulator.uptime_seconds(now),
            speed_multiplier=simulator.speed_multiplier,
            ticks=simulator.ticks,
            data_points=len(history),
        ),
        generated_at=now,
    )
