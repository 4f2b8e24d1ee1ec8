"""
Registry administration API endpoints.

Admin-only provisioning of fleets, routes, devices and device-to-route
assignments. Every mutation is written to the audit log.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from transit_backend.app.core.clock import utcnow
from transit_backend.app.core.guards import require_role
from transit_backend.app.db.session import get_db
from transit_backend.app.models.device import Device
from transit_backend.app.models.enums import UserRole
from transit_backend.app.models.fleet import Fleet
from transit_backend.app.models.route import Route
from transit_backend.app.models.route_assignment import RouteAssignment
from transit_backend.app.models.route_enums import ApprovalStatus, AssignmentStatus
from transit_backend.app.models.user import User
from transit_backend.app.schemas.registry import (
    FleetCreate, FleetApproval, FleetResponse,
    RouteCreate, RouteStatusUpdate, RouteResponse,
    DeviceCreate, DeviceResponse,
    AssignmentCreate, AssignmentRelease, AssignmentResponse
)
from transit_backend.app.services.audit import log_admin_action, AuditAction

router = APIRouter(prefix="/admin", tags=["Admin - Registry"])
require_admin = require_role([UserRole.ADMIN])


async def _get_fleet(db: AsyncSession, fleet_id: int) -> Fleet:
    fleet = (await db.execute(select(Fleet).where(Fleet.id == fleet_id))).scalar_one_or_none()
    if not fleet:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Fleet not found"
        )
    return fleet


# --- Fleets -----------------------------------------------------------------

@router.post("/fleets", response_model=FleetResponse, status_code=status.HTTP_201_CREATED)
async def create_fleet(
    fleet_data: FleetCreate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Register an operator company.

    Validates:
    - owner_id (if given) is a FLEET_OWNER user
    """
    if fleet_data.owner_id is not None:
        owner = (await db.execute(select(User).where(User.id == fleet_data.owner_id))).scalar_one_or_none()
        if not owner:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Owner not found"
            )
        if owner.role != UserRole.FLEET_OWNER:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Owner must have FLEET_OWNER role"
            )

    fleet = Fleet(**fleet_data.model_dump())
    db.add(fleet)
    await db.commit()
    await db.refresh(fleet)

    await log_admin_action(db, current_user, AuditAction.FLEET_CREATED, "fleet", fleet.id,
                           {"company_name": fleet.company_name})
    return FleetResponse.model_validate(fleet)


@router.get("/fleets", response_model=List[FleetResponse])
async def list_fleets(
    approval_status: Optional[ApprovalStatus] = Query(None),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    query = select(Fleet).order_by(Fleet.id)
    if approval_status:
        query = query.where(Fleet.approval_status == approval_status)
    result = await db.execute(query)
    return [FleetResponse.model_validate(f) for f in result.scalars().all()]


@router.post("/fleets/{fleet_id}/approval", response_model=FleetResponse)
async def set_fleet_approval(
    approval: FleetApproval,
    fleet_id: int = Path(..., description="Fleet ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Approve or reject a fleet. Only approved fleets' devices may report positions."""
    fleet = await _get_fleet(db, fleet_id)
    previous = fleet.approval_status
    fleet.approval_status = approval.approval_status
    await db.commit()
    await db.refresh(fleet)

    await log_admin_action(db, current_user, AuditAction.FLEET_APPROVED, "fleet", fleet.id, {
        "from": previous.value,
        "to": fleet.approval_status.value,
    })
    return FleetResponse.model_validate(fleet)


# --- Routes -----------------------------------------------------------------

@router.post("/routes", response_model=RouteResponse, status_code=status.HTTP_201_CREATED)
async def create_route(
    route_data: RouteCreate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a route with its geometry.

    Validates:
    - Fleet exists
    - route_code is unique
    """
    await _get_fleet(db, route_data.fleet_id)

    existing = (await db.execute(
        select(Route).where(Route.route_code == route_data.route_code)
    )).scalar_one_or_none()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Route code {route_data.route_code} already exists"
        )

    route = Route(**route_data.model_dump())
    db.add(route)
    await db.commit()
    await db.refresh(route)

    await log_admin_action(db, current_user, AuditAction.ROUTE_CREATED, "route", route.id,
                           {"route_code": route.route_code, "waypoints": len(route.waypoints)})
    return RouteResponse.model_validate(route)


@router.get("/routes", response_model=List[RouteResponse])
async def list_routes(
    fleet_id: Optional[int] = Query(None),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    query = select(Route).order_by(Route.id)
    if fleet_id is not None:
        query = query.where(Route.fleet_id == fleet_id)
    result = await db.execute(query)
    return [RouteResponse.model_validate(r) for r in result.scalars().all()]


@router.patch("/routes/{route_id}/status", response_model=RouteResponse)
async def update_route_status(
    update: RouteStatusUpdate,
    route_id: int = Path(..., description="Route ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Change a route's operating status, approval or active flag."""
    route = (await db.execute(select(Route).where(Route.id == route_id))).scalar_one_or_none()
    if not route:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Route not found"
        )

    changes = update.model_dump(exclude_none=True)
    for field, value in changes.items():
        setattr(route, field, value)
    await db.commit()
    await db.refresh(route)

    await log_admin_action(db, current_user, AuditAction.ROUTE_STATUS_CHANGED, "route", route.id,
                           {k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()})
    return RouteResponse.model_validate(route)


# --- Devices ----------------------------------------------------------------

@router.post("/devices", response_model=DeviceResponse, status_code=status.HTTP_201_CREATED)
async def create_device(
    device_data: DeviceCreate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a tracking device installed in a vehicle.

    Validates:
    - Fleet exists
    - device_code is unique
    """
    await _get_fleet(db, device_data.fleet_id)

    existing = (await db.execute(
        select(Device).where(Device.device_code == device_data.device_code)
    )).scalar_one_or_none()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Device {device_data.device_code} already registered"
        )

    device = Device(**device_data.model_dump())
    db.add(device)
    await db.commit()
    await db.refresh(device)

    await log_admin_action(db, current_user, AuditAction.DEVICE_CREATED, "device", device.id,
                           {"device_code": device.device_code, "vehicle_number": device.vehicle_number})
    return DeviceResponse.model_validate(device)


@router.get("/devices", response_model=List[DeviceResponse])
async def list_devices(
    fleet_id: Optional[int] = Query(None),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Devices with their last known location."""
    query = select(Device).order_by(Device.id)
    if fleet_id is not None:
        query = query.where(Device.fleet_id == fleet_id)
    result = await db.execute(query)
    return [DeviceResponse.model_validate(d) for d in result.scalars().all()]


# --- Assignments ------------------------------------------------------------

@router.post("/assignments", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def assign_device(
    assignment_data: AssignmentCreate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Assign a device to a route.

    Validates:
    - Device and route exist and belong to the same fleet
    - No ACTIVE assignment for the pair exists yet
    """
    device = (await db.execute(select(Device).where(Device.id == assignment_data.device_id))).scalar_one_or_none()
    if not device:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Device not found"
        )

    route = (await db.execute(select(Route).where(Route.id == assignment_data.route_id))).scalar_one_or_none()
    if not route:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Route not found"
        )

    if device.fleet_id != route.fleet_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Device and route belong to different fleets"
        )

    existing = (await db.execute(
        select(RouteAssignment).where(
            RouteAssignment.device_id == device.id,
            RouteAssignment.route_id == route.id,
            RouteAssignment.status == AssignmentStatus.ACTIVE
        )
    )).scalar_one_or_none()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Device is already assigned to this route"
        )

    assignment = RouteAssignment(
        fleet_id=device.fleet_id,
        device_id=device.id,
        route_id=route.id,
        status=AssignmentStatus.ACTIVE,
        assigned_by=current_user.get("user_id"),
    )
    db.add(assignment)
    await db.commit()
    await db.refresh(assignment)

    await log_admin_action(db, current_user, AuditAction.DEVICE_ASSIGNED, "assignment", assignment.id,
                           {"device_id": device.id, "route_id": route.id})
    return AssignmentResponse.model_validate(assignment)


@router.post("/assignments/{assignment_id}/unassign", response_model=AssignmentResponse)
async def unassign_device(
    release: AssignmentRelease,
    assignment_id: int = Path(..., description="Assignment ID"),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """End an assignment. The device's reports for that route are rejected afterwards."""
    assignment = (await db.execute(
        select(RouteAssignment).where(RouteAssignment.id == assignment_id)
    )).scalar_one_or_none()
    if not assignment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assignment not found"
        )

    if assignment.status != AssignmentStatus.ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Assignment is not active"
        )

    assignment.status = AssignmentStatus.INACTIVE
    assignment.unassigned_at = utcnow()
    assignment.unassign_reason = release.reason
    await db.commit()
    await db.refresh(assignment)

    await log_admin_action(db, current_user, AuditAction.DEVICE_UNASSIGNED, "assignment", assignment.id,
                           {"reason": release.reason})
    return AssignmentResponse.model_validate(assignment)
