"""
Registry Pydantic schemas.

Request and response models for fleet, route, device and assignment
provisioning under /admin.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List
from transit_backend.app.models.route_enums import RouteStatus, ApprovalStatus, AssignmentStatus, VehicleType
from transit_backend.app.models.tracking_enums import DeviceStatus


class FleetCreate(BaseModel):
    """Schema for registering an operator company."""
    company_name: str = Field(..., min_length=1, max_length=200)
    contact_number: Optional[str] = Field(None, max_length=50)
    owner_id: Optional[int] = Field(None, description="FLEET_OWNER user operating this fleet")


class FleetApproval(BaseModel):
    approval_status: ApprovalStatus


class FleetResponse(BaseModel):
    id: int
    owner_id: Optional[int]
    company_name: str
    contact_number: Optional[str]
    approval_status: ApprovalStatus
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class Waypoint(BaseModel):
    """Intermediate stop; estimated_time is minutes from departure."""
    name: str = Field(..., min_length=1, max_length=200)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    order: int = Field(..., ge=0)
    estimated_time: Optional[float] = Field(None, ge=0)


class RouteCreate(BaseModel):
    """Schema for creating a route with its geometry."""
    route_code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    fleet_id: int

    start_name: str = Field(..., min_length=1, max_length=200)
    start_lat: float = Field(..., ge=-90, le=90)
    start_lng: float = Field(..., ge=-180, le=180)
    end_name: str = Field(..., min_length=1, max_length=200)
    end_lat: float = Field(..., ge=-90, le=90)
    end_lng: float = Field(..., ge=-180, le=180)

    waypoints: List[Waypoint] = Field(default_factory=list)

    distance_km: Optional[float] = Field(None, gt=0)
    estimated_duration_minutes: Optional[float] = Field(None, gt=0)

    vehicle_type: VehicleType = VehicleType.BUS
    vehicle_capacity: int = Field(50, ge=1)

    # Admin-created routes are approved unless stated otherwise
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED


class RouteStatusUpdate(BaseModel):
    status: Optional[RouteStatus] = None
    approval_status: Optional[ApprovalStatus] = None
    is_active: Optional[bool] = None


class RouteResponse(BaseModel):
    id: int
    route_code: str
    name: str
    fleet_id: int
    start_name: str
    start_lat: float
    start_lng: float
    end_name: str
    end_lat: float
    end_lng: float
    waypoints: List[Waypoint]
    distance_km: Optional[float]
    estimated_duration_minutes: Optional[float]
    vehicle_type: VehicleType
    vehicle_capacity: int
    status: RouteStatus
    approval_status: ApprovalStatus
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class DeviceCreate(BaseModel):
    device_code: str = Field(..., min_length=1, max_length=100, description="Identifier the hardware reports as deviceId")
    vehicle_number: str = Field(..., min_length=1, max_length=100)
    vehicle_type: VehicleType = VehicleType.BUS
    fleet_id: int
    firmware_version: Optional[str] = Field(None, max_length=50)


class DeviceResponse(BaseModel):
    """Device with its denormalised last-known location."""
    id: int
    device_code: str
    vehicle_number: str
    vehicle_type: VehicleType
    fleet_id: int
    status: DeviceStatus
    firmware_version: Optional[str]
    battery_level: float
    signal_strength: int
    last_latitude: Optional[float]
    last_longitude: Optional[float]
    last_location_at: Optional[datetime]
    last_seen: Optional[datetime]
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class AssignmentCreate(BaseModel):
    device_id: int
    route_id: int


class AssignmentRelease(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AssignmentResponse(BaseModel):
    id: int
    fleet_id: int
    device_id: int
    route_id: int
    status: AssignmentStatus
    assigned_by: Optional[int]
    assigned_at: datetime
    unassigned_at: Optional[datetime]
    unassign_reason: Optional[str]

    class Config:
        from_attributes = True
