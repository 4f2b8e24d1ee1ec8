"""
GPS simulation control schemas.
"""

from datetime import datetime
from typing import List, Optional, Literal

from pydantic import BaseModel, Field

from transit_backend.app.schemas.tracking import CamelModel


class SimulationSpeed(BaseModel):
    speed: float = Field(..., ge=0.1, le=10, description="Time multiplier")


class VehicleControl(BaseModel):
    """
    Manual control of one simulated vehicle.

    value is required for speed (km/h, 1-120), passengers (0-capacity)
    and delay (minutes, >= 0).
    """
    action: Literal["pause", "resume", "speed", "passengers", "delay", "breakdown"]
    value: Optional[float] = None


class SimulationOverview(CamelModel):
    total_vehicles: int
    total_distance_km: float
    total_passengers: int
    total_capacity: int
    occupancy_rate: float
    avg_speed: float
    delayed_vehicles: int
    avg_delay: float


class RoutePerformance(CamelModel):
    route_id: int
    route_code: str
    vehicle_count: int
    avg_load: float
    on_time_percentage: float
    avg_speed: float


class HourlyPerformance(CamelModel):
    day: int
    hour: int
    avg_speed: float
    avg_load: float
    vehicle_count: int


class SimulationRuntime(CamelModel):
    running: bool
    started_at: Optional[datetime] = None
    uptime_seconds: float
    speed_multiplier: float
    ticks: int
    data_points: int


class SimulationAnalyticsResponse(CamelModel):
    overview: SimulationOverview
    route_performance: List[RoutePerformance]
    historical_data: List[HourlyPerformance]
    runtime: SimulationRuntime
    generated_at: datetime
