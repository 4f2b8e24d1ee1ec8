"""
Tracking schemas.

Wire format is camelCase (device firmware and web clients); Python code
uses the snake_case field names.
"""

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional, List

from transit_backend.app.models.tracking_enums import (
    OperationalStatus, ConnectionStatus, TrafficCondition
)


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# --- Ingest -----------------------------------------------------------------

class LocationIn(CamelModel):
    """Raw GPS fix."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: float = Field(0, ge=0, description="meters")
    heading: float = Field(0, ge=0, le=360, description="degrees")
    speed: Optional[float] = Field(None, ge=0, description="km/h")
    altitude: Optional[float] = None


class RouteProgressIn(CamelModel):
    """Device-computed progress; only used for routes without geometry."""
    current_waypoint: int = Field(0, ge=0)
    distance_covered: float = Field(0, ge=0, description="km")
    estimated_time_to_destination: float = Field(0, ge=0, description="minutes")
    progress_percentage: float = 0


class PassengerLoadIn(CamelModel):
    current_capacity: int = Field(0, ge=0)
    max_capacity: Optional[int] = Field(None, ge=1)
    boarding_count: int = Field(0, ge=0)
    alighting_count: int = Field(0, ge=0)


class TripInfoIn(CamelModel):
    route_id: int
    trip_id: Optional[str] = None
    schedule_id: Optional[str] = None


class DelaysIn(CamelModel):
    current_delay: float = Field(0, ge=0, description="minutes")
    reason: Optional[str] = None


class DriverInfoIn(CamelModel):
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None


class OperationalInfoIn(CamelModel):
    status: OperationalStatus = OperationalStatus.ON_ROUTE
    trip_info: TripInfoIn
    delays: Optional[DelaysIn] = None
    driver_info: Optional[DriverInfoIn] = None


class EnvironmentalDataIn(CamelModel):
    weather: Optional[str] = None
    temperature: Optional[float] = None
    traffic_condition: TrafficCondition = TrafficCondition.LIGHT


class PositionReport(CamelModel):
    """Body of POST /tracking/update."""
    device_id: str = Field(..., min_length=1)
    vehicle_id: str = Field(..., min_length=1)
    location: LocationIn
    route_progress: Optional[RouteProgressIn] = None
    passenger_load: Optional[PassengerLoadIn] = None
    operational_info: OperationalInfoIn
    environmental_data: Optional[EnvironmentalDataIn] = None
    timestamp: Optional[datetime] = None


# --- Views ------------------------------------------------------------------

class LocationView(CamelModel):
    latitude: float
    longitude: float
    accuracy: float
    heading: float
    speed: float
    altitude: Optional[float] = None


class RouteProgressView(CamelModel):
    current_waypoint_index: int
    distance_covered_meters: float
    progress_percentage: float
    eta_next_stop_seconds: float
    next_stop_eta: Optional[datetime] = None
    minutes_to_destination: float


class PassengerLoadView(CamelModel):
    current: int
    max: int
    boarding_count: int
    alighting_count: int
    load_percentage: float


class OperationalInfoView(CamelModel):
    status: OperationalStatus
    current_delay_minutes: float
    delay_reason: Optional[str] = None
    trip_id: str
    schedule_id: str
    driver_id: str
    driver_name: str


class EnvironmentalDataView(CamelModel):
    weather: Optional[str] = None
    temperature: Optional[float] = None
    traffic_condition: TrafficCondition


class PositionView(CamelModel):
    """A single position record as exposed to clients."""
    tracking_id: int
    vehicle_id: str
    vehicle_number: str
    device_id: int
    route_id: int
    location: LocationView
    route_progress: RouteProgressView
    passenger_load: PassengerLoadView
    operational_info: OperationalInfoView
    environmental_data: EnvironmentalDataView
    timestamp: datetime


class LatestPositionView(PositionView):
    """Newest record of one vehicle plus registry context and liveness."""
    device_code: str
    vehicle_type: str
    route_code: str
    route_name: str
    connection_status: ConnectionStatus
    last_seen_minutes_ago: int


class PositionUpdateResponse(CamelModel):
    message: str
    tracking_id: int
    timestamp: datetime
    status: OperationalStatus
    route_progress: RouteProgressView


class LiveLocationsResponse(CamelModel):
    vehicles: List[LatestPositionView]
    total_vehicles: int
    last_update: datetime
    source: str  # "live" or "no_live_data"


class RouteSummary(CamelModel):
    id: int
    route_code: str
    name: str
    start_location: str
    end_location: str


class RouteVehicleStatistics(CamelModel):
    total_vehicles: int
    on_time: int
    delayed: int
    avg_delay: float
    avg_load: float


class RouteVehiclesResponse(CamelModel):
    route: RouteSummary
    vehicles: List[LatestPositionView]
    statistics: RouteVehicleStatistics
    last_update: datetime


class HistoryStatistics(CamelModel):
    total_records: int
    avg_speed: float
    avg_delay: float
    total_distance: float


class VehicleHistoryResponse(CamelModel):
    vehicle_id: str
    history: List[PositionView]
    statistics: HistoryStatistics
    period: dict


class AnalyticsSummary(CamelModel):
    total_vehicles: int = 0
    avg_speed: float = 0
    avg_delay: float = 0
    avg_load: float = 0
    total_records: int = 0


class StatusCount(CamelModel):
    status: str
    count: int


class HourlyVolume(CamelModel):
    day: int
    hour: int
    count: int
    unique_vehicles: int


class TrackingAnalyticsResponse(CamelModel):
    period: str
    summary: AnalyticsSummary
    status_distribution: List[StatusCount]
    hourly_volume: List[HourlyVolume]
    generated_at: datetime


# --- ETA --------------------------------------------------------------------

class BookingSummary(CamelModel):
    id: int
    booking_ref: str
    route: str
    travel_date: str
    departure_time: str


class EtaDetail(CamelModel):
    scheduled_departure: datetime
    estimated_departure: datetime
    current_delay: float
    status: str  # on_time / slightly_delayed / delayed


class EtaVehicle(CamelModel):
    vehicle_id: str
    vehicle_number: str
    location: LocationView
    progress: RouteProgressView
    last_update: datetime
    connection_status: ConnectionStatus


class EtaResponse(CamelModel):
    """
    ETA for a booking.

    `status` is "no_tracking" (and eta/vehicle are null) when no vehicle is
    reporting on the booking's route; that is a normal outcome.
    """
    status: str
    message: Optional[str] = None
    booking: Optional[BookingSummary] = None
    eta: Optional[EtaDetail] = None
    vehicle: Optional[EtaVehicle] = None
    matched_by: Optional[str] = None  # "trip_id" or "least_delay"
