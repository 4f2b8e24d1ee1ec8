"""
Position record database model.

Append-only time series of GPS/telemetry reports. Rows are never updated
by ingest; only a simulation reset flips is_active and the archival job
moves old rows out.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, Enum, Index
from sqlalchemy.sql import func
from transit_backend.app.db.session import Base
from transit_backend.app.models.tracking_enums import OperationalStatus, TrafficCondition


class PositionRecord(Base):
    """
    One position report from a vehicle at a point in time.

    `timestamp` is the report time and the only ordering key; `created_at`
    is when the row was inserted.
    """
    __tablename__ = "location_tracking"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    device_id = Column(Integer, ForeignKey('devices.id'), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)
    vehicle_id = Column(String(100), nullable=False, index=True)
    vehicle_number = Column(String(100), nullable=False)

    # Raw fix
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, default=0, nullable=False)  # meters
    heading = Column(Float, default=0, nullable=False)  # degrees 0-360
    speed = Column(Float, default=0, nullable=False)  # km/h
    altitude = Column(Float, nullable=True)

    # Route progress (derived at ingest)
    current_waypoint_index = Column(Integer, default=0, nullable=False)
    distance_covered_m = Column(Float, default=0, nullable=False)
    progress_percentage = Column(Float, default=0, nullable=False)
    eta_next_stop_seconds = Column(Float, default=0, nullable=False)
    next_stop_eta = Column(DateTime, nullable=True)
    minutes_to_destination = Column(Float, default=0, nullable=False)

    # Passenger load
    current_capacity = Column(Integer, default=0, nullable=False)
    max_capacity = Column(Integer, default=1, nullable=False)
    boarding_count = Column(Integer, default=0, nullable=False)
    alighting_count = Column(Integer, default=0, nullable=False)
    load_percentage = Column(Float, default=0, nullable=False)

    # Operational info
    status = Column(Enum(OperationalStatus), default=OperationalStatus.ON_ROUTE, nullable=False, index=True)
    current_delay_minutes = Column(Float, default=0, nullable=False)
    delay_reason = Column(String(500), nullable=True)
    trip_id = Column(String(100), nullable=False)
    schedule_id = Column(String(100), nullable=False)
    driver_id = Column(String(100), nullable=False)
    driver_name = Column(String(200), nullable=False)

    # Environment
    weather = Column(String(100), nullable=True)
    temperature = Column(Float, nullable=True)
    traffic_condition = Column(Enum(TrafficCondition), default=TrafficCondition.LIGHT, nullable=False)

    timestamp = Column(DateTime, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_location_tracking_vehicle_active_ts", "vehicle_id", "is_active", "timestamp"),
        Index("ix_location_tracking_route_ts", "route_id", "timestamp"),
    )

    def __repr__(self):
        return f"<PositionRecord(vehicle_id='{self.vehicle_id}', lat={self.latitude}, lng={self.longitude}, ts={self.timestamp})>"
