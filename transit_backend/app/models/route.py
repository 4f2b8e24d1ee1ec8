"""
Route database model.

Routes carry the geometry the route-progress estimator works against:
a start point, ordered intermediate waypoints and an end point.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, Enum, JSON
from sqlalchemy.sql import func
from transit_backend.app.db.session import Base
from transit_backend.app.models.route_enums import RouteStatus, ApprovalStatus, VehicleType


class Route(Base):
    """
    Route model.

    `waypoints` is a JSON list of {name, lat, lng, order, estimated_time}
    where estimated_time is minutes from departure.
    """
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    route_code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)

    fleet_id = Column(Integer, ForeignKey('fleets.id'), nullable=False, index=True)

    # Endpoints
    start_name = Column(String(200), nullable=False)
    start_lat = Column(Float, nullable=False)
    start_lng = Column(Float, nullable=False)
    end_name = Column(String(200), nullable=False)
    end_lat = Column(Float, nullable=False)
    end_lng = Column(Float, nullable=False)

    waypoints = Column(JSON, nullable=False, default=list)

    # Schedule figures
    distance_km = Column(Float, nullable=True)
    estimated_duration_minutes = Column(Float, nullable=True)

    # Vehicle info
    vehicle_type = Column(Enum(VehicleType), default=VehicleType.BUS, nullable=False)
    vehicle_capacity = Column(Integer, default=50, nullable=False)

    # Status
    status = Column(Enum(RouteStatus), default=RouteStatus.ACTIVE, nullable=False, index=True)
    approval_status = Column(Enum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Route(id={self.id}, code='{self.route_code}', name='{self.name}')>"
