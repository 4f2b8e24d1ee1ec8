"""
Route assignment database model.

Binds a device (vehicle) to a route on behalf of a fleet.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Index
from sqlalchemy.sql import func
from transit_backend.app.db.session import Base
from transit_backend.app.models.route_enums import AssignmentStatus


class RouteAssignment(Base):
    """
    Device-to-route assignment.

    At most one ACTIVE row per (device, route), enforced by a partial
    unique index on PostgreSQL and SQLite.
    """
    __tablename__ = "route_assignments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    fleet_id = Column(Integer, ForeignKey('fleets.id'), nullable=False, index=True)
    device_id = Column(Integer, ForeignKey('devices.id'), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)

    status = Column(Enum(AssignmentStatus), default=AssignmentStatus.ACTIVE, nullable=False, index=True)

    assigned_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    assigned_at = Column(DateTime, server_default=func.now(), nullable=False)
    unassigned_at = Column(DateTime, nullable=True)
    unassign_reason = Column(String(500), nullable=True)

    __table_args__ = (
        Index(
            "uq_active_assignment",
            "device_id", "route_id",
            unique=True,
            postgresql_where=(status == AssignmentStatus.ACTIVE),
            sqlite_where=(status == AssignmentStatus.ACTIVE),
        ),
    )

    def __repr__(self):
        return f"<RouteAssignment(device_id={self.device_id}, route_id={self.route_id}, status='{self.status.value}')>"
