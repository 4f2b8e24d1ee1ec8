"""
Audit Log Database Model.

Records authentication events and admin actions (provisioning, simulation
control, archival).
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from transit_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - LOGIN_SUCCESS / LOGIN_FAILED / TOKEN_REVOKED
    - FLEET_* / ROUTE_* / DEVICE_* registry changes
    - DEVICE_ASSIGNED / DEVICE_UNASSIGNED
    - SIMULATION_* control actions
    - TRACKING_ARCHIVED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What the action targeted, e.g. ("route", 12)
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(100), nullable=True, index=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # IP address for login tracking
    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime, server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, target={self.target_type}:{self.target_id})>"
