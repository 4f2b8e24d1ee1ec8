"""
Device database model.

A tracking device is installed in exactly one vehicle. The last_* columns
are a denormalised copy of the newest fix, written best-effort by ingest
for admin listings; the tracking log stays authoritative.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from transit_backend.app.db.session import Base
from transit_backend.app.models.route_enums import VehicleType
from transit_backend.app.models.tracking_enums import DeviceStatus


class Device(Base):
    """GPS tracking device bound to one vehicle."""
    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # External identifier sent by the hardware ("deviceId" on the wire)
    device_code = Column(String(100), unique=True, nullable=False, index=True)

    vehicle_number = Column(String(100), nullable=False, index=True)
    vehicle_type = Column(Enum(VehicleType), default=VehicleType.BUS, nullable=False)
    fleet_id = Column(Integer, ForeignKey('fleets.id'), nullable=False, index=True)

    status = Column(Enum(DeviceStatus), default=DeviceStatus.OFFLINE, nullable=False, index=True)
    firmware_version = Column(String(50), nullable=True)
    battery_level = Column(Float, default=100, nullable=False)
    signal_strength = Column(Integer, default=0, nullable=False)

    # Last known location (denormalised)
    last_latitude = Column(Float, nullable=True)
    last_longitude = Column(Float, nullable=True)
    last_location_at = Column(DateTime, nullable=True)
    last_seen = Column(DateTime, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Device(id={self.id}, code='{self.device_code}', vehicle='{self.vehicle_number}')>"
