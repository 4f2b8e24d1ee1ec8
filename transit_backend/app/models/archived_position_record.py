"""
Archived position records.

Cold-storage copy of old tracking rows; optimised for bulk inserts, not queries.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime
from transit_backend.app.db.session import Base


class ArchivedPositionRecord(Base):
    __tablename__ = "archived_location_tracking"

    id = Column(Integer, primary_key=True, autoincrement=True)

    original_id = Column(Integer, nullable=False)  # Keep reference
    device_id = Column(Integer, nullable=False)
    route_id = Column(Integer, nullable=False, index=True)
    vehicle_id = Column(String(100), nullable=False, index=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, nullable=False)
    progress_percentage = Column(Float, nullable=False)
    current_delay_minutes = Column(Float, nullable=False)
    status = Column(String(20), nullable=False)

    timestamp = Column(DateTime, nullable=False)
    archived_at = Column(DateTime, nullable=False)
