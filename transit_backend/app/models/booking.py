"""
Booking database model.

Only the fields the ETA query reads are modelled here.
"""

import enum
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from transit_backend.app.db.session import Base


class BookingStatus(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


class Booking(Base):
    """Seat booking on a route departure."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_ref = Column(String(50), unique=True, nullable=False, index=True)

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)

    # Optional binding to the concrete trip; used to pick the right vehicle for ETA
    trip_id = Column(String(100), nullable=True)
    schedule_id = Column(String(100), nullable=True)

    travel_date = Column(Date, nullable=False)
    departure_time = Column(String(5), nullable=False)  # "HH:MM"

    status = Column(Enum(BookingStatus), default=BookingStatus.CONFIRMED, nullable=False)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Booking(id={self.id}, ref='{self.booking_ref}', route_id={self.route_id})>"
