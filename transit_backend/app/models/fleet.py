"""
Fleet database model.

A fleet is an operator company. Its devices only feed the live view once
an admin has approved it.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from transit_backend.app.db.session import Base
from transit_backend.app.models.route_enums import ApprovalStatus


class Fleet(Base):
    """Operator company owning devices and routes."""
    __tablename__ = "fleets"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    owner_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    company_name = Column(String(200), nullable=False)
    contact_number = Column(String(50), nullable=True)

    approval_status = Column(Enum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Fleet(id={self.id}, company='{self.company_name}', approval='{self.approval_status.value}')>"
