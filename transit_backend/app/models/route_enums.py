"""
Registry enumerations for fleets, routes, devices and assignments.
"""

import enum


class RouteStatus(str, enum.Enum):
    """Route operating status."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    MAINTENANCE = "MAINTENANCE"


class ApprovalStatus(str, enum.Enum):
    """Admin approval state shared by fleets and routes."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AssignmentStatus(str, enum.Enum):
    """
    Device-to-route assignment status.

    Only ACTIVE assignments make a device's position reports admissible.
    """
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class VehicleType(str, enum.Enum):
    BUS = "bus"
    TRAIN = "train"
