"""
User roles enumeration.

Defines the role types for the transit tracking system.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: System administrator (provisioning, simulation, analytics)
        FLEET_OWNER: Operator company owner
        PASSENGER: Books seats and follows vehicles (default role)
    """
    ADMIN = "ADMIN"
    FLEET_OWNER = "FLEET_OWNER"
    PASSENGER = "PASSENGER"
