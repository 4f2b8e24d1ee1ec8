"""
Tracking-related enumerations.
"""

import enum


class OperationalStatus(str, enum.Enum):
    """Vehicle status carried on each position record."""
    ON_ROUTE = "on_route"
    AT_STOP = "at_stop"
    DELAYED = "delayed"
    BREAKDOWN = "breakdown"
    OFF_DUTY = "off_duty"
    OFF_ROUTE = "off_route"  # Set by the server when the fix is too far from the route


class ConnectionStatus(str, enum.Enum):
    """Liveness derived from time since the last report."""
    ONLINE = "online"
    RECENTLY_OFFLINE = "recently_offline"
    OFFLINE = "offline"


class DeviceStatus(str, enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"


class TrafficCondition(str, enum.Enum):
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    SEVERE = "severe"
