"""
Vehicle liveness classification.

Connection status depends only on the time elapsed since the vehicle's
last report. Both boundaries are inclusive: exactly 120 s is still
"online", exactly 600 s is still "recently_offline".
"""

from datetime import datetime
from typing import Optional, Tuple

from transit_backend.app.core.clock import utcnow, to_naive_utc
from transit_backend.app.core.config import settings
from transit_backend.app.models.tracking_enums import ConnectionStatus


def classify_connection(
    elapsed_seconds: float,
    online_seconds: Optional[int] = None,
    recent_seconds: Optional[int] = None,
) -> ConnectionStatus:
    if online_seconds is None:
        online_seconds = settings.liveness_online_seconds
    if recent_seconds is None:
        recent_seconds = settings.liveness_recent_seconds

    if elapsed_seconds <= online_seconds:
        return ConnectionStatus.ONLINE
    if elapsed_seconds <= recent_seconds:
        return ConnectionStatus.RECENTLY_OFFLINE
    return ConnectionStatus.OFFLINE


def liveness(timestamp: datetime, now: Optional[datetime] = None) -> Tuple[ConnectionStatus, int]:
    """
    Classify a report timestamp.

    Returns:
        (connection status, whole minutes since the report)
    """
    now = to_naive_utc(now) if now else utcnow()
    # Reports stamped slightly in the future (device clock skew) count as fresh
    elapsed = max((now - to_naive_utc(timestamp)).total_seconds(), 0.0)
    return classify_connection(elapsed), int(elapsed // 60)
