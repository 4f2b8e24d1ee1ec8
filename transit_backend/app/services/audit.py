"""
Audit logging service for security events and admin actions.

Provides centralized logging for compliance and security monitoring.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from transit_backend.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    TOKEN_REVOKED = "TOKEN_REVOKED"

    # Registry provisioning
    FLEET_CREATED = "FLEET_CREATED"
    FLEET_APPROVED = "FLEET_APPROVED"
    ROUTE_CREATED = "ROUTE_CREATED"
    ROUTE_STATUS_CHANGED = "ROUTE_STATUS_CHANGED"
    DEVICE_CREATED = "DEVICE_CREATED"
    DEVICE_ASSIGNED = "DEVICE_ASSIGNED"
    DEVICE_UNASSIGNED = "DEVICE_UNASSIGNED"

    # GPS simulation
    SIMULATION_STARTED = "SIMULATION_STARTED"
    SIMULATION_STOPPED = "SIMULATION_STOPPED"
    SIMULATION_RESET = "SIMULATION_RESET"

    # Ops
    TRACKING_ARCHIVED = "TRACKING_ARCHIVED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Log a security or admin event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action
        actor_username: Username of actor
        target_type: Kind of object acted upon ("route", "device", ...)
        target_id: Identifier of that object
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        meta_data=metadata,
        ip_address=ip_address
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def log_admin_action(
    db: AsyncSession,
    current_user: dict,
    action: str,
    target_type: str,
    target_id: Any,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """Log an admin action using the authenticated token payload as actor."""
    return await log_event(
        db=db,
        action=action,
        actor_id=current_user.get("user_id"),
        actor_username=current_user.get("sub"),
        target_type=target_type,
        target_id=target_id,
        metadata=metadata
    )


async def get_audit_trail(
    db: AsyncSession,
    action: Optional[str] = None,
    target_type: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if action:
        query = query.where(AuditLog.action == action)

    if target_type:
        query = query.where(AuditLog.target_type == target_type)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
