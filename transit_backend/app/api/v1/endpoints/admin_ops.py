"""
Admin Operations API Endpoints.

Maintenance jobs for the tracking log.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, insert

from transit_backend.app.core.clock import utcnow
from transit_backend.app.core.guards import require_role
from transit_backend.app.db.session import get_db
from transit_backend.app.models.position_record import PositionRecord
from transit_backend.app.models.archived_position_record import ArchivedPositionRecord
from transit_backend.app.models.enums import UserRole
from transit_backend.app.services.audit import log_admin_action, AuditAction

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])

ARCHIVAL_BATCH_SIZE = 1000


@router.post("/trigger-archival")
async def trigger_data_archival(
    days_to_keep: int = Query(30, ge=0),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Trigger archival of tracking records older than N days.
    Moves one batch from the hot table to the archive table.
    """
    now = utcnow()
    cutoff_date = now - timedelta(days=days_to_keep)

    stmt = (
        select(PositionRecord)
        .where(PositionRecord.timestamp < cutoff_date)
        .order_by(PositionRecord.timestamp)
        .limit(ARCHIVAL_BATCH_SIZE)
    )
    result = await db.execute(stmt)
    rows_to_archive = result.scalars().all()

    count = 0
    if rows_to_archive:
        archive_data = [
            {
                "original_id": r.id,
                "device_id": r.device_id,
                "route_id": r.route_id,
                "vehicle_id": r.vehicle_id,
                "latitude": r.latitude,
                "longitude": r.longitude,
                "speed": r.speed,
                "progress_percentage": r.progress_percentage,
                "current_delay_minutes": r.current_delay_minutes,
                "status": r.status.value,
                "timestamp": r.timestamp,
                "archived_at": now
            }
            for r in rows_to_archive
        ]

        await db.execute(insert(ArchivedPositionRecord), archive_data)

        ids_to_delete = [r.id for r in rows_to_archive]
        await db.execute(delete(PositionRecord).where(PositionRecord.id.in_(ids_to_delete)))

        await db.commit()
        count = len(rows_to_archive)
        logger.info("Archived %d tracking records older than %s", count, cutoff_date.isoformat())

    await log_admin_action(db, current_user, AuditAction.TRACKING_ARCHIVED, "location_tracking", None,
                           {"rows_archived": count, "days_to_keep": days_to_keep})

    return {"message": "Archival job completed", "rows_archived": count}
