"""
Tracking analytics.

Read-only aggregation over the tracking log for the admin dashboards.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, func, distinct, extract, desc
from sqlalchemy.ext.asyncio import AsyncSession

from transit_backend.app.core.clock import utcnow
from transit_backend.app.models.position_record import PositionRecord
from transit_backend.app.schemas.tracking import (
    VehicleHistoryResponse, HistoryStatistics, TrackingAnalyticsResponse,
    AnalyticsSummary, StatusCount, HourlyVolume
)
from transit_backend.app.schemas.simulation import HourlyPerformance
from transit_backend.app.services.route_progress import haversine_m
from transit_backend.app.services.tracking import position_view

PERIODS = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
}
DEFAULT_PERIOD = "24h"


class TrackingAnalyticsService:

    @staticmethod
    async def get_vehicle_history(
        db: AsyncSession,
        vehicle_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100
    ) -> VehicleHistoryResponse:
        """Records of one vehicle, newest first, with trip statistics."""
        query = select(PositionRecord).where(PositionRecord.vehicle_id == vehicle_id)
        if start_date:
            query = query.where(PositionRecord.timestamp >= start_date)
        if end_date:
            query = query.where(PositionRecord.timestamp <= end_date)
        query = query.order_by(desc(PositionRecord.timestamp), desc(PositionRecord.id)).limit(limit)

        records = (await db.execute(query)).scalars().all()

        total = len(records)
        # Distance is measured along the reported fixes in chronological order
        chronological = list(reversed(records))
        distance_m = sum(
            haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)
            for a, b in zip(chronological, chronological[1:])
        )

        return VehicleHistoryResponse(
            vehicle_id=vehicle_id,
            history=[position_view(r) for r in records],
            statistics=HistoryStatistics(
                total_records=total,
                avg_speed=round(sum(r.speed for r in records) / total, 1) if total else 0,
                avg_delay=round(sum(r.current_delay_minutes for r in records) / total, 1) if total else 0,
                total_distance=round(distance_m / 1000.0, 2),
            ),
            period={
                "start": start_date.isoformat() if start_date else None,
                "end": end_date.isoformat() if end_date else None,
            },
        )

    @staticmethod
    async def get_analytics(
        db: AsyncSession,
        period: str = DEFAULT_PERIOD,
        route_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> TrackingAnalyticsResponse:
        """Fleet-wide summary, status mix and hourly volume for a period."""
        if period not in PERIODS:
            period = DEFAULT_PERIOD
        now = now or utcnow()
        since = now - PERIODS[period]

        filters = [PositionRecord.timestamp >= since]
        if route_id is not None:
            filters.append(PositionRecord.route_id == route_id)

        # 1. Summary
        summary_row = (await db.execute(
            select(
                func.count(distinct(PositionRecord.vehicle_id)).label("total_vehicles"),
                func.avg(PositionRecord.speed).label("avg_speed"),
                func.avg(PositionRecord.current_delay_minutes).label("avg_delay"),
                func.avg(PositionRecord.load_percentage).label("avg_load"),
                func.count(PositionRecord.id).label("total_records"),
            ).where(*filters)
        )).one()

        summary = AnalyticsSummary(
            total_vehicles=summary_row.total_vehicles or 0,
            avg_speed=round(summary_row.avg_speed or 0, 1),
            avg_delay=round(summary_row.avg_delay or 0, 1),
            avg_load=round(summary_row.avg_load or 0, 1),
            total_records=summary_row.total_records or 0,
        )

        # 2. Status distribution
        status_rows = await db.execute(
            select(PositionRecord.status, func.count(PositionRecord.id).label("count"))
            .where(*filters)
            .group_by(PositionRecord.status)
            .order_by(desc("count"))
        )
        status_distribution = [
            StatusCount(status=row.status.value, count=row.count) for row in status_rows
        ]

        # 3. Hourly volume
        day = extract("day", PositionRecord.timestamp).label("day")
        hour = extract("hour", PositionRecord.timestamp).label("hour")
        volume_rows = await db.execute(
            select(
                day,
                hour,
                func.count(PositionRecord.id).label("count"),
                func.count(distinct(PositionRecord.vehicle_id)).label("unique_vehicles"),
            )
            .where(*filters)
            .group_by(day, hour)
            .order_by(day, hour)
        )
        hourly_volume = [
            HourlyVolume(day=int(row.day), hour=int(row.hour), count=row.count, unique_vehicles=row.unique_vehicles)
            for row in volume_rows
        ]

        return TrackingAnalyticsResponse(
            period=period,
            summary=summary,
            status_distribution=status_distribution,
            hourly_volume=hourly_volume,
            generated_at=now,
        )

    @staticmethod
    async def get_hourly_performance(
        db: AsyncSession,
        hours: int = 24,
        now: Optional[datetime] = None
    ) -> List[HourlyPerformance]:
        """Average speed, load and distinct vehicles per hour over active records."""
        now = now or utcnow()
        day = extract("day", PositionRecord.timestamp).label("day")
        hour = extract("hour", PositionRecord.timestamp).label("hour")
        rows = await db.execute(
            select(
                day,
                hour,
                func.avg(PositionRecord.speed).label("avg_speed"),
                func.avg(PositionRecord.load_percentage).label("avg_load"),
                func.count(distinct(PositionRecord.vehicle_id)).label("vehicle_count"),
            )
            .where(
                PositionRecord.is_active == True,
                PositionRecord.timestamp >= now - timedelta(hours=hours),
            )
            .group_by(day, hour)
            .order_by(day, hour)
        )
        return [
            HourlyPerformance(
                day=int(row.day),
                hour=int(row.hour),
                avg_speed=round(row.avg_speed or 0, 1),
                avg_load=round(row.avg_load or 0, 1),
                vehicle_count=row.vehicle_count,
            )
            for row in rows
        ]
