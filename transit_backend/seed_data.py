"""
Database seeding script for demo data.

Creates ADMIN, FLEET_OWNER and PASSENGER users plus one approved fleet with a
route, a tracking device, an active assignment and a booking, so the GPS
simulator and the ETA endpoint have something to work with.
Run this script after database is set up but before first use.
"""

import asyncio
from datetime import date, timedelta

from sqlalchemy import select

from transit_backend.app.db.session import AsyncSessionLocal, engine, Base
from transit_backend.app.models.user import User
from transit_backend.app.models.enums import UserRole
from transit_backend.app.models.fleet import Fleet
from transit_backend.app.models.route import Route
from transit_backend.app.models.device import Device
from transit_backend.app.models.route_assignment import RouteAssignment
from transit_backend.app.models.booking import Booking
from transit_backend.app.models.route_enums import ApprovalStatus, AssignmentStatus, VehicleType
from transit_backend.app.core.security import get_password_hash


SEED_USERS = [
    ("admin", "admin@transit.local", "admin123", UserRole.ADMIN),
    ("fleetowner", "fleetowner@transit.local", "fleetowner123", UserRole.FLEET_OWNER),
    ("rider", "rider@transit.local", "rider123", UserRole.PASSENGER),
]


async def seed_data():
    """
    Seed demo users and one fully linked route.

    Skips everything if the ADMIN user already exists.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting seeding...")

        existing_admin = (await db.execute(
            select(User).where(User.username == "admin")
        )).scalar_one_or_none()

        if existing_admin:
            print("ℹ️  ADMIN user already exists, skipping seeding")
            return

        users = {}
        for username, email, password, role in SEED_USERS:
            users[role] = User(
                email=email,
                username=username,
                hashed_password=get_password_hash(password),
                role=role,
                is_active=True,
                is_superuser=role == UserRole.ADMIN
            )
            db.add(users[role])
        await db.flush()
        print("✅ Created users: admin / admin123, fleetowner / fleetowner123, rider / rider123")

        fleet = Fleet(
            owner_id=users[UserRole.FLEET_OWNER].id,
            company_name="Metro City Transit",
            contact_number="+91-80-0000-0000",
            approval_status=ApprovalStatus.APPROVED,
            is_active=True
        )
        db.add(fleet)
        await db.flush()

        route = Route(
            route_code="R-101",
            name="Majestic - Hebbal Express",
            fleet_id=fleet.id,
            start_name="Majestic Bus Stand",
            start_lat=12.9767,
            start_lng=77.5713,
            end_name="Hebbal Flyover",
            end_lat=13.0358,
            end_lng=77.5970,
            waypoints=[
                {"name": "Sheshadripuram", "lat": 12.9891, "lng": 77.5749, "order": 1, "estimated_time": 8},
                {"name": "Mekhri Circle", "lat": 13.0141, "lng": 77.5838, "order": 2, "estimated_time": 18},
            ],
            distance_km=8.5,
            estimated_duration_minutes=30,
            vehicle_type=VehicleType.BUS,
            vehicle_capacity=50,
            approval_status=ApprovalStatus.APPROVED
        )
        device = Device(
            device_code="GPS-KA01-0001",
            vehicle_number="KA-01-F-1234",
            vehicle_type=VehicleType.BUS,
            fleet_id=fleet.id,
            firmware_version="2.4.1"
        )
        db.add_all([route, device])
        await db.flush()
        print(f"✅ Created route {route.route_code} and device {device.device_code}")

        db.add(RouteAssignment(
            fleet_id=fleet.id,
            device_id=device.id,
            route_id=route.id,
            status=AssignmentStatus.ACTIVE,
            assigned_by=users[UserRole.ADMIN].id
        ))
        db.add(Booking(
            booking_ref="BK-DEMO-0001",
            user_id=users[UserRole.PASSENGER].id,
            route_id=route.id,
            travel_date=date.today() + timedelta(days=1),
            departure_time="08:30"
        ))

        await db.commit()

        print("\n🎉 Seeding completed successfully!")
        print("\nNext steps:")
        print("  - POST /v1/admin/simulation/start (as admin) to move the bus")
        print("  - GET  /v1/tracking/eta/1 (as rider) for the booking ETA")


if __name__ == "__main__":
    asyncio.run(seed_data())
