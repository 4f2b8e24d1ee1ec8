"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from transit_backend.app.main import app
from transit_backend.app.db.session import get_db, Base
from transit_backend.app.core.jwt import create_access_token
from transit_backend.app.core.security import get_password_hash
import transit_backend.app.core.redis_client as redis_client_module
from transit_backend.app.models.user import User
from transit_backend.app.models.enums import UserRole
from transit_backend.app.models.fleet import Fleet
from transit_backend.app.models.route import Route
from transit_backend.app.models.device import Device
from transit_backend.app.models.route_assignment import RouteAssignment
from transit_backend.app.models.route_enums import ApprovalStatus, AssignmentStatus, VehicleType
from transit_backend.app.services.broadcaster import broadcaster
from transit_backend.app.services.gps_simulator import simulator

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.published = []
        self._closed = False
        self.fail_publish = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def publish(self, channel, message):
        if self.fail_publish:
            raise ConnectionError("Redis unavailable")
        self.published.append((channel, message))
        return 1

    async def flushdb(self):
        if not self._closed:
            self.store = {}
        self.published = []
        self.fail_publish = False

    async def aclose(self):
        self._closed = True
        self.store = {}


mock_redis = MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Apply overrides once for the session."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = mock_redis

    original_factory = simulator.session_factory
    simulator.session_factory = TestingSessionLocal

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client
    simulator.session_factory = original_factory


@pytest.fixture
def redis_mock():
    return mock_redis


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await mock_redis.flushdb()

    yield

    await simulator.stop()
    simulator.vehicles = {}
    simulator.ticks = 0
    simulator.speed_multiplier = 1.0
    await broadcaster.stop()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def running_broadcaster():
    await broadcaster.start()
    yield broadcaster
    await broadcaster.stop()


# --- Users and tokens -------------------------------------------------------

async def make_user(db: AsyncSession, username: str, role: UserRole) -> User:
    user = User(
        email=f"{username}@example.com",
        username=username,
        hashed_password=get_password_hash("password123"),
        role=role,
        is_active=True,
        is_superuser=role == UserRole.ADMIN,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": user.username, "user_id": user.id, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin_user(db_session):
    return await make_user(db_session, "admin", UserRole.ADMIN)


@pytest.fixture
async def passenger_user(db_session):
    return await make_user(db_session, "rider", UserRole.PASSENGER)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def passenger_headers(passenger_user):
    return auth_headers(passenger_user)


# --- Registry ---------------------------------------------------------------

# A straight 2.2 km route running north, one intermediate stop halfway
ROUTE_START = (12.9716, 77.5946)
ROUTE_MIDDLE = (12.9816, 77.5946)
ROUTE_END = (12.9916, 77.5946)


@pytest.fixture
async def registry(db_session):
    """Approved fleet with one route, one device and an active assignment."""
    fleet = Fleet(company_name="City Transit", approval_status=ApprovalStatus.APPROVED, is_active=True)
    db_session.add(fleet)
    await db_session.commit()
    await db_session.refresh(fleet)

    route = Route(
        route_code="R-101",
        name="Central Line",
        fleet_id=fleet.id,
        start_name="Central Station",
        start_lat=ROUTE_START[0],
        start_lng=ROUTE_START[1],
        end_name="North Terminal",
        end_lat=ROUTE_END[0],
        end_lng=ROUTE_END[1],
        waypoints=[{"name": "Market", "lat": ROUTE_MIDDLE[0], "lng": ROUTE_MIDDLE[1], "order": 1, "estimated_time": 5}],
        distance_km=2.2,
        estimated_duration_minutes=10,
        vehicle_type=VehicleType.BUS,
        vehicle_capacity=40,
        approval_status=ApprovalStatus.APPROVED,
    )
    device = Device(device_code="DEV-001", vehicle_number="KA-01-1234", vehicle_type=VehicleType.BUS, fleet_id=fleet.id)
    db_session.add_all([route, device])
    await db_session.commit()
    await db_session.refresh(route)
    await db_session.refresh(device)

    assignment = RouteAssignment(
        fleet_id=fleet.id, device_id=device.id, route_id=route.id, status=AssignmentStatus.ACTIVE
    )
    db_session.add(assignment)
    await db_session.commit()
    await db_session.refresh(assignment)

    return {"fleet": fleet, "route": route, "device": device, "assignment": assignment}


def position_payload(route_id: int, device_id: str = "DEV-001", vehicle_id: str = "BUS-1",
                     lat: float = ROUTE_START[0], lng: float = ROUTE_START[1], **extra) -> dict:
    payload = {
        "deviceId": device_id,
        "vehicleId": vehicle_id,
        "location": {"latitude": lat, "longitude": lng, "speed": 30},
        "operationalInfo": {"tripInfo": {"routeId": route_id}},
    }
    payload.update(extra)
    return payload


@pytest.fixture
def make_payload():
    return position_payload


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def user_factory(db_session):
    async def _make(username: str, role: UserRole = UserRole.PASSENGER) -> User:
        return await make_user(db_session, username, role)
    return _make
