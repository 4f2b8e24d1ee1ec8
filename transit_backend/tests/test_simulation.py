"""
GPS simulator tests.
"""

import pytest
from sqlalchemy import select, func

from transit_backend.app.models.position_record import PositionRecord
from transit_backend.app.models.tracking_enums import OperationalStatus
from transit_backend.app.services.gps_simulator import simulator


async def active_records(db_session) -> int:
    return (await db_session.execute(
        select(func.count(PositionRecord.id)).where(PositionRecord.is_active == True)
    )).scalar()


@pytest.mark.asyncio
async def test_load_vehicles_from_active_assignments(db_session, registry):
    assert await simulator.load_vehicles(db_session) == 1
    vehicle = simulator.vehicles["KA-01-1234"]
    assert vehicle.device_code == "DEV-001"
    assert vehicle.route_id == registry["route"].id
    assert vehicle.capacity == 40
    assert vehicle.geometry.total_m > 2000


@pytest.mark.asyncio
async def test_tick_ingests_through_tracking_path(client, db_session, registry):
    await simulator.load_vehicles(db_session)

    assert await simulator.tick() == 1
    assert await simulator.tick() == 1
    assert simulator.ticks == 2

    records = (await db_session.execute(
        select(PositionRecord).order_by(PositionRecord.id)
    )).scalars().all()
    assert len(records) == 2
    assert records[0].vehicle_id == "KA-01-1234"
    assert records[0].driver_name == "Simulated Driver"
    assert records[1].progress_percentage > records[0].progress_percentage

    live = (await client.get("/v1/tracking/live")).json()
    assert live["totalVehicles"] == 1


@pytest.mark.asyncio
async def test_paused_vehicle_holds_position(db_session, registry):
    await simulator.load_vehicles(db_session)
    simulator.control_vehicle("KA-01-1234", "pause")
    await simulator.tick()
    await simulator.tick()

    records = (await db_session.execute(select(PositionRecord))).scalars().all()
    assert {r.latitude for r in records} == {records[0].latitude}
    assert all(r.speed == 0 for r in records)


def test_advance_loops_with_new_trip(mocker):
    vehicle = mocker.MagicMock()
    vehicle.paused = False
    vehicle.status = OperationalStatus.ON_ROUTE
    vehicle.speed_kmh = 36.0
    vehicle.distance_m = 990.0
    vehicle.passengers = 5
    vehicle.capacity = 10
    vehicle.trip_id = "SIM_TRIP_OLD"
    vehicle.geometry.total_m = 1000.0
    vehicle.geometry.cumulative_m = [0.0, 500.0, 1000.0]

    simulator.advance(vehicle, 5)

    assert vehicle.distance_m == 0.0
    assert vehicle.trip_id != "SIM_TRIP_OLD"


@pytest.mark.asyncio
async def test_delay_marks_report_delayed(db_session, registry):
    await simulator.load_vehicles(db_session)
    simulator.control_vehicle("KA-01-1234", "delay", 12)
    await simulator.tick()

    record = (await db_session.execute(select(PositionRecord))).scalar_one()
    assert record.status == OperationalStatus.DELAYED
    assert record.current_delay_minutes == 12


@pytest.mark.asyncio
async def test_start_stop_via_api(client, registry, admin_headers):
    response = await client.post("/v1/admin/simulation/start", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["vehicles"] == 1

    status = (await client.get("/v1/admin/simulation/status", headers=admin_headers)).json()
    assert status["running"] is True
    assert status["vehicleCount"] == 1

    vehicles = (await client.get("/v1/admin/simulation/vehicles", headers=admin_headers)).json()
    assert vehicles["total"] == 1
    assert vehicles["vehicles"][0]["routeCode"] == "R-101"

    response = await client.post("/v1/admin/simulation/stop", headers=admin_headers)
    assert response.json()["status"]["running"] is False


@pytest.mark.asyncio
async def test_reset_deactivates_records(client, db_session, registry, admin_headers):
    await simulator.load_vehicles(db_session)
    await simulator.tick()
    assert await active_records(db_session) == 1

    response = await client.post("/v1/admin/simulation/reset", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["recordsDeactivated"] == 1
    assert await active_records(db_session) == 0
    assert simulator.vehicles == {}

    assert (await client.get("/v1/tracking/live")).json()["totalVehicles"] == 0


@pytest.mark.asyncio
async def test_speed_multiplier_bounds(client, admin_headers):
    response = await client.post("/v1/admin/simulation/speed", json={"speed": 3}, headers=admin_headers)
    assert response.status_code == 200
    assert simulator.speed_multiplier == 3

    response = await client.post("/v1/admin/simulation/speed", json={"speed": 50}, headers=admin_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_vehicle_control_validation(client, db_session, registry, admin_headers):
    await simulator.load_vehicles(db_session)

    response = await client.post("/v1/admin/simulation/vehicle/NOPE", json={"action": "pause"},
                                 headers=admin_headers)
    assert response.status_code == 404

    response = await client.post("/v1/admin/simulation/vehicle/KA-01-1234",
                                 json={"action": "passengers", "value": 99}, headers=admin_headers)
    assert response.status_code == 400

    response = await client.post("/v1/admin/simulation/vehicle/KA-01-1234",
                                 json={"action": "speed"}, headers=admin_headers)
    assert response.status_code == 400

    response = await client.post("/v1/admin/simulation/vehicle/KA-01-1234",
                                 json={"action": "passengers", "value": 12}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["vehicle"]["passengers"] == 12

    response = await client.post("/v1/admin/simulation/vehicle/KA-01-1234",
                                 json={"action": "breakdown"}, headers=admin_headers)
    assert response.json()["vehicle"]["status"] == "breakdown"


@pytest.mark.asyncio
async def test_simulation_requires_admin(client, passenger_headers):
    response = await client.post("/v1/admin/simulation/start", headers=passenger_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_analytics_snapshot_and_history(client, db_session, registry, admin_headers):
    await simulator.load_vehicles(db_session)
    await simulator.tick()
    simulator.control_vehicle("KA-01-1234", "passengers", 10)
    simulator.control_vehicle("KA-01-1234", "delay", 8)

    response = await client.get("/v1/admin/simulation/analytics", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()

    overview = data["overview"]
    assert overview["totalVehicles"] == 1
    assert overview["totalPassengers"] == 10
    assert overview["totalCapacity"] == 40
    assert overview["occupancyRate"] == 25.0
    assert overview["avgSpeed"] == 35.0
    assert overview["delayedVehicles"] == 1
    assert overview["avgDelay"] == 8.0
    assert overview["totalDistanceKm"] > 0

    route = data["routePerformance"][0]
    assert route["routeCode"] == "R-101"
    assert route["vehicleCount"] == 1
    assert route["avgLoad"] == 25.0
    assert route["onTimePercentage"] == 0.0

    assert len(data["historicalData"]) == 1
    assert data["historicalData"][0]["vehicleCount"] == 1
    assert data["historicalData"][0]["avgSpeed"] == 35.0

    runtime = data["runtime"]
    assert runtime["running"] is False
    assert runtime["uptimeSeconds"] == 0
    assert runtime["speedMultiplier"] == 1.0
    assert runtime["ticks"] == 1
    assert runtime["dataPoints"] == 1


@pytest.mark.asyncio
async def test_analytics_history_skips_deactivated_records(client, db_session, registry, admin_headers):
    await simulator.load_vehicles(db_session)
    await simulator.tick()
    await client.post("/v1/admin/simulation/reset", headers=admin_headers)

    data = (await client.get("/v1/admin/simulation/analytics", headers=admin_headers)).json()
    assert data["overview"]["totalVehicles"] == 0
    assert data["overview"]["occupancyRate"] == 0
    assert data["routePerformance"] == []
    assert data["historicalData"] == []


@pytest.mark.asyncio
async def test_analytics_reports_uptime_while_running(client, registry, admin_headers, passenger_headers):
    await client.post("/v1/admin/simulation/start", headers=admin_headers)

    runtime = (await client.get("/v1/admin/simulation/analytics", headers=admin_headers)).json()["runtime"]
    assert runtime["running"] is True
    assert runtime["startedAt"] is not None
    assert runtime["uptimeSeconds"] >= 0

    response = await client.get("/v1/admin/simulation/analytics", headers=passenger_headers)
    assert response.status_code == 403
