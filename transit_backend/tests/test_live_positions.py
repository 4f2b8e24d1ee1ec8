"""
Latest-position view tests.

GET /v1/tracking/live and GET /v1/tracking/route/{route_id}.
"""

import json
from datetime import timedelta

import pytest

from transit_backend.app.core.clock import utcnow
from transit_backend.app.models.device import Device
from transit_backend.app.models.position_record import PositionRecord
from transit_backend.app.models.fleet import Fleet
from transit_backend.app.models.route import Route
from transit_backend.app.models.route_assignment import RouteAssignment
from transit_backend.app.models.route_enums import ApprovalStatus, AssignmentStatus, VehicleType
from transit_backend.app.models.tracking_enums import OperationalStatus


async def add_record(db, registry, vehicle_id="BUS-1", seconds_ago=0, device=None, **values) -> PositionRecord:
    device = device or registry["device"]
    fields = dict(
        device_id=device.id,
        route_id=registry["route"].id,
        vehicle_id=vehicle_id,
        vehicle_number=device.vehicle_number,
        latitude=12.9716,
        longitude=77.5946,
        trip_id="TRIP_1",
        schedule_id="default",
        driver_id="unknown",
        driver_name="Unknown Driver",
        max_capacity=40,
        timestamp=utcnow() - timedelta(seconds=seconds_ago),
    )
    fields.update(values)
    record = PositionRecord(**fields)
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record


@pytest.mark.asyncio
async def test_empty_view(client):
    response = await client.get("/v1/tracking/live")
    assert response.status_code == 200
    data = response.json()
    assert data["vehicles"] == []
    assert data["totalVehicles"] == 0
    assert data["source"] == "no_live_data"


@pytest.mark.asyncio
async def test_one_entry_per_vehicle_newest_wins(client, db_session, registry):
    await add_record(db_session, registry, seconds_ago=30, latitude=12.9816)
    # Arrives later but was recorded earlier
    await add_record(db_session, registry, seconds_ago=90, latitude=12.9716)

    response = await client.get("/v1/tracking/live")
    data = response.json()
    assert data["totalVehicles"] == 1
    assert data["source"] == "live"
    vehicle = data["vehicles"][0]
    assert vehicle["vehicleId"] == "BUS-1"
    assert vehicle["location"]["latitude"] == pytest.approx(12.9816)
    assert vehicle["connectionStatus"] == "online"
    assert vehicle["routeCode"] == "R-101"
    assert vehicle["deviceCode"] == "DEV-001"


@pytest.mark.asyncio
async def test_equal_timestamps_break_ties_by_id(client, db_session, registry):
    ts = utcnow()
    await add_record(db_session, registry, timestamp=ts, latitude=12.9716)
    newest = await add_record(db_session, registry, timestamp=ts, latitude=12.9916)

    vehicle = (await client.get("/v1/tracking/live")).json()["vehicles"][0]
    assert vehicle["trackingId"] == newest.id


@pytest.mark.asyncio
async def test_connection_status_buckets(client, db_session, registry):
    await add_record(db_session, registry, vehicle_id="V-ONLINE", seconds_ago=60)
    await add_record(db_session, registry, vehicle_id="V-RECENT", seconds_ago=300)
    await add_record(db_session, registry, vehicle_id="V-OFFLINE", seconds_ago=1200)

    vehicles = (await client.get("/v1/tracking/live")).json()["vehicles"]
    statuses = {v["vehicleId"]: v["connectionStatus"] for v in vehicles}
    assert statuses == {
        "V-ONLINE": "online",
        "V-RECENT": "recently_offline",
        "V-OFFLINE": "offline",
    }
    minutes = {v["vehicleId"]: v["lastSeenMinutesAgo"] for v in vehicles}
    assert minutes["V-OFFLINE"] == 20


@pytest.mark.asyncio
async def test_stale_records_hidden_unless_requested(client, db_session, registry):
    await add_record(db_session, registry, seconds_ago=2 * 3600)

    assert (await client.get("/v1/tracking/live")).json()["totalVehicles"] == 0
    data = (await client.get("/v1/tracking/live", params={"include_stale": "true"})).json()
    assert data["totalVehicles"] == 1
    assert data["vehicles"][0]["connectionStatus"] == "offline"


@pytest.mark.asyncio
async def test_inactive_records_excluded(client, db_session, registry):
    await add_record(db_session, registry, is_active=False)
    assert (await client.get("/v1/tracking/live")).json()["totalVehicles"] == 0


@pytest.mark.asyncio
async def test_unassigned_vehicle_drops_out(client, db_session, registry):
    await add_record(db_session, registry)
    assignment = await db_session.get(RouteAssignment, registry["assignment"].id)
    assignment.status = AssignmentStatus.INACTIVE
    await db_session.commit()

    assert (await client.get("/v1/tracking/live")).json()["totalVehicles"] == 0


@pytest.mark.asyncio
async def test_unapproved_route_drops_out(client, db_session, registry):
    await add_record(db_session, registry)
    route = await db_session.get(Route, registry["route"].id)
    route.approval_status = ApprovalStatus.REJECTED
    await db_session.commit()

    data = (await client.get("/v1/tracking/live")).json()
    assert data["totalVehicles"] == 0
    assert data["source"] == "no_live_data"


@pytest.mark.asyncio
async def test_unapproved_or_inactive_fleet_drops_out(client, db_session, registry):
    await add_record(db_session, registry)
    assert (await client.get("/v1/tracking/live")).json()["totalVehicles"] == 1

    fleet = await db_session.get(Fleet, registry["fleet"].id)
    fleet.approval_status = ApprovalStatus.PENDING
    await db_session.commit()
    assert (await client.get("/v1/tracking/live")).json()["totalVehicles"] == 0

    fleet.approval_status = ApprovalStatus.APPROVED
    fleet.is_active = False
    await db_session.commit()
    assert (await client.get("/v1/tracking/live")).json()["totalVehicles"] == 0


@pytest.mark.asyncio
async def test_status_and_route_filters(client, db_session, registry):
    await add_record(db_session, registry, vehicle_id="V-1", status=OperationalStatus.DELAYED)
    await add_record(db_session, registry, vehicle_id="V-2", status=OperationalStatus.ON_ROUTE)

    data = (await client.get("/v1/tracking/live", params={"status": "delayed"})).json()
    assert [v["vehicleId"] for v in data["vehicles"]] == ["V-1"]

    data = (await client.get("/v1/tracking/live", params={"route_id": 9999})).json()
    assert data["totalVehicles"] == 0


@pytest.mark.asyncio
async def test_vehicle_type_filter(client, db_session, registry):
    train = Device(device_code="DEV-T", vehicle_number="TR-9", vehicle_type=VehicleType.TRAIN,
                   fleet_id=registry["fleet"].id)
    db_session.add(train)
    await db_session.commit()
    await db_session.refresh(train)
    db_session.add(RouteAssignment(fleet_id=registry["fleet"].id, device_id=train.id,
                                   route_id=registry["route"].id, status=AssignmentStatus.ACTIVE))
    await db_session.commit()

    await add_record(db_session, registry, vehicle_id="BUS-1")
    await add_record(db_session, registry, vehicle_id="TRAIN-1", device=train)

    data = (await client.get("/v1/tracking/live", params={"vehicle_type": "train"})).json()
    assert [v["vehicleId"] for v in data["vehicles"]] == ["TRAIN-1"]
    assert data["vehicles"][0]["vehicleType"] == "train"


@pytest.mark.asyncio
async def test_bounds_filter(client, db_session, registry):
    await add_record(db_session, registry, vehicle_id="INSIDE", latitude=12.98, longitude=77.59)
    await add_record(db_session, registry, vehicle_id="OUTSIDE", latitude=13.5, longitude=77.59)

    bounds = json.dumps({"northEast": {"lat": 13.0, "lng": 77.7}, "southWest": {"lat": 12.9, "lng": 77.5}})
    data = (await client.get("/v1/tracking/live", params={"bounds": bounds})).json()
    assert [v["vehicleId"] for v in data["vehicles"]] == ["INSIDE"]


@pytest.mark.asyncio
async def test_malformed_bounds_is_400(client):
    response = await client.get("/v1/tracking/live", params={"bounds": "{not json"})
    assert response.status_code == 400

    response = await client.get("/v1/tracking/live", params={"bounds": json.dumps({"northEast": {"lat": 1}})})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_limit_bounds(client):
    assert (await client.get("/v1/tracking/live", params={"limit": 0})).status_code == 422
    assert (await client.get("/v1/tracking/live", params={"limit": 501})).status_code == 422


@pytest.mark.asyncio
async def test_route_vehicles_statistics(client, db_session, registry):
    await add_record(db_session, registry, vehicle_id="V-1", current_delay_minutes=2, load_percentage=50)
    await add_record(db_session, registry, vehicle_id="V-2", current_delay_minutes=12, load_percentage=70)
    # Outside the 5 minute route window
    await add_record(db_session, registry, vehicle_id="V-OLD", seconds_ago=900)

    response = await client.get(f"/v1/tracking/route/{registry['route'].id}")
    assert response.status_code == 200
    data = response.json()
    assert data["route"]["routeCode"] == "R-101"
    assert data["statistics"] == {
        "totalVehicles": 2,
        "onTime": 1,
        "delayed": 1,
        "avgDelay": 7.0,
        "avgLoad": 60.0,
    }


@pytest.mark.asyncio
async def test_route_vehicles_unknown_route(client):
    response = await client.get("/v1/tracking/route/9999")
    assert response.status_code == 404
