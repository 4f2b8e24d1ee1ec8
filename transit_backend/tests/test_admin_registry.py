"""
Registry provisioning tests.

Fleets, routes, devices and assignments under /v1/admin.
"""

import pytest

from transit_backend.app.services.audit import get_audit_trail, AuditAction


ROUTE_BODY = {
    "route_code": "R-200",
    "name": "Harbour Line",
    "start_name": "Harbour",
    "start_lat": 12.90,
    "start_lng": 77.60,
    "end_name": "Airport",
    "end_lat": 12.95,
    "end_lng": 77.60,
    "waypoints": [{"name": "Midtown", "lat": 12.925, "lng": 77.60, "order": 1, "estimated_time": 12}],
    "estimated_duration_minutes": 25,
    "vehicle_capacity": 60,
}


async def provision(client, headers, approve=True):
    fleet = (await client.post("/v1/admin/fleets", json={"company_name": "Harbour Buses"}, headers=headers)).json()
    if approve:
        await client.post(f"/v1/admin/fleets/{fleet['id']}/approval",
                          json={"approval_status": "APPROVED"}, headers=headers)
    route = (await client.post("/v1/admin/routes", json={**ROUTE_BODY, "fleet_id": fleet["id"]},
                               headers=headers)).json()
    device = (await client.post("/v1/admin/devices", json={
        "device_code": "DEV-200", "vehicle_number": "KA-05-2000", "fleet_id": fleet["id"]
    }, headers=headers)).json()
    return fleet, route, device


@pytest.mark.asyncio
async def test_provision_and_report(client, admin_headers, make_payload):
    fleet, route, device = await provision(client, admin_headers)
    assert fleet["approval_status"] == "PENDING"
    assert route["approval_status"] == "APPROVED"
    assert route["waypoints"][0]["name"] == "Midtown"
    assert device["status"] == "offline"

    # Not yet assigned: reports are rejected
    payload = make_payload(route["id"], device_id="DEV-200", lat=12.90, lng=77.60)
    assert (await client.post("/v1/tracking/update", json=payload)).status_code == 404

    response = await client.post("/v1/admin/assignments",
                                 json={"device_id": device["id"], "route_id": route["id"]},
                                 headers=admin_headers)
    assert response.status_code == 201
    assert response.json()["status"] == "ACTIVE"

    assert (await client.post("/v1/tracking/update", json=payload)).status_code == 200

    devices = (await client.get("/v1/admin/devices", headers=admin_headers)).json()
    assert devices[0]["last_latitude"] == pytest.approx(12.90)
    assert devices[0]["status"] == "online"


@pytest.mark.asyncio
async def test_unapproved_fleet_cannot_report(client, admin_headers, make_payload):
    _, route, device = await provision(client, admin_headers, approve=False)
    await client.post("/v1/admin/assignments", json={"device_id": device["id"], "route_id": route["id"]},
                      headers=admin_headers)

    payload = make_payload(route["id"], device_id="DEV-200", lat=12.90, lng=77.60)
    assert (await client.post("/v1/tracking/update", json=payload)).status_code == 404


@pytest.mark.asyncio
async def test_duplicate_codes_and_assignments_conflict(client, admin_headers):
    fleet, route, device = await provision(client, admin_headers)

    response = await client.post("/v1/admin/routes", json={**ROUTE_BODY, "fleet_id": fleet["id"]},
                                 headers=admin_headers)
    assert response.status_code == 409

    response = await client.post("/v1/admin/devices", json={
        "device_code": "DEV-200", "vehicle_number": "OTHER", "fleet_id": fleet["id"]
    }, headers=admin_headers)
    assert response.status_code == 409

    body = {"device_id": device["id"], "route_id": route["id"]}
    assert (await client.post("/v1/admin/assignments", json=body, headers=admin_headers)).status_code == 201
    assert (await client.post("/v1/admin/assignments", json=body, headers=admin_headers)).status_code == 409


@pytest.mark.asyncio
async def test_cross_fleet_assignment_rejected(client, admin_headers, registry):
    _, route, _ = await provision(client, admin_headers)
    response = await client.post("/v1/admin/assignments",
                                 json={"device_id": registry["device"].id, "route_id": route["id"]},
                                 headers=admin_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unassign_stops_ingest(client, admin_headers, registry, make_payload):
    assignment_id = registry["assignment"].id
    response = await client.post(f"/v1/admin/assignments/{assignment_id}/unassign",
                                 json={"reason": "Vehicle moved to depot"}, headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "INACTIVE"
    assert data["unassigned_at"] is not None

    again = await client.post(f"/v1/admin/assignments/{assignment_id}/unassign", json={},
                              headers=admin_headers)
    assert again.status_code == 400

    response = await client.post("/v1/tracking/update", json=make_payload(registry["route"].id))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_route_status_update(client, admin_headers, registry, make_payload):
    route_id = registry["route"].id
    response = await client.patch(f"/v1/admin/routes/{route_id}/status",
                                  json={"is_active": False, "status": "MAINTENANCE"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "MAINTENANCE"

    assert (await client.post("/v1/tracking/update", json=make_payload(route_id))).status_code == 404

    missing = await client.patch("/v1/admin/routes/9999/status", json={"is_active": True}, headers=admin_headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_mutations_are_audited(client, db_session, admin_headers):
    fleet, route, device = await provision(client, admin_headers)
    await client.post("/v1/admin/assignments", json={"device_id": device["id"], "route_id": route["id"]},
                      headers=admin_headers)

    actions = {log.action for log in await get_audit_trail(db_session)}
    assert {
        AuditAction.FLEET_CREATED,
        AuditAction.FLEET_APPROVED,
        AuditAction.ROUTE_CREATED,
        AuditAction.DEVICE_CREATED,
        AuditAction.DEVICE_ASSIGNED,
    } <= actions

    created = await get_audit_trail(db_session, action=AuditAction.ROUTE_CREATED)
    assert created[0].target_id == str(route["id"])
    assert created[0].actor_username == "admin"


@pytest.mark.asyncio
async def test_registry_requires_admin(client, passenger_headers):
    response = await client.post("/v1/admin/fleets", json={"company_name": "Rogue"}, headers=passenger_headers)
    assert response.status_code == 403

    response = await client.get("/v1/admin/routes")
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_fleet_owner_must_have_owner_role(client, admin_headers, passenger_user):
    response = await client.post("/v1/admin/fleets",
                                 json={"company_name": "X", "owner_id": passenger_user.id},
                                 headers=admin_headers)
    assert response.status_code == 400
