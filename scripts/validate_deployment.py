"""
Pre-Deploy and Smoke Test Script.

Runs the deployed code in-process with FastAPI's TestClient (entering the
lifespan, so tables are created and the broadcaster is started) and checks:
1. Health
2. Public live view
3. Admin login (seeded admin), analytics and simulation status
"""

import sys

from fastapi.testclient import TestClient
from transit_backend.app.main import app

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin123"


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)


def success(msg):
    print(f"✅ {msg}")


def check(client, path, headers=None):
    res = client.get(path, headers=headers)
    if res.status_code != 200:
        fail(f"{path} returned {res.status_code}: {res.text}")
    return res.json()


def main():
    print("🚀 Starting Deployment Validation...")

    with TestClient(app) as client:
        print_step("PRE-DEPLOY", "Checking /health...")
        health = check(client, "/health")
        if health["broadcaster"] != "running":
            fail("Broadcaster did not start with the application")
        if health["redis"] != "connected":
            print("⚠️ Redis unavailable: updates will only reach local WebSocket subscribers")
        success(f"Health: {health}")

        print_step("VERIFY", "Checking public live view...")
        live = check(client, "/v1/tracking/live")
        success(f"Live view: {live['totalVehicles']} vehicles ({live['source']})")

        print_step("AUTH", "Logging in as seeded admin...")
        res = client.post("/v1/auth/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
        if res.status_code != 200:
            fail(f"Admin login failed ({res.status_code}); run transit_backend/seed_data.py first")
        headers = {"Authorization": f"Bearer {res.json()['access_token']}"}

        print_step("SMOKE", "Checking admin analytics and simulation...")
        analytics = check(client, "/v1/tracking/analytics?period=1h", headers)
        success(f"Last hour: {analytics['summary']['totalRecords']} records")

        simulation = check(client, "/v1/admin/simulation/status", headers)
        success(f"Simulation: {simulation}")

    success("Deployment Validation Passed!")


if __name__ == "__main__":
    main()
