import time
import subprocess
import httpx
import sys
import os
import signal

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"
APP = "transit_backend.app.main:app"

USERNAME = "persist_rider"
PASSWORD = "securePassword123"


def start_server(echo=False):
    env = {**os.environ, "DB_ECHO": "True"} if echo else None
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", APP, "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env
    )


def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for _ in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


def run_verification():
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = start_server(echo=True)

    try:
        if not wait_for_server():
            stdout, stderr = proc.communicate(timeout=2)
            print("Server Stdout:", stdout.decode())
            print("Server Stderr:", stderr.decode())
            raise RuntimeError("Server start failed")

        print("\n--- [Step 2] Registering Passenger (Persistence Test) ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/auth/register", json={
            "email": "persist_rider@test.com",
            "username": USERNAME,
            "password": PASSWORD,
        })

        if resp.status_code == 400 and "already registered" in resp.text:
            print("⚠️ User already exists (persistence working from previous run?)")
        elif resp.status_code == 201:
            print("✅ User Registered Successfully")
        else:
            print(f"❌ Registration Failed: {resp.status_code} {resp.text}")
            raise RuntimeError("Registration failed")
    finally:
        print("\n--- [Step 3] Stopping Server ---")
        stop_server(proc)

    time.sleep(2)  # Wait for port release

    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc2 = start_server()

    try:
        if not wait_for_server():
            raise RuntimeError("Server restart failed")

        print("\n--- [Step 5] Logging In (Post-Restart) ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/auth/login", json={"username": USERNAME, "password": PASSWORD})
        if resp.status_code != 200:
            print(f"❌ Login Failed (Persistence Issue?): {resp.status_code} {resp.text}")
            raise RuntimeError("Login failed after restart")
        print("✅ Login Successful (User Persisted!)")
        headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}

        print("\n--- [Step 6] Verifying Identity and Live View ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/auth/me", headers=headers)
        print("✅ Identity Verified" if resp.status_code == 200 else f"❌ Identity Check Failed: {resp.status_code}")

        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/tracking/live")
        if resp.status_code == 200:
            print(f"✅ Live view: {resp.json()['totalVehicles']} vehicles ({resp.json()['source']})")
        else:
            print(f"❌ Live view failed: {resp.status_code}")
    finally:
        print("\n--- [Step 7] Stopping Server ---")
        stop_server(proc2)


if __name__ == "__main__":
    run_verification()
