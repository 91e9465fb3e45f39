"""Tests for the local development registry server."""

import pytest
from fastapi.testclient import TestClient

from server.dev_registry import RegistryState, create_app


@pytest.fixture
def client():
    return TestClient(create_app())


def connect(client, device_type="FITBIT", name="Fitbit"):
    response = client.post("/api/devices/connect", json={"deviceType": device_type, "deviceName": name})
    assert response.status_code == 200
    return response.json()["data"]


def sync(client, device_id, **activity):
    return client.post(f"/api/devices/{device_id}/sync", json={"activityData": activity})


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestDevices:
    def test_connect_and_list(self, client):
        device = connect(client)

        assert device["device_type"] == "FITBIT"
        assert device["connection_status"] == "CONNECTED"
        assert device["is_primary_device"] is True

        listed = client.get("/api/devices").json()
        assert listed["success"] is True
        assert [d["connected_device_id"] for d in listed["data"]] == [device["connected_device_id"]]

    def test_second_device_not_primary(self, client):
        connect(client)

        assert connect(client, "WHOOP", "Whoop")["is_primary_device"] is False

    def test_reconnect_replaces_record(self, client):
        first = connect(client)
        second = connect(client)

        ids = [d["connected_device_id"] for d in client.get("/api/devices").json()["data"]]
        assert ids == [second["connected_device_id"]]
        assert first["connected_device_id"] != second["connected_device_id"]

    def test_connect_requires_fields(self, client):
        response = client.post("/api/devices/connect", json={"deviceType": "FITBIT"})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Device type and name are required"}

    def test_connect_unknown_type(self, client):
        response = client.post("/api/devices/connect", json={"deviceType": "JAWBONE", "deviceName": "Up"})

        assert response.status_code == 400

    def test_disconnect(self, client):
        device = connect(client)
        device_id = device["connected_device_id"]
        sync(client, device_id, date="2024-06-01", steps=100)

        assert client.delete(f"/api/devices/{device_id}").json()["success"] is True
        assert client.get("/api/devices").json()["data"] == []
        assert client.get("/api/devices/activity/2024-06-01/2024-06-01").json()["data"] == []
        assert client.delete(f"/api/devices/{device_id}").status_code == 404


class TestActivity:
    def test_sync_stores_row(self, client):
        device_id = connect(client)["connected_device_id"]

        response = sync(
            client,
            device_id,
            date="2024-06-01",
            steps=8000,
            caloriesBurned=2100.5,
            activeMinutes=45,
            bmr=1800,
            heartRate=66,
            distance=6.12,
        )

        row = response.json()["data"]
        assert row["steps"] == 8000
        assert row["calories_burned"] == 2100.5
        assert row["distance_km"] == 6.12
        assert client.get("/api/devices").json()["data"][0]["last_sync_time"] is not None

    def test_resync_overwrites_day(self, client):
        device_id = connect(client)["connected_device_id"]
        sync(client, device_id, date="2024-06-01", steps=100)
        sync(client, device_id, date="2024-06-01", steps=200)

        rows = client.get("/api/devices/activity/2024-06-01/2024-06-01").json()["data"]
        assert [r["steps"] for r in rows] == [200]

    def test_primary_device_first(self, client):
        primary = connect(client)["connected_device_id"]
        other = connect(client, "POLAR", "Polar")["connected_device_id"]
        sync(client, other, date="2024-06-01", caloriesBurned=1500)
        sync(client, primary, date="2024-06-01", caloriesBurned=2000)
        sync(client, other, date="2024-05-31", caloriesBurned=1000)

        rows = client.get("/api/devices/activity/2024-05-31/2024-06-01").json()["data"]

        assert [(r["activity_date"], r["connected_device_id"]) for r in rows] == [
            ("2024-05-31", other),
            ("2024-06-01", primary),
            ("2024-06-01", other),
        ]

    def test_sync_unknown_device(self, client):
        assert sync(client, "missing", date="2024-06-01").status_code == 404

    def test_sync_bad_date(self, client):
        device_id = connect(client)["connected_device_id"]

        assert sync(client, device_id, date="06/01/2024").status_code == 400

    def test_activity_bad_dates(self, client):
        assert client.get("/api/devices/activity/yesterday/2024-06-01").status_code == 400


class TestBalanceAndNutrition:
    def test_balance(self, client):
        device_id = connect(client)["connected_device_id"]
        sync(client, device_id, date="2024-06-01", caloriesBurned=2000)
        client.post("/api/nutrition/daily-stats", json={"date": "2024-06-01", "calories": 2600, "protein": 120})

        data = client.get("/api/devices/balance/2024-06-01").json()["data"]

        assert data == {
            "caloriesIn": 2600.0,
            "caloriesOut": 2000.0,
            "balance": 600.0,
            "balanceStatus": "significant_imbalance",
        }

    def test_balance_without_activity_is_null(self, client):
        client.post("/api/nutrition/daily-stats", json={"date": "2024-06-01", "calories": 2600})

        assert client.get("/api/devices/balance/2024-06-01").json() == {"success": True, "data": None}

    def test_nutrition_defaults(self, client):
        data = client.get("/api/nutrition/daily-stats", params={"date": "2024-06-01"}).json()["data"]

        assert data == {"date": "2024-06-01", "calories": 0, "protein": 0, "carbs": 0, "fat": 0}

    def test_nutrition_bad_date(self, client):
        assert client.post("/api/nutrition/daily-stats", json={"calories": 10}).status_code == 400
        assert client.get("/api/nutrition/daily-stats", params={"date": "today"}).status_code == 400


class TestAuth:
    def test_token_required(self):
        client = TestClient(create_app(api_token="dev-token"))

        assert client.get("/api/devices").status_code == 401
        assert client.get("/api/devices", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert client.get("/api/devices", headers={"Authorization": "Bearer dev-token"}).status_code == 200
        assert client.get("/health").status_code == 200

    def test_seeded_state(self):
        state = RegistryState(
            devices={
                "d1": {
                    "connected_device_id": "d1",
                    "device_name": "Whoop",
                    "device_type": "WHOOP",
                    "connection_status": "CONNECTED",
                    "last_sync_time": None,
                    "is_primary_device": True,
                }
            }
        )
        client = TestClient(create_app(state=state))

        assert client.get("/api/devices").json()["data"][0]["device_type"] == "WHOOP"
