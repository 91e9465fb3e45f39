"""
In-memory device registry and nutrition summary API for local development.

Speaks the same ``{"success": bool, "data": ...}`` contract as the
production server so the CLI and library can be exercised end to end:

    uvicorn server.dev_registry:app --port 5000
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from fitbridge_sync.balance import compute_daily_balance
from fitbridge_sync.provider_types import DeviceStatus, ProviderType

logger = logging.getLogger(__name__)

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class RegistryState:
    """Everything the dev server knows, keyed by device id / date."""

    devices: dict[str, dict[str, Any]] = field(default_factory=dict)
    # (device_id, activity_date) -> row
    activity: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    nutrition: dict[str, dict[str, Any]] = field(default_factory=dict)

    def rows_for(self, start: str, end: str) -> list[dict[str, Any]]:
        rows = [row for (_, day), row in self.activity.items() if start <= day <= end]
        # By date, primary device first within a day
        return sorted(
            rows,
            key=lambda r: (
                r["activity_date"],
                not self.devices.get(r["connected_device_id"], {}).get("is_primary_device", False),
            ),
        )


def _fail(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def _ok(data: Any = None, **extra: Any) -> dict[str, Any]:
    return {"success": True, "data": data, **extra}


def create_app(api_token: str | None = None, state: RegistryState | None = None) -> FastAPI:
    """
    Build the dev registry app.

    Args:
        api_token: Bearer token required on ``/api`` routes (none by default)
        state: Pre-seeded state, mainly for tests
    """
    state = state or RegistryState()

    app = FastAPI(
        title="fitbridge dev registry",
        description="In-memory device registry and nutrition summary for local development",
        version="0.1.0",
    )
    app.state.registry = state

    async def require_token(authorization: str | None = Header(None)) -> None:
        if api_token and authorization != f"Bearer {api_token}":
            raise HTTPException(status_code=401, detail="Invalid or missing API token")

    router = APIRouter(prefix="/api", dependencies=[Depends(require_token)])

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        return {
            "status": "healthy",
            "service": "fitbridge-dev-registry",
            "devices": len(state.devices),
        }

    # ========================================================================
    # Devices
    # ========================================================================

    @router.get("/devices")
    async def list_devices():
        return _ok(list(state.devices.values()))

    @router.post("/devices/connect")
    async def connect_device(request: Request):
        body = await request.json()
        device_type = body.get("deviceType")
        device_name = body.get("deviceName")
        if not device_type or not device_name:
            return _fail(400, "Device type and name are required")
        try:
            provider = ProviderType.parse(device_type)
        except ValueError:
            return _fail(400, f"Unknown device type: {device_type}")

        # Reconnecting replaces the previous record for the provider
        for device_id in [
            i for i, d in state.devices.items() if d["device_type"] == provider.value
        ]:
            del state.devices[device_id]

        device = {
            "connected_device_id": uuid.uuid4().hex,
            "device_name": device_name,
            "device_type": provider.value,
            "connection_status": DeviceStatus.CONNECTED.value,
            "last_sync_time": None,
            "is_primary_device": not state.devices,
        }
        state.devices[device["connected_device_id"]] = device
        logger.info("Connected %s as %s", provider.value, device["connected_device_id"])
        return _ok(device)

    @router.delete("/devices/{device_id}")
    async def disconnect_device(device_id: str):
        if state.devices.pop(device_id, None) is None:
            return _fail(404, "Device not found")
        for key in [k for k in state.activity if k[0] == device_id]:
            del state.activity[key]
        return {"success": True, "message": "Device disconnected successfully"}

    @router.post("/devices/{device_id}/sync")
    async def sync_device(device_id: str, request: Request):
        device = state.devices.get(device_id)
        if device is None:
            return _fail(404, "Device not found")

        activity = (await request.json()).get("activityData") or {}
        activity_date = activity.get("date") or date.today().isoformat()
        if not DATE_RE.match(activity_date):
            return _fail(400, "Date must be in YYYY-MM-DD format")

        row = {
            "connected_device_id": device_id,
            "device_type": device["device_type"],
            "activity_date": activity_date,
            "steps": int(activity.get("steps") or 0),
            "calories_burned": float(activity.get("caloriesBurned") or 0),
            "active_minutes": int(activity.get("activeMinutes") or 0),
            "bmr": activity.get("bmr"),
            "heart_rate_avg": activity.get("heartRate"),
            "weight_kg": activity.get("weight"),
            "distance_km": activity.get("distance"),
        }
        state.activity[(device_id, activity_date)] = row
        device["last_sync_time"] = datetime.now(UTC).isoformat()
        return _ok(row)

    @router.get("/devices/activity/{start_date}/{end_date}")
    async def get_activity(start_date: str, end_date: str):
        if not DATE_RE.match(start_date) or not DATE_RE.match(end_date):
            return _fail(400, "Dates must be in YYYY-MM-DD format")
        return _ok(state.rows_for(start_date, end_date))

    @router.get("/devices/balance/{day}")
    async def get_balance(day: str):
        if not DATE_RE.match(day):
            return _fail(400, "Date must be in YYYY-MM-DD format")

        rows = state.rows_for(day, day)
        calories_in = float(state.nutrition.get(day, {}).get("calories", 0))
        calories_out = rows[0]["calories_burned"] if rows else 0.0
        balance = compute_daily_balance(calories_in, calories_out)
        if balance is None:
            return _ok(None)
        return _ok(
            {
                "caloriesIn": balance.calories_in,
                "caloriesOut": balance.calories_out,
                "balance": balance.balance,
                "balanceStatus": balance.balance_status.value,
            }
        )

    # ========================================================================
    # Nutrition
    # ========================================================================

    @router.get("/nutrition/daily-stats")
    async def get_daily_stats(date: str):
        if not DATE_RE.match(date):
            return _fail(400, "Date must be in YYYY-MM-DD format")
        stats = state.nutrition.get(date) or {"calories": 0, "protein": 0, "carbs": 0, "fat": 0}
        return _ok({"date": date, **stats})

    @router.post("/nutrition/daily-stats")
    async def set_daily_stats(request: Request):
        """Seed a day's nutrition totals."""
        body = await request.json()
        day = body.pop("date", None)
        if not day or not DATE_RE.match(day):
            return _fail(400, "Date must be in YYYY-MM-DD format")
        state.nutrition[day] = {
            "calories": float(body.get("calories", 0)),
            "protein": float(body.get("protein", 0)),
            "carbs": float(body.get("carbs", 0)),
            "fat": float(body.get("fat", 0)),
        }
        return _ok({"date": day, **state.nutrition[day]})

    app.include_router(router)
    return app


app = create_app()
