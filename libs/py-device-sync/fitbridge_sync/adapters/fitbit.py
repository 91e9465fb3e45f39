"""Fitbit Web API adapter."""

import datetime

from ..health import HealthData
from ..provider_types import ProviderType
from .base import ProviderAdapter, as_int, as_number, register_adapter


@register_adapter(ProviderType.FITBIT)
class FitbitAdapter(ProviderAdapter):
    """Daily activity summary from ``/user/-/activities/date/{date}.json``."""

    async def _fetch(self, access_token: str | None, day: datetime.date) -> HealthData | None:
        data = await self._get_json(f"/user/-/activities/date/{day.isoformat()}.json", access_token)
        summary = data.get("summary") or {}

        distance = None
        for entry in summary.get("distances") or []:
            if entry.get("activity") == "total":
                # Fitbit reports kilometers for metric accounts
                distance = round(as_number(entry.get("distance")) * 1000, 1)
                break

        resting = summary.get("restingHeartRate")

        return HealthData(
            steps=as_int(summary.get("steps")),
            calories_burned=max(as_number(summary.get("caloriesOut")), 0.0),
            active_minutes=as_int(summary.get("veryActiveMinutes"))
            + as_int(summary.get("fairlyActiveMinutes")),
            heart_rate=as_number(resting) if resting is not None else None,
            distance_meters=distance,
            date=day,
        )
