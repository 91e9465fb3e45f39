"""Google Fit REST adapter."""

import datetime
import logging
from typing import Any

from ..exceptions import FitBridgeError
from ..health import HealthData
from ..provider_types import ProviderType
from .base import ProviderAdapter, as_number, register_adapter, utc_day_bounds

logger = logging.getLogger(__name__)

STEPS_SOURCE = "derived:com.google.step_count.delta:com.google.android.gms:estimated_steps"
CALORIES_SOURCE = "derived:com.google.calories.expended:com.google.android.gms:merge_calories_expended"
HEART_RATE_SOURCE = "derived:com.google.heart_rate.bpm:com.google.android.gms:merge_heart_rate_bpm"
DISTANCE_SOURCE = "derived:com.google.distance.delta:com.google.android.gms:merge_distance_delta"

NANOS_PER_SECOND = 1_000_000_000


def _values(dataset: Any, field: str) -> list[float]:
    """All ``intVal``/``fpVal`` entries of a dataset's points."""
    if not isinstance(dataset, dict):
        return []
    values = []
    points = dataset.get("point")
    for point in points if isinstance(points, list) else []:
        if not isinstance(point, dict):
            continue
        entries = point.get("value")
        for value in entries if isinstance(entries, list) else []:
            if isinstance(value, dict) and field in value:
                values.append(as_number(value[field]))
    return values


@register_adapter(ProviderType.GOOGLE_FIT)
class GoogleFitAdapter(ProviderAdapter):
    """
    Reads merged data sources over a UTC day window in epoch nanoseconds.

    Steps are required; calories degrade to 0; heart rate and distance are
    omitted on failure. Active minutes are estimated as ``steps / 100``.
    """

    async def _dataset(self, source: str, access_token: str, window: str) -> Any:
        return await self._get_json(
            f"/users/me/dataSources/{source}/datasets/{window}", access_token
        )

    async def _fetch(self, access_token: str | None, day: datetime.date) -> HealthData | None:
        start, end = utc_day_bounds(day)
        window = f"{int(start.timestamp()) * NANOS_PER_SECOND}-{int(end.timestamp()) * NANOS_PER_SECOND}"

        steps = int(sum(_values(await self._dataset(STEPS_SOURCE, access_token, window), "intVal")))

        try:
            calories = sum(_values(await self._dataset(CALORIES_SOURCE, access_token, window), "fpVal"))
        except (FitBridgeError, ValueError) as e:
            logger.warning("Google Fit calories unavailable, using 0: %s", e)
            calories = 0.0

        heart_rate = None
        try:
            rates = _values(await self._dataset(HEART_RATE_SOURCE, access_token, window), "fpVal")
            if rates:
                heart_rate = round(sum(rates) / len(rates), 1)
        except (FitBridgeError, ValueError) as e:
            logger.info("Google Fit heart rate unavailable: %s", e)

        distance = None
        try:
            meters = _values(await self._dataset(DISTANCE_SOURCE, access_token, window), "fpVal")
            if meters:
                distance = round(sum(meters), 1)
        except (FitBridgeError, ValueError) as e:
            logger.info("Google Fit distance unavailable: %s", e)

        return HealthData(
            steps=max(steps, 0),
            calories_burned=max(round(calories, 1), 0.0),
            active_minutes=round(max(steps, 0) / 100),
            heart_rate=heart_rate,
            distance_meters=distance,
            date=day,
        )
