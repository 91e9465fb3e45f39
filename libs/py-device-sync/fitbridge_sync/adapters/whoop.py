"""WHOOP API v2 adapter."""

import datetime
import logging

from dateutil import parser as date_parser

from ..exceptions import FitBridgeError
from ..health import HealthData
from ..provider_types import ProviderType
from .base import ProviderAdapter, as_number, register_adapter, utc_day_bounds

logger = logging.getLogger(__name__)

KJ_PER_KCAL = 4.184


def _rfc3339(value: datetime.datetime) -> str:
    """WHOOP expects ``YYYY-MM-DDTHH:MM:SSZ`` (no microseconds, Z suffix)."""
    return value.astimezone(datetime.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@register_adapter(ProviderType.WHOOP)
class WhoopAdapter(ProviderAdapter):
    """
    WHOOP tracks strain and recovery, not steps.

    Calories come from the day's cycle ``score.kilojoule``; ``steps`` is
    always 0. Active minutes are the summed duration of the day's workouts.
    """

    async def _fetch(self, access_token: str | None, day: datetime.date) -> HealthData | None:
        start, end = utc_day_bounds(day)
        params = {"start": _rfc3339(start), "end": _rfc3339(end), "limit": 25}

        data = await self._get_json("/v2/cycle", access_token, params=params)
        records = data.get("records") or []
        if not records:
            logger.info("No WHOOP cycle for %s", day)
            return None

        score = records[0].get("score") or {}
        kilojoule = as_number(score.get("kilojoule"))
        heart_rate = score.get("average_heart_rate")

        return HealthData(
            steps=0,
            calories_burned=round(max(kilojoule, 0.0) / KJ_PER_KCAL, 1),
            active_minutes=await self._workout_minutes(access_token, params),
            heart_rate=as_number(heart_rate) if heart_rate is not None else None,
            date=day,
        )

    async def _workout_minutes(self, access_token: str, params: dict) -> int:
        try:
            data = await self._get_json("/v2/activity/workout", access_token, params=params)
        except (FitBridgeError, ValueError) as e:
            logger.warning("WHOOP workouts unavailable, using 0 active minutes: %s", e)
            return 0

        records = data.get("records") if isinstance(data, dict) else None
        if not isinstance(records, list):
            if records is not None or not isinstance(data, dict):
                logger.warning("Unexpected WHOOP workout payload, using 0 active minutes")
            return 0

        seconds = 0.0
        for workout in records:
            if not isinstance(workout, dict):
                continue
            try:
                started = date_parser.isoparse(workout["start"])
                ended = date_parser.isoparse(workout["end"])
            except (KeyError, TypeError, ValueError):
                continue
            seconds += max((ended - started).total_seconds(), 0.0)
        return round(seconds / 60)
