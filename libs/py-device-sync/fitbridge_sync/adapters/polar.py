"""Polar AccessLink adapter."""

import datetime
import logging

from ..health import HealthData
from ..provider_types import ProviderType
from .base import ProviderAdapter, as_int, as_number, register_adapter

logger = logging.getLogger(__name__)


@register_adapter(ProviderType.POLAR)
class PolarAdapter(ProviderAdapter):
    async def _fetch(self, access_token: str | None, day: datetime.date) -> HealthData | None:
        data = await self._get_json(
            "/users/daily-activity", access_token, params={"date": day.isoformat()}
        )
        records = data.get("data") or []
        if not records:
            logger.info("No Polar daily activity for %s", day)
            return None

        activity = records[0]
        heart_rate = activity.get("heart_rate_avg")
        return HealthData(
            steps=as_int(activity.get("steps")),
            calories_burned=max(as_number(activity.get("calories")), 0.0),
            active_minutes=round(as_number(activity.get("active_time_seconds")) / 60),
            heart_rate=as_number(heart_rate) if heart_rate else None,
            date=day,
        )
