"""Nutrition summary collaborator: calories consumed per day."""

import datetime
import logging

from pydantic import BaseModel, ConfigDict

from .registry_client import DeviceRegistryClient

logger = logging.getLogger(__name__)


class NutritionStats(BaseModel):
    """Daily nutrition totals. Unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0


class NutritionSummaryClient:
    """Reads ``GET /nutrition/daily-stats?date=`` through the registry transport."""

    def __init__(self, transport: DeviceRegistryClient):
        self.transport = transport

    async def get_daily_stats(self, day: datetime.date) -> NutritionStats:
        """
        Raises:
            NetworkError / RegistryError: On transport or server failure
        """
        data = await self.transport.request(
            "GET", "/nutrition/daily-stats", params={"date": day.isoformat()}
        )
        if not isinstance(data, dict):
            logger.info("No nutrition stats for %s", day)
            return NutritionStats()
        return NutritionStats.model_validate(data)
