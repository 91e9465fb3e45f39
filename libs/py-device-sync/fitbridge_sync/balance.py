"""Daily energy balance: calories consumed vs. calories burned."""

import datetime
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel

from .exceptions import FitBridgeError
from .nutrition import NutritionSummaryClient
from .orchestrator import SyncOrchestrator
from .registry_client import DeviceRegistryClient

logger = logging.getLogger(__name__)

# Inclusive upper bounds on |balance| / calories_out
BALANCED_THRESHOLD = 0.10
SLIGHT_IMBALANCE_THRESHOLD = 0.25


class BalanceStatus(str, Enum):
    BALANCED = "balanced"
    SLIGHT_IMBALANCE = "slight_imbalance"
    SIGNIFICANT_IMBALANCE = "significant_imbalance"


class DailyBalance(BaseModel):
    """Calories in vs. out for one day."""

    calories_in: float
    calories_out: float
    balance: float
    balance_status: BalanceStatus

    @property
    def balance_percent(self) -> float:
        return abs(self.balance) / self.calories_out if self.calories_out else 0.0

    @classmethod
    def from_registry(cls, payload: dict[str, Any]) -> "DailyBalance":
        """Build from the server's camelCase balance object."""
        return cls(
            calories_in=float(payload["caloriesIn"]),
            calories_out=float(payload["caloriesOut"]),
            balance=float(payload["balance"]),
            balance_status=BalanceStatus(payload["balanceStatus"]),
        )


def classify_balance(balance_percent: float) -> BalanceStatus:
    if balance_percent <= BALANCED_THRESHOLD:
        return BalanceStatus.BALANCED
    if balance_percent <= SLIGHT_IMBALANCE_THRESHOLD:
        return BalanceStatus.SLIGHT_IMBALANCE
    return BalanceStatus.SIGNIFICANT_IMBALANCE


def compute_daily_balance(calories_in: float, calories_out: float) -> DailyBalance | None:
    """
    Classify intake against expenditure.

    Returns None when ``calories_out`` is 0: without an energy-out signal
    there is no meaningful balance.
    """
    if calories_out <= 0:
        return None

    balance = calories_in - calories_out
    return DailyBalance(
        calories_in=calories_in,
        calories_out=calories_out,
        balance=balance,
        balance_status=classify_balance(abs(balance) / calories_out),
    )


class DailyBalanceCalculator:
    """Server-computed balance first, local computation as fallback."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        nutrition: NutritionSummaryClient,
        registry_client: DeviceRegistryClient,
    ):
        self.orchestrator = orchestrator
        self.nutrition = nutrition
        self.registry_client = registry_client

    async def compute_balance(self, day: datetime.date | None = None) -> DailyBalance | None:
        day = day or datetime.date.today()

        try:
            payload = await self.registry_client.get_balance(day)
            if payload is not None:
                balance = DailyBalance.from_registry(payload)
                return balance if balance.calories_out > 0 else None
            logger.info("Server has no balance for %s, computing locally", day)
        except FitBridgeError as e:
            logger.warning("Server balance unavailable, computing locally: %s", e.message)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Malformed server balance, computing locally: %s", e)

        try:
            stats = await self.nutrition.get_daily_stats(day)
        except (FitBridgeError, ValueError) as e:
            logger.warning("Nutrition stats unavailable for %s: %s", day, e)
            return None

        activity = await self.orchestrator.get_activity_data(day)
        calories_out = activity.calories_burned if activity else 0.0
        return compute_daily_balance(stats.calories, calories_out)
