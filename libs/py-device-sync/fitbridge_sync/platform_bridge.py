"""
Platform health-store bridges for SDK-linked providers.

Apple Health has no cloud API; data lives on the device. A bridge grants
permission and summarizes one day of on-device data.
"""

import asyncio
import datetime
import logging
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path

from .exceptions import FitBridgeError
from .health import HealthData

logger = logging.getLogger(__name__)

KJ_PER_KCAL = 4.184

STEP_COUNT = "HKQuantityTypeIdentifierStepCount"
ACTIVE_ENERGY = "HKQuantityTypeIdentifierActiveEnergyBurned"
HEART_RATE = "HKQuantityTypeIdentifierHeartRate"
DISTANCE = "HKQuantityTypeIdentifierDistanceWalkingRunning"
BODY_MASS = "HKQuantityTypeIdentifierBodyMass"
EXERCISE_TIME = "HKQuantityTypeIdentifierAppleExerciseTime"

_TRACKED = {STEP_COUNT, ACTIVE_ENERGY, HEART_RATE, DISTANCE, BODY_MASS, EXERCISE_TIME}

# Unit -> multiplier to meters / kilograms
_DISTANCE_UNITS = {"m": 1.0, "km": 1000.0, "mi": 1609.344, "ft": 0.3048}
_MASS_UNITS = {"kg": 1.0, "g": 0.001, "lb": 0.45359237}


class HealthPlatformBridge(ABC):
    """On-device health store access."""

    name = "platform"

    @abstractmethod
    async def request_permissions(self) -> bool:
        """Ask for read access. False when denied or unavailable."""

    @abstractmethod
    async def fetch_day(self, day: datetime.date) -> HealthData | None:
        """Summarize one day, or None if nothing was recorded."""


class UnavailablePlatformBridge(HealthPlatformBridge):
    """Bridge for hosts without a health store."""

    name = "unavailable"

    async def request_permissions(self) -> bool:
        logger.warning("HealthKit is only available on iOS")
        return False

    async def fetch_day(self, day: datetime.date) -> HealthData | None:
        logger.warning("HealthKit is only available on iOS")
        return None


class AppleHealthExportBridge(HealthPlatformBridge):
    """
    Reads an Apple Health ``export.xml`` (Health app > Export All Health Data).

    Records are matched on the local calendar date of their ``startDate``.
    Steps, active energy, distance and exercise time are summed, heart rate
    averaged and the last body-mass sample kept. Without exercise-time
    records, active minutes are estimated as ``steps // 100``.
    """

    name = "apple-health-export"

    def __init__(self, export_path: str | Path):
        self.export_path = Path(export_path)

    async def request_permissions(self) -> bool:
        if not self.export_path.is_file():
            logger.warning("Apple Health export not found at %s", self.export_path)
            return False
        return True

    async def fetch_day(self, day: datetime.date) -> HealthData | None:
        if not self.export_path.is_file():
            logger.warning("Apple Health export not found at %s", self.export_path)
            return None
        return await asyncio.to_thread(self.summarize_day, day)

    def summarize_day(self, day: datetime.date) -> HealthData | None:
        """
        Raises:
            FitBridgeError: If the export cannot be parsed
        """
        prefix = day.isoformat()
        steps = 0.0
        energy_kcal = 0.0
        distance_m = 0.0
        exercise_min = 0.0
        heart_rates: list[float] = []
        weight_kg: float | None = None
        seen = False
        has_distance = False
        has_exercise = False

        try:
            for _, elem in ET.iterparse(self.export_path, events=("end",)):
                if elem.tag != "Record":
                    elem.clear()
                    continue

                record_type = elem.get("type")
                start = elem.get("startDate") or ""
                if record_type in _TRACKED and start.startswith(prefix):
                    try:
                        value = float(elem.get("value", ""))
                    except ValueError:
                        elem.clear()
                        continue
                    unit = elem.get("unit", "")
                    seen = True

                    if record_type == STEP_COUNT:
                        steps += value
                    elif record_type == ACTIVE_ENERGY:
                        energy_kcal += value / KJ_PER_KCAL if unit == "kJ" else value
                    elif record_type == HEART_RATE:
                        heart_rates.append(value)
                    elif record_type == DISTANCE:
                        distance_m += value * _DISTANCE_UNITS.get(unit, 1000.0)
                        has_distance = True
                    elif record_type == BODY_MASS:
                        weight_kg = value * _MASS_UNITS.get(unit, 1.0)
                    elif record_type == EXERCISE_TIME:
                        exercise_min += value
                        has_exercise = True
                elem.clear()
        except (ET.ParseError, OSError) as e:
            raise FitBridgeError(f"Failed to read Apple Health export: {e}", provider="APPLE_HEALTH") from e

        if not seen:
            return None

        step_count = int(steps)
        return HealthData(
            steps=step_count,
            calories_burned=round(energy_kcal, 1),
            active_minutes=int(exercise_min) if has_exercise else step_count // 100,
            heart_rate=round(sum(heart_rates) / len(heart_rates), 1) if heart_rates else None,
            distance_meters=round(distance_m, 1) if has_distance else None,
            weight_kg=round(weight_kg, 2) if weight_kg is not None else None,
            date=day,
        )
