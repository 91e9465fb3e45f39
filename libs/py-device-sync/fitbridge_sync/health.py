"""Canonical daily activity snapshot produced by every provider adapter."""

import datetime
from typing import Any

from pydantic import BaseModel, Field

# Basal metabolic rate reported alongside every activity sync
DEFAULT_BMR = 1800


class HealthData(BaseModel):
    """
    Provider-agnostic activity metrics for one calendar date.

    Attributes:
        steps: Step count (always 0 for providers without a step concept)
        calories_burned: Energy expended in kcal
        active_minutes: Minutes of moderate or vigorous activity
        heart_rate: Average or resting heart rate in bpm
        distance_meters: Distance covered in meters
        weight_kg: Body mass in kilograms
        date: Date the metrics cover
    """

    steps: int = Field(default=0, ge=0)
    calories_burned: float = Field(default=0.0, ge=0)
    active_minutes: int = Field(default=0, ge=0)
    heart_rate: float | None = None
    distance_meters: float | None = None
    weight_kg: float | None = None
    date: datetime.date

    def to_activity_payload(self, bmr: int = DEFAULT_BMR) -> dict[str, Any]:
        """Body of a registry sync report. Distance travels in kilometers."""
        return {
            "activityData": {
                "date": self.date.isoformat(),
                "steps": self.steps,
                "caloriesBurned": self.calories_burned,
                "activeMinutes": self.active_minutes,
                "bmr": bmr,
                "heartRate": self.heart_rate,
                "weight": self.weight_kg,
                "distance": (
                    round(self.distance_meters / 1000, 3) if self.distance_meters is not None else None
                ),
            }
        }

    @classmethod
    def from_registry(cls, row: dict[str, Any], day: datetime.date) -> "HealthData":
        """Build from a registry activity row (snake_case, distance in km)."""
        distance_km = row.get("distance_km")
        return cls(
            steps=max(int(row.get("steps") or 0), 0),
            calories_burned=max(float(row.get("calories_burned") or 0), 0.0),
            active_minutes=max(int(row.get("active_minutes") or 0), 0),
            heart_rate=row.get("heart_rate_avg"),
            weight_kg=row.get("weight_kg"),
            distance_meters=float(distance_km) * 1000 if distance_km is not None else None,
            date=day,
        )
