"""Weather evaluation for route scoring.

Two questions: how good are the current conditions for a given training
goal, and how much does the wind work against a particular route?
"""

import math
from typing import Protocol

from pydantic import BaseModel, Field

from geometry import bearing, distance_km
from models import Coordinate, TrainingGoal, WeatherConditions

# Wind factor used when no weather is known.
DEFAULT_WIND_FACTOR: float = 0.8
# Wind speed (km/h) at which a headwind costs the maximum penalty.
WIND_SPEED_CEILING_KMH: float = 40.0
MAX_HEADWIND_PENALTY: float = 0.6

COMFORT_TEMPERATURE_C: tuple[float, float] = (10.0, 25.0)

# Wind speed (km/h) above which conditions start to hurt each goal.
_WIND_LIMITS_KMH: dict[TrainingGoal, float] = {
    TrainingGoal.INTERVALS: 15.0,
    TrainingGoal.RECOVERY: 20.0,
    TrainingGoal.ENDURANCE: 25.0,
    TrainingGoal.HILLS: 30.0,
}

_WET_KEYWORDS = ("rain", "drizzle", "shower", "snow", "sleet")
_SEVERE_KEYWORDS = ("storm", "thunder", "hail")


class WeatherService(Protocol):
    """Current conditions at a position."""

    name: str

    async def current_conditions(self, lat: float, lon: float) -> WeatherConditions:
        ...


class TrainingConditions(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    notes: list[str] = Field(default_factory=list)


def evaluate_training_conditions(
    weather: WeatherConditions, goal: TrainingGoal
) -> TrainingConditions:
    """Scores how favourable the weather is for ``goal``, in [0, 1]."""
    score = 1.0
    notes: list[str] = []

    low, high = COMFORT_TEMPERATURE_C
    if weather.temperature_c < low:
        score -= min(0.4, (low - weather.temperature_c) * 0.03)
        notes.append("cold")
    elif weather.temperature_c > high:
        # Long climbs in the heat are the hardest to sustain.
        rate = 0.04 if goal is TrainingGoal.HILLS else 0.03
        score -= min(0.4, (weather.temperature_c - high) * rate)
        notes.append("hot")

    wind_limit = _WIND_LIMITS_KMH.get(goal, 25.0)
    if weather.wind_speed_kmh > wind_limit:
        score -= min(0.4, (weather.wind_speed_kmh - wind_limit) * 0.02)
        notes.append("windy")

    description = weather.description.lower()
    if any(word in description for word in _SEVERE_KEYWORDS):
        score -= 0.5
        notes.append("storms")
    elif any(word in description for word in _WET_KEYWORDS):
        score -= 0.2
        notes.append("wet")

    return TrainingConditions(score=max(0.0, min(1.0, score)), notes=notes)


def segment_wind_factor(
    travel_bearing: float, wind_from_deg: float, wind_speed_kmh: float
) -> float:
    """1.0 for calm air or a tailwind, lower the more a headwind bites."""
    headwind = math.cos(math.radians(travel_bearing - wind_from_deg))
    exposure = min(wind_speed_kmh / WIND_SPEED_CEILING_KMH, 1.0)
    penalty = MAX_HEADWIND_PENALTY * exposure * max(0.0, headwind)
    return 1.0 - penalty


def wind_factor(
    coordinates: list[Coordinate], weather: WeatherConditions | None
) -> float:
    """Distance-weighted average wind factor over a route, in [0, 1]."""
    if weather is None or len(coordinates) < 2:
        return DEFAULT_WIND_FACTOR
    total = weighted = 0.0
    for a, b in zip(coordinates, coordinates[1:]):
        length = distance_km(a, b)
        if length == 0:
            continue
        weighted += length * segment_wind_factor(
            bearing(a, b), weather.wind_direction_deg, weather.wind_speed_kmh
        )
        total += length
    if total == 0:
        return DEFAULT_WIND_FACTOR
    return round(max(0.0, min(1.0, weighted / total)), 3)
