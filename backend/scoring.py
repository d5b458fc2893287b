"""Multi-factor route scoring.

Each candidate starts at ``BASE_SCORE`` and collects independent signal
contributions. Every signal is clamped to its own range before summing so
no single factor can saturate the total, and the total is clamped to
[0, 1]. Scoring returns new candidate objects; inputs are never mutated.
"""

import logging

from pydantic import BaseModel, Field

from config import BASE_SCORE, FREQUENT_AREA_BONUS_RADIUS_KM, SCORING_SPEEDS_KMH
from geometry import centroid, distance_km, turn_density
from models import (
    BikeInfrastructure,
    QuietnessLevel,
    RidingProfile,
    RouteCandidate,
    RoutePreferences,
    TrafficTolerance,
    TrainingGoal,
    WeatherConditions,
)
from weather import evaluate_training_conditions

logger = logging.getLogger(__name__)

# Allowed contribution range for each signal.
SIGNAL_BOUNDS: dict[str, tuple[float, float]] = {
    "training_goal": (-0.1, 0.2),
    "weather": (0.0, 0.2),
    "time": (-0.1, 0.2),
    "quality": (-0.15, 0.2),
    "history": (-0.15, 0.35),
    "traffic": (-0.3, 0.4),
    "quietness": (-0.2, 0.3),
}

_EXPECTED_QUIETNESS: dict[QuietnessLevel, float] = {
    QuietnessLevel.HIGH: 0.8,
    QuietnessLevel.MEDIUM: 0.6,
    QuietnessLevel.LOW: 0.4,
}

# (climbing m/km above which, speed multiplier), steepest first.
_CLIMBING_SPEED_FACTORS: tuple[tuple[float, float], ...] = (
    (25.0, 0.75),
    (15.0, 0.85),
    (10.0, 0.95),
)


class ScoringCriteria(BaseModel):
    training_goal: TrainingGoal
    time_available_min: float
    weather: WeatherConditions | None = None
    profile: RidingProfile = Field(default_factory=RidingProfile.default)
    preferences: RoutePreferences = Field(default_factory=RoutePreferences)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _elevation_per_km(candidate: RouteCandidate) -> float:
    if candidate.distance_km <= 0:
        return 0.0
    return candidate.elevation_gain_m / candidate.distance_km


def estimated_duration_min(candidate: RouteCandidate, goal: TrainingGoal) -> float:
    """Riding time at the goal's typical pace, slowed for steep routes.

    The hills pace already assumes sustained climbing and is not slowed
    further.
    """
    speed = SCORING_SPEEDS_KMH.get(goal.value, 20.0)
    if goal is not TrainingGoal.HILLS:
        ratio = _elevation_per_km(candidate)
        for threshold, factor in _CLIMBING_SPEED_FACTORS:
            if ratio > threshold:
                speed *= factor
                break
    return candidate.distance_km / speed * 60


class RouteScorer:
    """Ranks candidates against the rider's goal, weather, time and habits."""

    def score(
        self, candidates: list[RouteCandidate], criteria: ScoringCriteria
    ) -> list[RouteCandidate]:
        """Returns scored copies of ``candidates``, best first.

        Raises:
            ValueError: If a candidate has fewer than two coordinates.
        """
        scored = []
        for candidate in candidates:
            if len(candidate.coordinates) < 2:
                raise ValueError(
                    f"Cannot score {candidate.name!r}: fewer than 2 coordinates."
                )
            breakdown = self.breakdown(candidate, criteria)
            total = _clamp(BASE_SCORE + sum(breakdown.values()), 0.0, 1.0)
            logger.debug("Scored %r: %.3f %s", candidate.name, total, breakdown)
            scored.append(candidate.model_copy(update={"score": round(total, 4)}))
        scored.sort(key=lambda c: c.score, reverse=True)
        return scored

    def breakdown(
        self, candidate: RouteCandidate, criteria: ScoringCriteria
    ) -> dict[str, float]:
        """Clamped contribution of every signal for one candidate."""
        raw = {
            "training_goal": self._training_goal(candidate, criteria),
            "weather": self._weather(criteria),
            "time": self._time(candidate, criteria),
            "quality": self._quality(candidate),
            "history": self._history(candidate, criteria),
            "traffic": self._traffic(candidate, criteria.preferences),
            "quietness": self._quietness(candidate, criteria.preferences),
        }
        return {name: _clamp(value, *SIGNAL_BOUNDS[name]) for name, value in raw.items()}

    # -- Signals ----------------------------------------------------------

    def _training_goal(self, candidate: RouteCandidate, criteria: ScoringCriteria) -> float:
        ratio = _elevation_per_km(candidate)
        goal = criteria.training_goal
        if goal is TrainingGoal.HILLS:
            return 0.2 if ratio > 20 else -0.1
        if goal is TrainingGoal.RECOVERY:
            return 0.2 if ratio < 15 else -0.1
        if goal is TrainingGoal.INTERVALS:
            return 0.15 if candidate.wind_factor > 0.8 else 0.0
        return 0.1

    def _weather(self, criteria: ScoringCriteria) -> float:
        if criteria.weather is None:
            return 0.0
        conditions = evaluate_training_conditions(criteria.weather, criteria.training_goal)
        return conditions.score * 0.2

    def _time(self, candidate: RouteCandidate, criteria: ScoringCriteria) -> float:
        estimate = estimated_duration_min(candidate, criteria.training_goal)
        diff = abs(estimate - criteria.time_available_min)
        if diff < 10:
            return 0.2
        if diff < 20:
            return 0.1
        return -0.1

    def _quality(self, candidate: RouteCandidate) -> float:
        score = 0.1 if candidate.confidence > 0.8 else 0.0
        return score + (candidate.wind_factor - 0.8) * 0.5

    def _history(self, candidate: RouteCandidate, criteria: ScoringCriteria) -> float:
        profile = criteria.profile
        if profile.confidence <= 0:
            return 0.0

        score = 0.0
        mean = profile.distance_stats.mean
        if mean > 0:
            divergence = abs(candidate.distance_km - mean) / mean
            if divergence <= 0.2:
                score += 0.15
            elif divergence <= 0.4:
                score += 0.1
            elif divergence > 1.0:
                score -= 0.1

            preferred_ratio = profile.elevation_tolerance.preferred / mean
            if preferred_ratio > 0:
                ratio = _elevation_per_km(candidate)
                if criteria.training_goal is TrainingGoal.HILLS:
                    # Extra climbing is never a mismatch for a hills session.
                    gap = max(0.0, preferred_ratio - ratio) / preferred_ratio
                else:
                    gap = abs(ratio - preferred_ratio) / preferred_ratio
                if gap <= 0.3:
                    score += 0.1
                elif gap > 1.5:
                    score -= 0.05

        if profile.frequent_areas:
            center = centroid(candidate.coordinates)
            if any(
                distance_km(center, area.center) <= FREQUENT_AREA_BONUS_RADIUS_KM
                for area in profile.frequent_areas
            ):
                score += 0.1

        return score * profile.confidence

    def _traffic(self, candidate: RouteCandidate, prefs: RoutePreferences) -> float:
        exposure = candidate.traffic_exposure
        if prefs.traffic_tolerance is TrafficTolerance.LOW:
            score = 0.0
            if exposure is not None:
                if exposure <= 0.4:
                    score += 0.3
                elif exposure > 0.6:
                    score -= 0.2
            # Winding geometry tends to mean side streets rather than arterials.
            score += turn_density(candidate.coordinates) * 0.1
            if candidate.source != "fallback":
                score += 0.05
            return score
        if prefs.traffic_tolerance is TrafficTolerance.MEDIUM:
            if exposure is not None and exposure <= 0.8:
                return 0.15
        return 0.0

    def _quietness(self, candidate: RouteCandidate, prefs: RoutePreferences) -> float:
        level = prefs.quietness_level
        if level is None:
            return 0.0
        score = 0.0
        if candidate.quietness is not None:
            expected = _EXPECTED_QUIETNESS[level]
            if candidate.quietness >= expected:
                score += (candidate.quietness - expected) * 0.5
            else:
                score -= (expected - candidate.quietness) * 0.3
        if level is QuietnessLevel.HIGH:
            if prefs.prefer_walking_profile:
                score += 0.15
            if prefs.bike_infrastructure in (
                BikeInfrastructure.REQUIRED,
                BikeInfrastructure.STRONGLY_PREFERRED,
            ):
                score += 0.1
        return score
