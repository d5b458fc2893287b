"""Rider history analysis.

Turns a list of past rides into a ``RidingProfile``: distance and elevation
preferences, favourite compass directions, frequently visited areas,
reusable segments and whole-route templates. A rider with no usable rides
gets ``RidingProfile.default()`` rather than an empty profile.
"""

import logging
import math
import statistics
from datetime import datetime, timezone
from typing import NamedTuple

from pydantic import BaseModel, Field

from config import (
    FREQUENT_AREA_RADIUS_KM,
    LOOP_CLOSURE_KM,
    MAX_FREQUENT_AREAS,
    MAX_PREFERRED_DIRECTIONS,
    MAX_TEMPLATES,
    MIN_AREA_VISITS,
    MIN_SEGMENT_POINTS,
    MIN_TRACK_POINTS,
    NEARBY_AREA_RADIUS_KM,
    SEGMENT_BEARING_TOLERANCE_DEG,
    SEGMENT_LENGTH_KM,
    SEGMENT_MATCH_RADIUS_KM,
    TURN_THRESHOLD_DEG,
)
from geometry import bearing, bearing_difference, distance_km, polyline_length_km
from models import (
    Coordinate,
    DistanceStats,
    ElevationTolerance,
    FrequentArea,
    PerformanceMetrics,
    PreferredDirection,
    RideRecord,
    RidingProfile,
    RouteSegment,
    RouteTemplate,
    RouteType,
    TemplateDifficulty,
    TrainingGoal,
)

logger = logging.getLogger(__name__)

COMPASS_SECTORS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")

# (name, lower bound, upper bound) in km for the "most common" ride length.
_DISTANCE_RANGES = (
    ("short", 0, 15),
    ("medium", 15, 35),
    ("long", 35, 65),
    ("very_long", 65, 150),
)

# Default bearings used when the rider has no directional history.
_GOAL_DEFAULT_BEARINGS: dict[TrainingGoal, float] = {
    TrainingGoal.HILLS: 0.0,
    TrainingGoal.ENDURANCE: 90.0,
    TrainingGoal.INTERVALS: 180.0,
    TrainingGoal.RECOVERY: 135.0,
}

_GOAL_ELEVATION_MULTIPLIERS: dict[TrainingGoal, float] = {
    TrainingGoal.HILLS: 1.5,
    TrainingGoal.ENDURANCE: 1.0,
    TrainingGoal.INTERVALS: 0.8,
    TrainingGoal.RECOVERY: 0.5,
}

# History may stretch or shrink the time-based target by at most this much.
MAX_HISTORY_DISTANCE_ADJUSTMENT: float = 0.25


class KeyPoint(NamedTuple):
    coordinate: Coordinate
    kind: str
    """start | turn | end"""
    turn_deg: float
    confidence: float


class PatternGuidance(BaseModel):
    """History-derived hints for a single generation request."""

    adjusted_distance_km: float
    preferred_bearing: float
    bearing_source: str
    """``historical`` or ``default``."""

    nearby_areas: list[FrequentArea] = Field(default_factory=list)
    elevation_target_m: float


def _percentile(sorted_values: list[float], fraction: float) -> float:
    index = min(len(sorted_values) - 1, math.floor(len(sorted_values) * fraction))
    return sorted_values[index]


def _track_coordinates(ride: RideRecord) -> list[Coordinate]:
    return [(tp.longitude, tp.latitude) for tp in ride.track_points]


def _ride_distance(ride: RideRecord) -> float:
    if ride.distance_km > 0:
        return ride.distance_km
    if len(ride.track_points) >= 2:
        return polyline_length_km(_track_coordinates(ride))
    return 0.0


def recency_score(timestamp: datetime | None, now: datetime) -> float:
    """1.0 for today, falling linearly to 0 at a year old."""
    if timestamp is None:
        return 0.0
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    age_days = (now - timestamp).total_seconds() / 86400
    return max(0.0, min(1.0, 1 - age_days / 365))


class HistoryAnalyzer:
    """Derives a ``RidingProfile`` from past rides."""

    def analyze(
        self, past_rides: list[RideRecord], *, now: datetime | None = None
    ) -> RidingProfile:
        now = now or datetime.now(timezone.utc)
        rides = [r for r in past_rides if _ride_distance(r) > 0]
        if not rides:
            logger.info("No usable ride history; using default profile")
            return RidingProfile.default()

        distance_stats = self._distance_stats(rides)
        elevation = self._elevation_tolerance(rides)

        tracked = [r for r in rides if len(r.track_points) >= 2]
        key_points = {id(r): extract_key_points(_track_coordinates(r)) for r in tracked}

        frequent_areas = self._frequent_areas(
            [kp for kps in key_points.values() for kp in kps]
        )
        directions = self._preferred_directions(list(key_points.values()))
        segments = self._route_segments(tracked)
        templates = self._route_templates(tracked, key_points, now)

        profile = RidingProfile(
            distance_stats=distance_stats,
            preferred_directions=directions,
            frequent_areas=frequent_areas,
            elevation_tolerance=elevation or RidingProfile.default().elevation_tolerance,
            route_segments=segments,
            route_templates=templates,
            performance=self._performance(rides),
            has_history=True,
        )
        profile = profile.model_copy(
            update={"confidence": pattern_confidence(profile, has_elevation=elevation is not None)}
        )
        logger.info(
            "Analyzed %d rides: %d areas, %d directions, %d segments, %d templates "
            "(confidence %.2f)",
            len(rides),
            len(frequent_areas),
            len(directions),
            len(segments),
            len(templates),
            profile.confidence,
        )
        return profile

    # -- Distance and elevation ------------------------------------------

    def _distance_stats(self, rides: list[RideRecord]) -> DistanceStats:
        distances = sorted(_ride_distance(r) for r in rides)
        n = len(distances)

        range_counts = {name: 0 for name, _, _ in _DISTANCE_RANGES}
        for d in distances:
            for name, lo, hi in _DISTANCE_RANGES:
                if lo <= d < hi:
                    range_counts[name] += 1
                    break
        most_common = max(range_counts, key=lambda name: range_counts[name])

        return DistanceStats(
            mean=statistics.fmean(distances),
            median=statistics.median(distances),
            percentiles={
                "p25": _percentile(distances, 0.25),
                "p50": _percentile(distances, 0.5),
                "p75": _percentile(distances, 0.75),
                "p90": _percentile(distances, 0.9),
            },
            min=distances[0],
            max=distances[-1],
            most_common_range=most_common,
            distribution={
                "short": sum(1 for d in distances if d < 20) / n,
                "medium": sum(1 for d in distances if 20 <= d < 50) / n,
                "long": sum(1 for d in distances if 50 <= d < 100) / n,
                "very_long": sum(1 for d in distances if d >= 100) / n,
            },
        )

    def _elevation_tolerance(self, rides: list[RideRecord]) -> ElevationTolerance | None:
        gains = sorted(r.elevation_gain_m for r in rides if r.elevation_gain_m > 0)
        if not gains:
            return None
        mean = statistics.fmean(gains)
        if mean < 200:
            style = "flat"
        elif mean < 500:
            style = "rolling"
        elif mean < 1000:
            style = "hilly"
        else:
            style = "mountainous"
        return ElevationTolerance(
            min=gains[0],
            max=gains[-1],
            mean=mean,
            preferred=_percentile(gains, 0.6),
            tolerance=_percentile(gains, 0.8),
            style=style,
        )

    def _performance(self, rides: list[RideRecord]) -> PerformanceMetrics | None:
        timed = [
            (_ride_distance(r), r.duration_seconds / 3600)
            for r in rides
            if r.duration_seconds and r.duration_seconds > 0
        ]
        # Discard obviously broken recordings (walking pace or car speed).
        timed = [(d, h) for d, h in timed if 5 <= d / h <= 60]
        if not timed:
            return None
        total_km = sum(d for d, _ in timed)
        total_h = sum(h for _, h in timed)
        return PerformanceMetrics(
            average_speed_kmh=round(total_km / total_h, 1),
            confidence=min(len(timed) / 10, 1.0),
        )

    # -- Spatial patterns -------------------------------------------------

    def _frequent_areas(self, key_points: list[KeyPoint]) -> list[FrequentArea]:
        clusters: list[list[Coordinate]] = []
        centers: list[Coordinate] = []
        for kp in key_points:
            for i, center in enumerate(centers):
                if distance_km(center, kp.coordinate) <= FREQUENT_AREA_RADIUS_KM:
                    clusters[i].append(kp.coordinate)
                    n = len(clusters[i])
                    centers[i] = (
                        center[0] + (kp.coordinate[0] - center[0]) / n,
                        center[1] + (kp.coordinate[1] - center[1]) / n,
                    )
                    break
            else:
                clusters.append([kp.coordinate])
                centers.append(kp.coordinate)

        areas = [
            FrequentArea(
                center=center,
                frequency=len(members),
                confidence=min(len(members) / 10, 1.0),
            )
            for center, members in zip(centers, clusters)
            if len(members) >= MIN_AREA_VISITS
        ]
        areas.sort(key=lambda a: a.frequency, reverse=True)
        return areas[:MAX_FREQUENT_AREAS]

    def _preferred_directions(
        self, key_points_per_ride: list[list[KeyPoint]]
    ) -> list[PreferredDirection]:
        counts = [0] * len(COMPASS_SECTORS)
        total = 0
        for kps in key_points_per_ride:
            for a, b in zip(kps, kps[1:]):
                if a.coordinate == b.coordinate:
                    continue
                leg_bearing = bearing(a.coordinate, b.coordinate)
                counts[int(((leg_bearing + 22.5) % 360) // 45)] += 1
                total += 1
        if total == 0:
            return []

        directions = [
            PreferredDirection(
                direction=COMPASS_SECTORS[i],
                bearing=i * 45.0,
                preference=count / total,
            )
            for i, count in enumerate(counts)
            if count / total > 0.1
        ]
        directions.sort(key=lambda d: d.preference, reverse=True)
        return directions[:MAX_PREFERRED_DIRECTIONS]

    # -- Segments and templates -------------------------------------------

    def _route_segments(self, rides: list[RideRecord]) -> list[RouteSegment]:
        raw: list[list[Coordinate]] = []
        for ride in rides:
            if len(ride.track_points) >= MIN_TRACK_POINTS:
                raw.extend(split_segments(_track_coordinates(ride)))

        groups: list[list[list[Coordinate]]] = []
        for seg in raw:
            seg_bearing = bearing(seg[0], seg[-1])
            for group in groups:
                first = group[0]
                if (
                    distance_km(seg[0], first[0]) <= SEGMENT_MATCH_RADIUS_KM
                    and distance_km(seg[-1], first[-1]) <= SEGMENT_MATCH_RADIUS_KM
                    and bearing_difference(seg_bearing, bearing(first[0], first[-1]))
                    <= SEGMENT_BEARING_TOLERANCE_DEG
                ):
                    group.append(seg)
                    break
            else:
                groups.append([seg])

        segments = [
            RouteSegment(
                coordinates=group[0],
                start_point=group[0][0],
                end_point=group[0][-1],
                distance_km=polyline_length_km(group[0]),
                bearing=bearing(group[0][0], group[0][-1]),
                frequency=len(group),
                confidence=min(len(group) / 5, 1.0),
            )
            for group in groups
            if len(group) >= 2
        ]
        segments.sort(key=lambda s: s.frequency, reverse=True)
        return segments

    def _route_templates(
        self,
        rides: list[RideRecord],
        key_points: dict[int, list[KeyPoint]],
        now: datetime,
    ) -> list[RouteTemplate]:
        templates = []
        for ride in rides:
            kps = key_points.get(id(ride), [])
            if len(ride.track_points) < MIN_TRACK_POINTS or len(kps) < 3:
                continue
            templates.append(
                RouteTemplate(
                    key_points=[kp.coordinate for kp in kps],
                    start_area=kps[0].coordinate,
                    end_area=kps[-1].coordinate,
                    route_type=classify_route_type(kps),
                    pattern=_turn_pattern(kps),
                    difficulty=template_difficulty(
                        _ride_distance(ride), ride.elevation_gain_m
                    ),
                    base_distance_km=_ride_distance(ride),
                    base_elevation_m=ride.elevation_gain_m,
                    confidence=min(len(kps) / 10, 1.0),
                    timestamp=ride.recorded_at,
                )
            )
        templates.sort(
            key=lambda t: t.confidence * 0.7 + recency_score(t.timestamp, now) * 0.3,
            reverse=True,
        )
        return templates[:MAX_TEMPLATES]


# ---------------------------------------------------------------------------
# Module-level helpers (also used by synthesis)
# ---------------------------------------------------------------------------


def extract_key_points(coordinates: list[Coordinate]) -> list[KeyPoint]:
    """Start, end, and every vertex where the heading turns by more than 30°."""
    if not coordinates:
        return []
    points = [KeyPoint(coordinates[0], "start", 0.0, 1.0)]
    for i in range(1, len(coordinates) - 1):
        prev, curr, nxt = coordinates[i - 1], coordinates[i], coordinates[i + 1]
        if prev == curr or curr == nxt:
            continue
        change = bearing_difference(bearing(prev, curr), bearing(curr, nxt))
        if change > TURN_THRESHOLD_DEG:
            points.append(KeyPoint(curr, "turn", change, min(change / 90, 1.0)))
    if len(coordinates) > 1:
        points.append(KeyPoint(coordinates[-1], "end", 0.0, 1.0))
    return points


def split_segments(coordinates: list[Coordinate]) -> list[list[Coordinate]]:
    """Cuts a track every ``SEGMENT_LENGTH_KM`` (and at its end).

    Consecutive segments share their boundary point. Pieces with fewer than
    ``MIN_SEGMENT_POINTS`` points are dropped.
    """
    segments: list[list[Coordinate]] = []
    if len(coordinates) < 2:
        return segments
    current = [coordinates[0]]
    travelled = 0.0
    last = len(coordinates) - 1
    for i in range(1, len(coordinates)):
        travelled += distance_km(coordinates[i - 1], coordinates[i])
        current.append(coordinates[i])
        if travelled >= SEGMENT_LENGTH_KM or i == last:
            if len(current) >= MIN_SEGMENT_POINTS:
                segments.append(current)
            current = [coordinates[i]]
            travelled = 0.0
    return segments


def classify_route_type(key_points: list[KeyPoint]) -> RouteType:
    start = key_points[0].coordinate
    end = key_points[-1].coordinate
    end_distance = distance_km(start, end)
    if end_distance < LOOP_CLOSURE_KM:
        return RouteType.LOOP
    middle = key_points[len(key_points) // 2].coordinate
    if distance_km(start, middle) > end_distance * 1.5:
        return RouteType.OUT_BACK
    return RouteType.POINT_TO_POINT


def _turn_pattern(key_points: list[KeyPoint]) -> str:
    turns = [kp.turn_deg for kp in key_points if kp.kind == "turn"]
    average = statistics.fmean(turns) if turns else 0.0
    if average < 20:
        return "straight"
    if average < 45:
        return "gentle_curves"
    if average < 90:
        return "winding"
    return "very_winding"


def template_difficulty(distance: float, elevation_gain: float) -> TemplateDifficulty:
    if distance < 20 and elevation_gain < 300:
        return TemplateDifficulty.EASY
    if distance < 40 and elevation_gain < 600:
        return TemplateDifficulty.MODERATE
    if distance < 60 and elevation_gain < 1000:
        return TemplateDifficulty.CHALLENGING
    return TemplateDifficulty.HARD


def pattern_confidence(profile: RidingProfile, *, has_elevation: bool = True) -> float:
    """How much historical signal the profile carries, in [0, 1].

    Weighted sum of the available evidence: distance history (0.3),
    frequently visited areas (up to 0.3), the strongest direction preference
    (up to 0.2) and elevation history (0.2).
    """
    if not profile.has_history:
        return 0.0
    confidence = 0.3
    confidence += 0.3 * min(len(profile.frequent_areas) / 3, 1.0)
    if profile.preferred_directions:
        confidence += 0.2 * profile.preferred_directions[0].preference
    if has_elevation:
        confidence += 0.2
    return round(min(confidence, 1.0), 3)


def guidance_for(
    profile: RidingProfile,
    start: Coordinate,
    target_distance_km: float,
    goal: TrainingGoal,
) -> PatternGuidance:
    """Adjusts a time-based target using the rider's habits."""
    adjusted = target_distance_km
    if profile.has_history:
        mean = profile.distance_stats.mean
        if goal is TrainingGoal.RECOVERY:
            adjusted = min(target_distance_km, mean * 0.8)
        elif goal is TrainingGoal.ENDURANCE:
            adjusted = max(target_distance_km, mean * 1.2)
        else:
            adjusted = target_distance_km * 0.7 + mean * 0.3
        low = target_distance_km * (1 - MAX_HISTORY_DISTANCE_ADJUSTMENT)
        high = target_distance_km * (1 + MAX_HISTORY_DISTANCE_ADJUSTMENT)
        adjusted = max(low, min(high, adjusted))

    if profile.preferred_directions:
        preferred_bearing = profile.preferred_directions[0].bearing
        source = "historical"
    else:
        preferred_bearing = _GOAL_DEFAULT_BEARINGS.get(goal, 0.0)
        source = "default"

    nearby = [
        area
        for area in profile.frequent_areas
        if distance_km(start, area.center) <= NEARBY_AREA_RADIUS_KM
    ]
    return PatternGuidance(
        adjusted_distance_km=round(adjusted, 2),
        preferred_bearing=preferred_bearing,
        bearing_source=source,
        nearby_areas=nearby,
        elevation_target_m=profile.elevation_tolerance.preferred
        * _GOAL_ELEVATION_MULTIPLIERS.get(goal, 1.0),
    )
